"""Application configuration."""
from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from .env and environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True)

    store_backend: Literal["rest", "sql"] = "rest"
    store_url: str = Field(
        default="",
        validation_alias=AliasChoices("STORE_URL", "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    store_public_key: str = Field(
        default="",
        validation_alias=AliasChoices("STORE_PUBLIC_KEY", "SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
    )
    store_table: str = "charts"
    database_url: str = Field(
        default="sqlite+pysqlite:///./chartpad.db",
        validation_alias=AliasChoices("DATABASE_URL"),
    )
    chart_scope: Literal["all", "user"] = "all"
    editor_idle_timeout: float = 1800.0  # seconds; 0 disables eviction

    auth_userinfo_url: str = ""

    mermaid_engine: Literal["docker", "local"] = "docker"
    mermaid_renderer_image: str = "minlag/mermaid-cli:latest"
    mermaid_theme: str = "default"
    render_timeout: float = 60.0

    http_timeout: float = 30.0
    log_level: str = "INFO"


settings = Settings()
