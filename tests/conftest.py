from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chartpad.db import Base
from chartpad.renderers import mermaid_renderer
from chartpad.utils import config


@pytest.fixture(autouse=True)
def local_mermaid(monkeypatch):
    """Render with the built-in engine and start every test uninitialized."""
    monkeypatch.setattr(config.settings, "mermaid_engine", "local")
    mermaid_renderer.reset_mermaid()
    yield
    mermaid_renderer.reset_mermaid()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()
