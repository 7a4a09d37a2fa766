import pytest
from pydantic import ValidationError

from chartpad.store.factory import build_store_client
from chartpad.store.rest_client import RestStoreClient
from chartpad.store.sql_client import SqlStoreClient
from chartpad.utils.config import Settings


async def _no_token():
    return None


def test_rest_backend(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    cfg = Settings(_env_file=None, store_backend="rest")
    assert cfg.store_url == "https://project.supabase.co"
    assert isinstance(build_store_client(_no_token, settings=cfg), RestStoreClient)


def test_rest_backend_without_url_is_rejected():
    cfg = Settings(_env_file=None, store_backend="rest", store_url="")
    with pytest.raises(ValueError):
        build_store_client(_no_token, settings=cfg)


def test_sql_backend(session_factory):
    cfg = Settings(_env_file=None, store_backend="sql")
    assert isinstance(build_store_client(_no_token, settings=cfg, session_factory=session_factory), SqlStoreClient)


def test_unknown_backend_is_rejected_at_startup():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, store_backend="redis")


@pytest.mark.parametrize("field, value", [("chart_scope", "User"), ("mermaid_engine", "chrome")])
def test_misspelled_choices_are_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_misspelled_scope_in_environment_is_rejected(monkeypatch):
    monkeypatch.setenv("CHART_SCOPE", "User")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
