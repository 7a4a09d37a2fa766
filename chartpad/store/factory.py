"""Builds the chart store client selected by configuration."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from sqlalchemy.orm import sessionmaker

from chartpad.db import Base, make_engine, make_session_factory
from chartpad.store.base import StoreClient, TokenGetter
from chartpad.store.rest_client import RestStoreClient
from chartpad.store.sql_client import SqlStoreClient
from chartpad.utils.config import Settings, settings as default_settings



@lru_cache(maxsize=None)
def _default_session_factory(database_url: str) -> sessionmaker:
    engine = make_engine(database_url)
    Base.metadata.create_all(bind=engine)
    return make_session_factory(engine)


def build_store_client(
    access_token: TokenGetter,
    *,
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> StoreClient:
    cfg = settings or default_settings
    if cfg.store_backend == "sql":
        return SqlStoreClient(session_factory or _default_session_factory(cfg.database_url))
    return RestStoreClient(
        cfg.store_url,
        cfg.store_public_key,
        access_token,
        table=cfg.store_table,
        timeout=cfg.http_timeout,
    )
