"""Chart store client backed by SQLAlchemy."""
from __future__ import annotations

import asyncio
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from chartpad.db_models import Chart
from chartpad.store.base import ChartRecord, StoreError


class SqlStoreClient:
    """Runs the same insert/select as the REST store against a local database."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _insert(self, content: str, user_id: str) -> ChartRecord:
        with self._session_factory() as db:
            chart = Chart(content=content, user_id=user_id)
            db.add(chart)
            db.commit()
            db.refresh(chart)
            return ChartRecord(content=chart.content, user_id=chart.user_id, created_at=chart.created_at, id=str(chart.id))

    def _list(self, user_id: Optional[str]) -> List[ChartRecord]:
        stmt = select(Chart.content).order_by(Chart.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(Chart.user_id == user_id)
        with self._session_factory() as db:
            return [ChartRecord(content=content) for content in db.scalars(stmt)]

    async def insert_chart(self, content: str, user_id: str) -> ChartRecord:
        try:
            return await asyncio.to_thread(self._insert, content, user_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Insert failed: {exc}") from exc

    async def list_charts(self, user_id: Optional[str] = None) -> List[ChartRecord]:
        try:
            return await asyncio.to_thread(self._list, user_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Select failed: {exc}") from exc

    async def aclose(self) -> None:
        return None
