"""Test doubles shared across test modules."""
from __future__ import annotations

from typing import List, Optional

from chartpad.store.base import ChartRecord, StoreError


class FakeStore:
    """Records every call; charts are kept newest first."""

    def __init__(self, charts: Optional[List[ChartRecord]] = None, fail_insert: bool = False, fail_list: bool = False):
        self.charts = list(charts or [])
        self.fail_insert = fail_insert
        self.fail_list = fail_list
        self.inserts: list[tuple[str, str]] = []
        self.list_calls: list[Optional[str]] = []
        self.closed = False

    async def insert_chart(self, content, user_id):
        self.inserts.append((content, user_id))
        if self.fail_insert:
            raise StoreError("insert rejected")
        record = ChartRecord(content=content, user_id=user_id, id=str(len(self.inserts)))
        self.charts.insert(0, record)
        return record

    async def list_charts(self, user_id=None):
        self.list_calls.append(user_id)
        if self.fail_list:
            raise StoreError("select rejected")
        return [record for record in self.charts if user_id is None or record.user_id == user_id]

    async def aclose(self):
        self.closed = True


def fake_render(svg_id: str, text: str) -> str:
    return f'<svg id="{svg_id}"><text>{text}</text></svg>'
