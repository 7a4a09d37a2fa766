"""Contract shared by the chart store clients."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol

TokenGetter = Callable[[], Awaitable[Optional[str]]]


class StoreError(RuntimeError):
    """Raised when the chart store rejects or fails a request."""


@dataclass
class ChartRecord:
    content: str
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[str] = None


class StoreClient(Protocol):
    async def insert_chart(self, content: str, user_id: str) -> ChartRecord:
        ...

    async def list_charts(self, user_id: Optional[str] = None) -> List[ChartRecord]:
        """Charts newest first; ``user_id`` narrows the read to one owner."""
        ...

    async def aclose(self) -> None:
        ...
