"""Chart store client for a PostgREST (Supabase) endpoint."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from chartpad.store.base import ChartRecord, StoreError, TokenGetter

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_record(row: Dict[str, Any]) -> ChartRecord:
    return ChartRecord(
        content=row.get("content") or "",
        user_id=row.get("user_id"),
        created_at=_parse_timestamp(row.get("created_at")),
        id=str(row["id"]) if row.get("id") is not None else None,
    )


class RestStoreClient:
    """Talks to ``{base_url}/rest/v1/{table}``.

    Every request carries the public key as ``apikey`` and the session token
    from ``access_token`` as the bearer credential, so row-level policies on
    the store apply to the signed-in user.
    """

    def __init__(
        self,
        base_url: str,
        public_key: str,
        access_token: TokenGetter,
        *,
        table: str = "charts",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not base_url:
            raise ValueError("store_url is not configured")
        self._public_key = public_key
        self._access_token = access_token
        self._path = f"/rest/v1/{table}"
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def _headers(self) -> Dict[str, str]:
        token = await self._access_token()
        return {
            "apikey": self._public_key,
            "Authorization": f"Bearer {token or self._public_key}",
        }

    @staticmethod
    def _raise_for_status(response: httpx.Response, context: str) -> None:
        if response.status_code < 400:
            return
        detail = ""
        try:
            body = response.json()
            if isinstance(body, dict):
                detail = body.get("message") or body.get("error") or ""
        except ValueError:
            detail = (response.text or "").strip()[:300]
        raise StoreError(f"{context} failed ({response.status_code}): {detail}".rstrip(": "))

    @staticmethod
    def _rows(response: httpx.Response, context: str) -> List[Dict[str, Any]]:
        try:
            rows = response.json()
        except ValueError as exc:
            raise StoreError(f"{context} returned a non-JSON body ({response.status_code})") from exc
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise StoreError(f"{context} returned an unexpected payload: expected a list of rows")
        return rows

    async def insert_chart(self, content: str, user_id: str) -> ChartRecord:
        headers = await self._headers()
        headers["Prefer"] = "return=representation"
        try:
            response = await self._client.post(self._path, json=[{"content": content, "user_id": user_id}], headers=headers)
        except httpx.HTTPError as exc:
            raise StoreError(f"Insert failed: {exc}") from exc
        self._raise_for_status(response, "Insert")
        rows = self._rows(response, "Insert") if response.content else []
        if rows:
            return _to_record(rows[0])
        return ChartRecord(content=content, user_id=user_id)

    async def list_charts(self, user_id: Optional[str] = None) -> List[ChartRecord]:
        params = {"select": "content", "order": "created_at.desc"}
        if user_id is not None:
            params["user_id"] = f"eq.{user_id}"
        headers = await self._headers()
        try:
            response = await self._client.get(self._path, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise StoreError(f"Select failed: {exc}") from exc
        self._raise_for_status(response, "Select")
        return [_to_record(row) for row in self._rows(response, "Select")]

    async def aclose(self) -> None:
        await self._client.aclose()
