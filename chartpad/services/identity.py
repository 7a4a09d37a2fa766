"""Resolve bearer tokens into authenticated sessions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class IdentityError(RuntimeError):
    """Raised when the identity provider cannot be reached or misbehaves."""


@dataclass(frozen=True)
class AuthSession:
    """An authenticated principal and the token that proves it."""

    user_id: str
    token: str

    async def get_token(self) -> Optional[str]:
        return self.token


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class IdentityClient:
    """Looks up the token owner through the provider's OIDC userinfo endpoint."""

    def __init__(
        self,
        userinfo_url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._userinfo_url = userinfo_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def resolve(self, token: str) -> Optional[AuthSession]:
        """Return the session for ``token``, or None when the provider rejects it."""
        if not self._userinfo_url:
            logger.warning("auth_userinfo_url is not configured; requests stay unauthenticated")
            return None
        try:
            response = await self._client.get(self._userinfo_url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            raise IdentityError(f"Identity provider unreachable: {exc}") from exc
        if response.status_code in (401, 403):
            return None
        if response.status_code >= 400:
            raise IdentityError(f"Identity provider returned {response.status_code}")
        try:
            claims = response.json()
        except ValueError as exc:
            raise IdentityError("Identity provider returned a non-JSON body") from exc
        user_id = claims.get("sub") if isinstance(claims, dict) else None
        if not user_id:
            raise IdentityError("userinfo response has no subject")
        return AuthSession(user_id=str(user_id), token=token)

    async def aclose(self) -> None:
        await self._client.aclose()
