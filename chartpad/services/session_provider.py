"""Publishes a store client bound to the current authentication session."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

from chartpad.services.identity import AuthSession
from chartpad.store.base import StoreClient, TokenGetter
from chartpad.store.factory import build_store_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotReady:
    reason: str = "waiting for session"

    @property
    def ready(self) -> bool:
        return False


@dataclass(frozen=True)
class Ready:
    client: StoreClient
    user_id: str

    @property
    def ready(self) -> bool:
        return True


ClientState = Union[NotReady, Ready]
ClientFactory = Callable[[TokenGetter], StoreClient]
Listener = Callable[[ClientState], Awaitable[None]]


class _SessionToken:
    """Token source handed to the client; follows token refreshes of one session."""

    def __init__(self, session: AuthSession) -> None:
        self.session = session

    async def __call__(self) -> Optional[str]:
        return await self.session.get_token()


class SessionProvider:
    """Owns the store client for one signed-in user.

    ``observe`` is called with whatever session is current. A new user
    rebuilds the client and notifies subscribers; the same user with a
    refreshed token only updates the token source.
    """

    def __init__(self, client_factory: ClientFactory = build_store_client) -> None:
        self._client_factory = client_factory
        self._state: ClientState = NotReady()
        self._token: Optional[_SessionToken] = None
        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ClientState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def observe(self, session: Optional[AuthSession]) -> ClientState:
        async with self._lock:
            logger.debug("Session observed: user=%s", session.user_id if session else None)
            current = self._state
            if session is not None and isinstance(current, Ready) and current.user_id == session.user_id:
                self._token.session = session
                return current
            if session is None and isinstance(current, NotReady):
                return current

            if session is None:
                new_state: ClientState = NotReady()
                self._token = None
            else:
                token = _SessionToken(session)
                try:
                    client = self._client_factory(token)
                except ValueError as exc:
                    logger.error("Store client construction failed: %s", exc)
                    new_state = NotReady(reason=str(exc))
                    self._token = None
                else:
                    new_state = Ready(client=client, user_id=session.user_id)
                    self._token = token
                    logger.info("Store client initialized for user %s", session.user_id)

            self._state = new_state
            if isinstance(current, Ready):
                await current.client.aclose()

        for listener in list(self._listeners):
            await listener(new_state)
        return new_state

    async def close(self) -> None:
        async with self._lock:
            current = self._state
            self._state = NotReady()
            self._token = None
        if isinstance(current, Ready):
            await current.client.aclose()
