"""In-process registry of open editor screens."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from chartpad.renderers.diagram_renderer import DiagramRenderer
from chartpad.services.editor_service import EditorScreen
from chartpad.services.identity import AuthSession
from chartpad.services.session_provider import SessionProvider

logger = logging.getLogger(__name__)


class EditorRegistry:
    """Open editors keyed by id.

    Editors untouched for ``idle_timeout`` seconds are closed by
    ``evict_idle``; ``None`` keeps them until they are closed explicitly.
    """

    def __init__(
        self,
        *,
        chart_scope: str = "all",
        idle_timeout: Optional[float] = None,
        provider_factory: Callable[[], SessionProvider] = SessionProvider,
        renderer_factory: Callable[[], DiagramRenderer] = DiagramRenderer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._chart_scope = chart_scope
        self._idle_timeout = idle_timeout
        self._provider_factory = provider_factory
        self._renderer_factory = renderer_factory
        self._clock = clock
        self._screens: Dict[str, EditorScreen] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    async def open(self, session: Optional[AuthSession], initial_draft: Optional[str] = None) -> EditorScreen:
        kwargs = {"initial_draft": initial_draft} if initial_draft is not None else {}
        screen = EditorScreen(
            self._provider_factory(),
            self._renderer_factory(),
            chart_scope=self._chart_scope,
            **kwargs,
        )
        with self._lock:
            self._screens[screen.id] = screen
            self._last_seen[screen.id] = self._clock()
        logger.info("Editor %s opened", screen.id)
        await screen.start()
        await screen.provider.observe(session)
        return screen

    def get(self, editor_id: str) -> EditorScreen:
        with self._lock:
            screen = self._screens.get(editor_id)
            if screen is None:
                raise KeyError(editor_id)
            self._last_seen[editor_id] = self._clock()
        return screen

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._screens)

    async def evict_idle(self) -> List[str]:
        if not self._idle_timeout:
            return []
        cutoff = self._clock() - self._idle_timeout
        with self._lock:
            stale = [editor_id for editor_id, seen in self._last_seen.items() if seen < cutoff]
            screens = [self._screens.pop(editor_id) for editor_id in stale]
            for editor_id in stale:
                del self._last_seen[editor_id]
        for editor_id, screen in zip(stale, screens):
            await screen.close()
            logger.info("Editor %s closed after %.0fs idle", editor_id, self._idle_timeout)
        return stale

    async def close(self, editor_id: str) -> None:
        with self._lock:
            screen = self._screens.pop(editor_id, None)
            self._last_seen.pop(editor_id, None)
        if screen is None:
            raise KeyError(editor_id)
        await screen.close()
        logger.info("Editor %s closed", editor_id)

    async def close_all(self) -> None:
        with self._lock:
            screens = list(self._screens.values())
            self._screens.clear()
            self._last_seen.clear()
        for screen in screens:
            await screen.close()
