"""Editor screen: draft text, live preview and the list of saved charts."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional
from uuid import uuid4

from chartpad.diagram.grammar import MermaidSyntaxError
from chartpad.renderers.diagram_renderer import DiagramRenderer
from chartpad.renderers.mermaid_renderer import MermaidRenderError, validate_mermaid
from chartpad.services.session_provider import ClientState, Ready, SessionProvider
from chartpad.store.base import StoreError

logger = logging.getLogger(__name__)

LIVE_PREVIEW = "live-preview"
MODAL_PREVIEW = "modal-preview"
DEFAULT_DRAFT = "graph TD"


def saved_slot(index: int) -> str:
    return f"saved-chart-{index}"


class EditorScreen:
    """View-state of one editor page.

    ``draft`` is what the user is typing, ``rendered`` is what the live
    preview shows, ``selected`` is the saved chart opened in the modal.
    Nothing here is persisted except through ``save``.
    """

    def __init__(
        self,
        provider: SessionProvider,
        renderer: Optional[DiagramRenderer] = None,
        *,
        chart_scope: str = "all",
        initial_draft: str = DEFAULT_DRAFT,
        editor_id: Optional[str] = None,
    ) -> None:
        self.id = editor_id or uuid4().hex
        self.provider = provider
        self.renderer = renderer or DiagramRenderer()
        self.chart_scope = chart_scope
        self.draft = initial_draft
        self.rendered = initial_draft
        self.selected: Optional[str] = None
        self.saved: List[str] = []
        self.modal_open = False
        self._unsubscribe = provider.subscribe(self._on_client_state)

    @property
    def state(self) -> ClientState:
        return self.provider.state

    async def start(self) -> None:
        self.renderer.request(LIVE_PREVIEW, self.rendered)
        if isinstance(self.state, Ready):
            await self.fetch()

    async def _on_client_state(self, state: ClientState) -> None:
        await self.fetch()

    def set_draft(self, text: str) -> None:
        self.draft = text

    async def run(self) -> None:
        self.rendered = self.draft.strip()
        self.renderer.request(LIVE_PREVIEW, self.rendered)

    async def save(self) -> bool:
        state = self.state
        if not isinstance(state, Ready):
            logger.warning("Store client or user not ready; save skipped")
            return False

        try:
            await asyncio.to_thread(validate_mermaid, self.draft)
        except MermaidSyntaxError as exc:
            logger.warning("Invalid Mermaid syntax: %s", exc)
            return False
        except MermaidRenderError as exc:
            logger.warning("Mermaid validation unavailable; save skipped: %s", exc)
            return False

        content = self.draft.strip()
        try:
            record = await state.client.insert_chart(content, state.user_id)
        except StoreError as exc:
            logger.error("Error saving chart: %s", exc)
            return False

        logger.info("Chart saved: id=%s user=%s", record.id, state.user_id)
        self.saved = [content] + self.saved
        self._render_saved()
        return True

    async def fetch(self) -> bool:
        state = self.state
        if not isinstance(state, Ready):
            return False

        owner = state.user_id if self.chart_scope == "user" else None
        try:
            records = await state.client.list_charts(user_id=owner)
        except StoreError as exc:
            logger.error("Error fetching charts: %s", exc)
            return False

        self.saved = [record.content.strip() for record in records]
        self._render_saved()
        return True

    async def select(self, index: int) -> str:
        if index < 0 or index >= len(self.saved):
            raise IndexError(f"No saved chart at index {index}")
        self.selected = self.saved[index]
        self.modal_open = True
        self.renderer.request(MODAL_PREVIEW, self.selected)
        return self.selected

    def close_modal(self) -> None:
        self.modal_open = False

    def _render_saved(self) -> None:
        for index, chart in enumerate(self.saved):
            self.renderer.request(saved_slot(index), chart)
        stale = len(self.saved)
        while self.renderer.slot(saved_slot(stale)) is not None:
            self.renderer.discard(saved_slot(stale))
            stale += 1

    async def close(self) -> None:
        self._unsubscribe()
        self.renderer.close()
        await self.provider.close()
