"""Display slots that turn Mermaid text into SVG markup asynchronously."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from chartpad.renderers.mermaid_renderer import render_mermaid_svg

logger = logging.getLogger(__name__)

ERROR_MARKUP = '<div class="text-red-500">Error rendering chart</div>'

RenderFn = Callable[[str, str], str]


@dataclass
class RenderSlot:
    identifier: str
    text: str = ""
    markup: str = ""
    error: Optional[str] = None
    generation: int = 0

    @property
    def svg_id(self) -> str:
        return f"mermaid-{self.identifier}"


class DiagramRenderer:
    """Renders text into named slots, one in-flight render per slot.

    A new request for a slot clears its markup and cancels the render it
    supersedes, so output always corresponds to the latest request.
    """

    def __init__(self, render: RenderFn = render_mermaid_svg) -> None:
        self._render = render
        self._slots: Dict[str, RenderSlot] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def request(self, identifier: str, text: str) -> asyncio.Task:
        slot = self._slots.setdefault(identifier, RenderSlot(identifier))
        slot.text = text
        slot.markup = ""
        slot.error = None
        slot.generation += 1

        previous = self._tasks.pop(identifier, None)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.debug("Cancelled superseded render [%s]", identifier)

        task = asyncio.get_running_loop().create_task(
            self._run(slot, slot.generation, text), name=f"render:{identifier}"
        )
        self._tasks[identifier] = task
        task.add_done_callback(lambda done, key=identifier: self._forget(key, done))
        return task

    def _forget(self, identifier: str, task: asyncio.Task) -> None:
        if self._tasks.get(identifier) is task:
            del self._tasks[identifier]

    async def _run(self, slot: RenderSlot, generation: int, text: str) -> None:
        # yield once so the caller's response is not held up by scheduling
        await asyncio.sleep(0)
        logger.debug("Rendering Mermaid chart [%s]", slot.identifier)
        try:
            svg = await asyncio.to_thread(self._render, slot.svg_id, text)
        except Exception as exc:
            if generation != slot.generation:
                return
            logger.error("Mermaid render error [%s]: %s", slot.identifier, exc)
            slot.markup = ERROR_MARKUP
            slot.error = str(exc)
            return
        if generation != slot.generation:
            return
        slot.markup = svg

    def slot(self, identifier: str) -> Optional[RenderSlot]:
        return self._slots.get(identifier)

    def markup(self, identifier: str) -> str:
        slot = self._slots.get(identifier)
        return slot.markup if slot else ""

    def identifiers(self) -> List[str]:
        return list(self._slots)

    def pending(self, identifier: str) -> bool:
        task = self._tasks.get(identifier)
        return task is not None and not task.done()

    def discard(self, identifier: str) -> None:
        task = self._tasks.pop(identifier, None)
        if task is not None and not task.done():
            task.cancel()
        self._slots.pop(identifier, None)

    async def wait(self, identifier: str) -> str:
        task = self._tasks.get(identifier)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.markup(identifier)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def close(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()
        self._slots.clear()
