"""REST API server."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request

from chartpad.diagram.grammar import MermaidSyntaxError
from chartpad.renderers.mermaid_renderer import (
    MermaidRenderError,
    initialize_mermaid,
    render_mermaid_svg,
    validate_mermaid,
)
from chartpad.schemas import (
    DiagramText,
    DraftUpdate,
    EditorCreate,
    EditorView,
    EditorWaitingView,
    PreviewResponse,
    RenderResponse,
    ValidationResponse,
)
from chartpad.services.editor_registry import EditorRegistry
from chartpad.services.editor_service import LIVE_PREVIEW, MODAL_PREVIEW, EditorScreen, saved_slot
from chartpad.services.identity import AuthSession, IdentityClient, IdentityError, bearer_token
from chartpad.services.session_provider import Ready
from chartpad.utils.config import settings

logger = logging.getLogger(__name__)

ViewResponse = Union[EditorView, EditorWaitingView]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    initialize_mermaid()
    app.state.registry = EditorRegistry(chart_scope=settings.chart_scope, idle_timeout=settings.editor_idle_timeout)
    app.state.identity = IdentityClient(settings.auth_userinfo_url, timeout=settings.http_timeout)
    try:
        yield
    finally:
        await app.state.registry.close_all()
        await app.state.identity.aclose()


app = FastAPI(title="chartpad", description="Mermaid editor with live previews and saved charts", lifespan=lifespan)


@app.get("/")
async def index():
    return {"status": "ok", "service": "chartpad"}


@app.get("/health")
async def health():
    return {"status": "ok"}


def get_registry(request: Request) -> EditorRegistry:
    return request.app.state.registry


async def get_auth_session(request: Request) -> Optional[AuthSession]:
    token = bearer_token(request.headers.get("Authorization"))
    if token is None:
        return None
    try:
        return await request.app.state.identity.resolve(token)
    except IdentityError as exc:
        logger.error("Identity lookup failed: %s", exc)
        return None


async def _screen(editor_id: str, session: Optional[AuthSession], registry: EditorRegistry) -> EditorScreen:
    await registry.evict_idle()
    try:
        screen = registry.get(editor_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Editor not found")
    await screen.provider.observe(session)
    return screen


def _preview(screen: EditorScreen, identifier: str) -> PreviewResponse:
    slot = screen.renderer.slot(identifier)
    return PreviewResponse(
        identifier=identifier,
        svg_id=f"mermaid-{identifier}",
        text=slot.text if slot else "",
        markup=slot.markup if slot else "",
        error=slot.error if slot else None,
        pending=screen.renderer.pending(identifier),
    )


async def _view(screen: EditorScreen, wait: bool) -> ViewResponse:
    if wait:
        await screen.renderer.drain()
    state = screen.state
    if not isinstance(state, Ready):
        return EditorWaitingView(editor_id=screen.id)
    modal = None
    if screen.modal_open and screen.selected:
        modal = _preview(screen, MODAL_PREVIEW)
    return EditorView(
        editor_id=screen.id,
        user_id=state.user_id,
        draft=screen.draft,
        rendered=screen.rendered,
        saved=list(screen.saved),
        modal_open=screen.modal_open,
        selected=screen.selected,
        preview=_preview(screen, LIVE_PREVIEW),
        saved_previews=[_preview(screen, saved_slot(index)) for index in range(len(screen.saved))],
        modal=modal,
    )


@app.post("/api/editors", response_model=ViewResponse, status_code=201)
async def open_editor(
    payload: Optional[EditorCreate] = None,
    wait: bool = True,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    await registry.evict_idle()
    screen = await registry.open(session, initial_draft=payload.draft if payload else None)
    return await _view(screen, wait)


@app.get("/api/editors/{editor_id}", response_model=ViewResponse)
async def editor_detail(
    editor_id: str,
    wait: bool = True,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    screen = await _screen(editor_id, session, registry)
    return await _view(screen, wait)


@app.put("/api/editors/{editor_id}/draft", response_model=ViewResponse)
async def update_draft(
    editor_id: str,
    payload: DraftUpdate,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    screen = await _screen(editor_id, session, registry)
    screen.set_draft(payload.text)
    return await _view(screen, wait=False)


@app.post("/api/editors/{editor_id}/run", response_model=ViewResponse)
async def run_draft(
    editor_id: str,
    wait: bool = True,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    screen = await _screen(editor_id, session, registry)
    await screen.run()
    return await _view(screen, wait)


@app.post("/api/editors/{editor_id}/save", response_model=ViewResponse)
async def save_draft(
    editor_id: str,
    wait: bool = True,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    screen = await _screen(editor_id, session, registry)
    await screen.save()
    return await _view(screen, wait)


@app.post("/api/editors/{editor_id}/refresh", response_model=ViewResponse)
async def refresh_charts(
    editor_id: str,
    wait: bool = True,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    screen = await _screen(editor_id, session, registry)
    await screen.fetch()
    return await _view(screen, wait)


@app.post("/api/editors/{editor_id}/select/{index}", response_model=ViewResponse)
async def select_chart(
    editor_id: str,
    index: int,
    wait: bool = True,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    screen = await _screen(editor_id, session, registry)
    try:
        await screen.select(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="Saved chart not found")
    return await _view(screen, wait)


@app.post("/api/editors/{editor_id}/close", response_model=ViewResponse)
async def close_modal(
    editor_id: str,
    session: Optional[AuthSession] = Depends(get_auth_session),
    registry: EditorRegistry = Depends(get_registry),
):
    screen = await _screen(editor_id, session, registry)
    screen.close_modal()
    return await _view(screen, wait=False)


@app.delete("/api/editors/{editor_id}", status_code=204)
async def close_editor(editor_id: str, registry: EditorRegistry = Depends(get_registry)):
    try:
        await registry.close(editor_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Editor not found")


@app.post("/api/validate", response_model=ValidationResponse)
def validate_diagram(payload: DiagramText):
    try:
        diagram = validate_mermaid(payload.text)
    except MermaidSyntaxError as exc:
        return ValidationResponse(valid=False, error=str(exc), line=exc.line)
    except MermaidRenderError as exc:
        return ValidationResponse(valid=False, error=str(exc))
    return ValidationResponse(valid=True, diagram_type=diagram.diagram_type)


@app.post("/api/render", response_model=RenderResponse)
async def render_diagram(payload: DiagramText):
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Diagram text is empty")
    svg_id = f"mermaid-{payload.id}"
    try:
        svg = await asyncio.to_thread(render_mermaid_svg, svg_id, payload.text.strip())
    except (MermaidSyntaxError, MermaidRenderError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return RenderResponse(svg_id=svg_id, svg=svg)
