"""Pydantic schemas for API."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class EditorCreate(BaseModel):
    draft: Optional[str] = None


class DraftUpdate(BaseModel):
    text: str


class DiagramText(BaseModel):
    text: str
    id: str = Field(default="render", pattern=r"^[A-Za-z0-9_-]+$")


class PreviewResponse(BaseModel):
    identifier: str
    svg_id: str
    text: str
    markup: str
    error: Optional[str] = None
    pending: bool = False


class EditorView(BaseModel):
    editor_id: str
    ready: bool = True
    user_id: str
    draft: str
    rendered: str
    saved: List[str]
    modal_open: bool
    selected: Optional[str] = None
    preview: PreviewResponse
    saved_previews: List[PreviewResponse]
    modal: Optional[PreviewResponse] = None


class EditorWaitingView(BaseModel):
    editor_id: str
    ready: bool = False
    message: str = "...Loading"


class ValidationResponse(BaseModel):
    valid: bool
    diagram_type: Optional[str] = None
    error: Optional[str] = None
    line: Optional[int] = None


class RenderResponse(BaseModel):
    svg_id: str
    svg: str
