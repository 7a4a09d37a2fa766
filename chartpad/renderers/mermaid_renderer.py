"""Mermaid renderer using dockerized mermaid-cli, with a built-in fallback."""
from __future__ import annotations

import json
import logging
import re
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from chartpad.diagram.grammar import MermaidSyntaxError, ParsedDiagram, parse_mermaid
from chartpad.renderers.docker_client import DockerUnavailableError, run_docker_renderer
from chartpad.renderers.local_renderer import render_local_svg
from chartpad.utils.config import settings
from chartpad.utils.file_utils import read_text_file

logger = logging.getLogger(__name__)

_XML_DECL_RE = re.compile(r"<\?xml[^>]*\?>\s*")
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)

_CONFIG: Optional[Dict[str, Any]] = None
_INIT_LOCK = threading.Lock()


class MermaidRenderError(RuntimeError):
    """Raised when the Mermaid engine fails to produce an SVG."""


class MermaidNotInitializedError(RuntimeError):
    """Raised when rendering is attempted before initialize_mermaid()."""


def _base_config() -> Dict[str, Any]:
    return {
        "startOnLoad": False,
        "theme": settings.mermaid_theme,
        "securityLevel": "strict",
    }


def initialize_mermaid(**overrides: Any) -> Dict[str, Any]:
    """Configure the Mermaid engine once for the whole process.

    Later calls return the existing configuration unchanged.
    """
    global _CONFIG
    with _INIT_LOCK:
        if _CONFIG is None:
            config = _base_config()
            config.update(overrides)
            _CONFIG = config
            logger.info("Mermaid initialized (engine=%s, theme=%s)", settings.mermaid_engine, config["theme"])
        return dict(_CONFIG)


def is_initialized() -> bool:
    return _CONFIG is not None


def reset_mermaid() -> None:
    global _CONFIG
    with _INIT_LOCK:
        _CONFIG = None


def _normalize_svg(svg_text: str) -> str:
    svg_text = _XML_DECL_RE.sub("", svg_text)
    svg_text = _COMMENT_RE.sub("", svg_text)
    return svg_text.strip()


def _render_with_docker(svg_id: str, mermaid_text: str, config: Dict[str, Any]) -> str:
    with tempfile.TemporaryDirectory() as tmp_dir:
        workdir = Path(tmp_dir)
        (workdir / "input.mmd").write_text(mermaid_text, encoding="utf-8")
        (workdir / "config.json").write_text(json.dumps(config), encoding="utf-8")
        output_path = workdir / "output.svg"
        try:
            run_docker_renderer(
                settings.mermaid_renderer_image,
                workdir,
                ["-i", "input.mmd", "-o", "output.svg", "-c", "config.json", "-I", svg_id, "-q"],
                timeout=settings.render_timeout,
            )
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or b"").decode("utf-8", errors="ignore").strip()
            raise MermaidRenderError(detail[:300] or "mermaid-cli failed") from exc
        except subprocess.TimeoutExpired as exc:
            raise MermaidRenderError("mermaid-cli timed out") from exc
        if not output_path.exists():
            raise MermaidRenderError("mermaid-cli produced no output")
        return read_text_file(output_path)


def render_mermaid_svg(svg_id: str, mermaid_text: str) -> str:
    """Render Mermaid text to an SVG fragment whose root carries ``svg_id``."""
    if _CONFIG is None:
        raise MermaidNotInitializedError("initialize_mermaid() must run at startup before rendering")
    config = dict(_CONFIG)

    if settings.mermaid_engine == "docker":
        try:
            return _normalize_svg(_render_with_docker(svg_id, mermaid_text, config))
        except DockerUnavailableError:
            logger.warning("Docker not available; falling back to the built-in renderer")
    return _normalize_svg(render_local_svg(svg_id, mermaid_text))


def validate_mermaid(mermaid_text: str) -> ParsedDiagram:
    """Check Mermaid text before it is persisted.

    The built-in grammar runs first. With the docker engine the text is then
    parsed by mermaid-cli itself, whose failure is authoritative; when Docker
    is missing the built-in result stands.
    """
    diagram = parse_mermaid(mermaid_text)
    if settings.mermaid_engine != "docker":
        return diagram
    config = dict(_CONFIG) if _CONFIG is not None else _base_config()
    try:
        _render_with_docker("mermaid-validate", mermaid_text, config)
    except DockerUnavailableError:
        logger.debug("Docker not available; using built-in grammar only")
    except MermaidRenderError as exc:
        # a non-zero mmdc exit is a parse failure; timeouts stay render errors
        if isinstance(exc.__cause__, subprocess.CalledProcessError):
            raise MermaidSyntaxError(str(exc)) from exc
        raise
    return diagram
