"""CLI interface."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from chartpad.diagram.grammar import MermaidSyntaxError
from chartpad.renderers.mermaid_renderer import (
    MermaidRenderError,
    initialize_mermaid,
    render_mermaid_svg,
    validate_mermaid,
)
from chartpad.utils.config import settings
from chartpad.utils.file_utils import read_text_file, write_text_file
from chartpad.utils.log_config import configure_logging

app = typer.Typer(add_completion=False)


@app.command()
def validate(file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Mermaid source file.")):
    """Check a Mermaid file against the diagram grammar."""
    try:
        diagram = validate_mermaid(read_text_file(file))
    except MermaidSyntaxError as exc:
        typer.echo(json.dumps({"valid": False, "error": str(exc), "line": exc.line}))
        raise typer.Exit(code=1)
    except MermaidRenderError as exc:
        typer.echo(json.dumps({"valid": False, "error": str(exc), "line": None}))
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"valid": True, "diagram_type": diagram.diagram_type}))


@app.command()
def render(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Mermaid source file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="SVG destination; defaults to FILE with .svg."),
    svg_id: str = typer.Option("cli", "--id", help="Identifier used for the SVG root element."),
    engine: Optional[str] = typer.Option(None, "--engine", help="docker or local; overrides MERMAID_ENGINE."),
):
    """Render a Mermaid file to SVG."""
    if engine and engine not in ("docker", "local"):
        raise typer.BadParameter("engine must be docker or local", param_hint="--engine")
    configure_logging(settings.log_level)
    if engine:
        settings.mermaid_engine = engine
    initialize_mermaid()
    text = read_text_file(file).strip()
    try:
        svg = render_mermaid_svg(f"mermaid-{svg_id}", text)
    except (MermaidSyntaxError, MermaidRenderError) as exc:
        typer.echo(f"Error rendering chart: {exc}", err=True)
        raise typer.Exit(code=1)
    destination = output or file.with_suffix(".svg")
    write_text_file(destination, svg)
    typer.echo(str(destination))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Start the API server."""
    import uvicorn

    configure_logging(settings.log_level)
    uvicorn.run("chartpad.server:app", host=host, port=port, reload=reload, log_config=None)


if __name__ == "__main__":
    app()
