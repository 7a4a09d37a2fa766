import subprocess

import pytest

from chartpad.diagram.grammar import MermaidSyntaxError
from chartpad.renderers import docker_client, mermaid_renderer
from chartpad.utils import config


def test_render_requires_explicit_initialization():
    with pytest.raises(mermaid_renderer.MermaidNotInitializedError):
        mermaid_renderer.render_mermaid_svg("mermaid-x", "graph TD\nA-->B")


def test_initialize_is_idempotent():
    first = mermaid_renderer.initialize_mermaid(theme="forest")
    second = mermaid_renderer.initialize_mermaid(theme="dark")
    assert first == second
    assert first["startOnLoad"] is False
    assert first["theme"] == "forest"
    assert mermaid_renderer.is_initialized()


def test_local_engine_renders_svg():
    mermaid_renderer.initialize_mermaid()
    svg = mermaid_renderer.render_mermaid_svg("mermaid-live-preview", "graph TD\nA-->B")
    assert svg.startswith("<svg")
    assert 'id="mermaid-live-preview"' in svg


def test_docker_engine_falls_back_when_docker_missing(monkeypatch):
    monkeypatch.setattr(config.settings, "mermaid_engine", "docker")
    monkeypatch.setattr(docker_client, "docker_available", lambda: False)
    mermaid_renderer.initialize_mermaid()
    svg = mermaid_renderer.render_mermaid_svg("mermaid-a", "graph TD\nA-->B")
    assert "flowchart-A" in svg


def test_docker_engine_uses_mermaid_cli_output(monkeypatch):
    calls = {}

    def fake_run(image, workdir, command, timeout=None):
        calls["image"] = image
        calls["command"] = command
        calls["config"] = (workdir / "config.json").read_text(encoding="utf-8")
        (workdir / "output.svg").write_text(
            '<?xml version="1.0"?><!-- mermaid --><svg id="mermaid-a"><g/></svg>', encoding="utf-8"
        )

    monkeypatch.setattr(config.settings, "mermaid_engine", "docker")
    monkeypatch.setattr(mermaid_renderer, "run_docker_renderer", fake_run)
    mermaid_renderer.initialize_mermaid()

    svg = mermaid_renderer.render_mermaid_svg("mermaid-a", "graph TD\nA-->B")

    assert svg == '<svg id="mermaid-a"><g/></svg>'
    assert calls["image"] == config.settings.mermaid_renderer_image
    assert calls["command"][calls["command"].index("-I") + 1] == "mermaid-a"
    assert '"startOnLoad": false' in calls["config"]


def test_docker_engine_failure_raises_render_error(monkeypatch):
    def failing_run(image, workdir, command, timeout=None):
        raise subprocess.CalledProcessError(1, ["docker"], stderr=b"Parse error on line 1")

    monkeypatch.setattr(config.settings, "mermaid_engine", "docker")
    monkeypatch.setattr(mermaid_renderer, "run_docker_renderer", failing_run)
    mermaid_renderer.initialize_mermaid()

    with pytest.raises(mermaid_renderer.MermaidRenderError) as excinfo:
        mermaid_renderer.render_mermaid_svg("mermaid-a", "not a diagram")
    assert "Parse error" in str(excinfo.value)


def test_validate_uses_built_in_grammar_for_local_engine():
    assert mermaid_renderer.validate_mermaid("graph TD\nA-->B").diagram_type == "flowchart"
    with pytest.raises(MermaidSyntaxError):
        mermaid_renderer.validate_mermaid("pie\n)))((( garbage !!")


def test_validate_rejects_what_mermaid_cli_rejects(monkeypatch):
    def failing_run(image, workdir, command, timeout=None):
        raise subprocess.CalledProcessError(1, ["docker"], stderr=b"Parse error on line 2")

    monkeypatch.setattr(config.settings, "mermaid_engine", "docker")
    monkeypatch.setattr(mermaid_renderer, "run_docker_renderer", failing_run)

    with pytest.raises(MermaidSyntaxError) as excinfo:
        mermaid_renderer.validate_mermaid("gantt\n  what is this")
    assert "Parse error" in str(excinfo.value)


def test_validate_accepts_when_mermaid_cli_succeeds(monkeypatch):
    calls = []

    def fake_run(image, workdir, command, timeout=None):
        calls.append(command)
        (workdir / "output.svg").write_text("<svg/>", encoding="utf-8")

    monkeypatch.setattr(config.settings, "mermaid_engine", "docker")
    monkeypatch.setattr(mermaid_renderer, "run_docker_renderer", fake_run)

    assert mermaid_renderer.validate_mermaid("gantt\n  title Plan").diagram_type == "gantt"
    assert len(calls) == 1


def test_validate_falls_back_to_grammar_without_docker(monkeypatch):
    monkeypatch.setattr(config.settings, "mermaid_engine", "docker")
    monkeypatch.setattr(docker_client, "docker_available", lambda: False)
    assert mermaid_renderer.validate_mermaid("graph TD\nA-->B").diagram_type == "flowchart"


def test_validate_timeout_stays_a_render_error(monkeypatch):
    def slow_run(image, workdir, command, timeout=None):
        raise subprocess.TimeoutExpired(["docker"], timeout)

    monkeypatch.setattr(config.settings, "mermaid_engine", "docker")
    monkeypatch.setattr(mermaid_renderer, "run_docker_renderer", slow_run)
    with pytest.raises(mermaid_renderer.MermaidRenderError):
        mermaid_renderer.validate_mermaid("graph TD\nA-->B")
