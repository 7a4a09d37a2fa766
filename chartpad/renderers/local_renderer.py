"""Built-in SVG layout used when mermaid-cli is not available.

Flowcharts are laid out in layers (rank = longest path from a root) and
sequence diagrams as lifelines with arrows. Other diagram types are embedded
as labelled text so the preview still shows something meaningful.
"""
from __future__ import annotations

from typing import Dict, List
import xml.etree.ElementTree as ET

from chartpad.diagram.grammar import ParsedDiagram, parse_mermaid

_SVG_NS = "http://www.w3.org/2000/svg"

_NODE_W = 120
_NODE_H = 40
_GAP_MAJOR = 70
_GAP_MINOR = 40
_MARGIN = 20


def _svg_root(svg_id: str, width: float, height: float, role: str) -> ET.Element:
    root = ET.Element(
        "svg",
        xmlns=_SVG_NS,
        version="1.1",
        id=svg_id,
        width=str(int(width)),
        height=str(int(height)),
        viewBox=f"0 0 {int(width)} {int(height)}",
    )
    root.set("aria-roledescription", role)
    defs = ET.SubElement(root, "defs")
    marker = ET.SubElement(
        defs, "marker", id=f"{svg_id}-arrow", markerWidth="10", markerHeight="7", refX="10", refY="3.5", orient="auto"
    )
    ET.SubElement(marker, "path", d="M0,0 L10,3.5 L0,7 z")
    return root


def _svg_with_text(svg_id: str, role: str, body: str) -> str:
    lines = body.splitlines() or [""]
    root = _svg_root(svg_id, 600, 24 * len(lines) + 20, role)
    g = ET.SubElement(root, "g")
    for index, line in enumerate(lines[:200]):
        text = ET.SubElement(g, "text", x="10", y=str(24 * (index + 1)))
        text.text = line[:200]
    return ET.tostring(root, encoding="unicode")


def _ranks(diagram: ParsedDiagram) -> Dict[str, int]:
    rank = {node_id: 0 for node_id in diagram.nodes}
    # Bellman-style relaxation; bounded by node count so cycles terminate
    for _ in range(len(rank)):
        changed = False
        for edge in diagram.edges:
            if edge.source == edge.target:
                continue
            candidate = rank[edge.source] + 1
            if candidate > rank[edge.target] and candidate < len(rank):
                rank[edge.target] = candidate
                changed = True
        if not changed:
            break
    return rank


def render_flowchart(svg_id: str, diagram: ParsedDiagram) -> str:
    rank = _ranks(diagram)
    layers: Dict[int, List[str]] = {}
    for node_id in diagram.nodes:
        layers.setdefault(rank[node_id], []).append(node_id)
    if diagram.direction in {"BT", "RL"}:
        top = max(layers) if layers else 0
        layers = {top - level: ids for level, ids in layers.items()}

    horizontal = diagram.direction in {"LR", "RL"}
    widest = max((len(ids) for ids in layers.values()), default=1)
    depth = max(layers, default=0) + 1
    major = depth * (_NODE_W if horizontal else _NODE_H) + (depth - 1) * _GAP_MAJOR
    minor = widest * (_NODE_H if horizontal else _NODE_W) + (widest - 1) * _GAP_MINOR
    width = (major if horizontal else minor) + 2 * _MARGIN
    height = (minor if horizontal else major) + 2 * _MARGIN

    positions: Dict[str, tuple[float, float]] = {}
    for level, ids in layers.items():
        for index, node_id in enumerate(ids):
            offset = index * ((_NODE_H if horizontal else _NODE_W) + _GAP_MINOR)
            step = level * ((_NODE_W if horizontal else _NODE_H) + _GAP_MAJOR)
            if horizontal:
                positions[node_id] = (_MARGIN + step, _MARGIN + offset)
            else:
                positions[node_id] = (_MARGIN + offset, _MARGIN + step)

    root = _svg_root(svg_id, width, height, "flowchart-v2")
    edges_g = ET.SubElement(root, "g", {"class": "edgePaths"})
    for index, edge in enumerate(diagram.edges):
        sx, sy = positions[edge.source]
        tx, ty = positions[edge.target]
        if horizontal:
            x1, y1, x2, y2 = sx + _NODE_W, sy + _NODE_H / 2, tx, ty + _NODE_H / 2
        else:
            x1, y1, x2, y2 = sx + _NODE_W / 2, sy + _NODE_H, tx + _NODE_W / 2, ty
        attrs = {
            "id": f"L_{edge.source}_{edge.target}_{index}",
            "class": f"flowchart-link edge-{edge.style}",
            "x1": str(x1),
            "y1": str(y1),
            "x2": str(x2),
            "y2": str(y2),
            "marker-end": f"url(#{svg_id}-arrow)",
        }
        if edge.style == "dotted":
            attrs["stroke-dasharray"] = "3 3"
        ET.SubElement(edges_g, "line", attrs)
        if edge.label:
            label = ET.SubElement(
                edges_g, "text", {"class": "edgeLabel", "x": str((x1 + x2) / 2), "y": str((y1 + y2) / 2 - 4), "text-anchor": "middle"}
            )
            label.text = edge.label

    nodes_g = ET.SubElement(root, "g", {"class": "nodes"})
    for node_id, node in diagram.nodes.items():
        x, y = positions[node_id]
        g = ET.SubElement(nodes_g, "g", {"class": f"node {node.shape}", "id": f"flowchart-{node_id}"})
        rx = "20" if node.shape in {"rounded", "stadium", "circle", "double-circle"} else "4"
        ET.SubElement(g, "rect", x=str(x), y=str(y), width=str(_NODE_W), height=str(_NODE_H), rx=rx)
        text = ET.SubElement(g, "text", {"x": str(x + _NODE_W / 2), "y": str(y + _NODE_H / 2 + 4), "text-anchor": "middle"})
        text.text = node.label
    return ET.tostring(root, encoding="unicode")


def render_sequence(svg_id: str, diagram: ParsedDiagram) -> str:
    participants = diagram.actors or [""]
    margin = 60
    step_x = 160
    header_h = 30
    event_spacing = 40
    lifeline_h = max(1, len(diagram.messages)) * event_spacing + 40
    width = margin * 2 + step_x * (len(participants) - 1)
    root = _svg_root(svg_id, max(width, 200), lifeline_h + header_h + 40, "sequence")

    xs: Dict[str, float] = {}
    for index, name in enumerate(participants):
        x = margin + index * step_x
        xs[name] = x
        ET.SubElement(root, "rect", {"class": "actor", "x": str(x - 50), "y": "5", "width": "100", "height": "24", "rx": "6"})
        label = ET.SubElement(root, "text", {"x": str(x), "y": "22", "text-anchor": "middle"})
        label.text = name
        ET.SubElement(
            root,
            "line",
            {"class": "actor-line", "x1": str(x), "y1": str(header_h + 5), "x2": str(x), "y2": str(header_h + 5 + lifeline_h), "stroke-dasharray": "4 4"},
        )

    ey = header_h + 30
    for message in diagram.messages:
        sx = xs[message.source]
        tx = xs[message.target]
        attrs = {"class": "messageLine", "x1": str(sx), "y1": str(ey), "x2": str(tx), "y2": str(ey), "marker-end": f"url(#{svg_id}-arrow)"}
        if message.arrow.startswith("--"):
            attrs["stroke-dasharray"] = "3 3"
        ET.SubElement(root, "line", attrs)
        if message.text:
            label = ET.SubElement(root, "text", {"class": "messageText", "x": str((sx + tx) / 2), "y": str(ey - 6), "text-anchor": "middle"})
            label.text = message.text
        ey += event_spacing
    return ET.tostring(root, encoding="unicode")


def render_local_svg(svg_id: str, text: str) -> str:
    """Render Mermaid text without the Mermaid toolchain.

    Raises MermaidSyntaxError for text that does not parse, matching the
    engine's behaviour of failing the render.
    """
    diagram = parse_mermaid(text)
    if diagram.diagram_type == "flowchart":
        return render_flowchart(svg_id, diagram)
    if diagram.diagram_type == "sequence":
        return render_sequence(svg_id, diagram)
    return _svg_with_text(svg_id, diagram.diagram_type, "\n".join([diagram.header] + diagram.body))
