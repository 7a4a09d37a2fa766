"""Mermaid grammar checks used before a diagram is persisted.

The checker recognises every Mermaid diagram header. Flowchart, sequence,
pie, class, state and entity-relationship bodies are additionally checked
statement by statement, which is enough to reject free text and unbalanced
blocks and to give the local renderer a node/edge model to lay out. Other
diagram types are checked by mermaid-cli when the docker engine is active.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


class MermaidSyntaxError(ValueError):
    """Raised when diagram text does not parse as Mermaid."""

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message if line is None else f"Line {line}: {message}")
        self.line = line


@dataclass
class FlowNode:
    id: str
    label: str
    shape: str = "rect"


@dataclass
class FlowEdge:
    source: str
    target: str
    label: Optional[str] = None
    style: str = "solid"


@dataclass
class SequenceMessage:
    source: str
    target: str
    arrow: str
    text: str


@dataclass
class ParsedDiagram:
    diagram_type: str
    header: str
    direction: Optional[str] = None
    nodes: Dict[str, FlowNode] = field(default_factory=dict)
    edges: List[FlowEdge] = field(default_factory=list)
    subgraphs: List[str] = field(default_factory=list)
    actors: List[str] = field(default_factory=list)
    messages: List[SequenceMessage] = field(default_factory=list)
    body: List[str] = field(default_factory=list)


# header keyword -> canonical diagram type
_DIAGRAM_TYPES: Dict[str, str] = {
    "graph": "flowchart",
    "flowchart": "flowchart",
    "flowchart-elk": "flowchart",
    "sequencediagram": "sequence",
    "classdiagram": "class",
    "classdiagram-v2": "class",
    "statediagram": "state",
    "statediagram-v2": "state",
    "erdiagram": "er",
    "gantt": "gantt",
    "pie": "pie",
    "journey": "journey",
    "gitgraph": "gitGraph",
    "mindmap": "mindmap",
    "timeline": "timeline",
    "quadrantchart": "quadrant",
    "requirementdiagram": "requirement",
    "c4context": "c4",
    "c4container": "c4",
    "c4component": "c4",
    "c4dynamic": "c4",
    "c4deployment": "c4",
    "sankey-beta": "sankey",
    "xychart-beta": "xychart",
    "block-beta": "block",
    "packet-beta": "packet",
    "kanban": "kanban",
    "architecture-beta": "architecture",
}

_DIRECTIONS = {"TD", "TB", "LR", "RL", "BT"}

_FRONT_MATTER_RE = re.compile(r"\A\s*---\s*\n.*?\n---\s*(?:\n|\Z)", re.DOTALL)

# Shape delimiters, longest openers first so "((" wins over "(".
_NODE_SHAPES: Tuple[Tuple[str, str, str], ...] = (
    ("(((", ")))", "double-circle"),
    ("((", "))", "circle"),
    ("([", "])", "stadium"),
    ("[[", "]]", "subroutine"),
    ("[(", ")]", "cylinder"),
    ("{{", "}}", "hexagon"),
    ("[/", "/]", "parallelogram"),
    ("[\\", "\\]", "parallelogram-alt"),
    ("[/", "\\]", "trapezoid"),
    ("[\\", "/]", "trapezoid-alt"),
    (">", "]", "asymmetric"),
    ("{", "}", "diamond"),
    ("(", ")", "rounded"),
    ("[", "]", "rect"),
)
_NODE_ID_RE = re.compile(r"[\w$]+", re.UNICODE)
_CLASS_SHORTHAND_RE = re.compile(r"^:::([\w-]+)")
_NODE_META_RE = re.compile(r"^@\{[^}]*\}")

_LINK_END = r"(?:-{2,}[>ox]|-{3,}|={2,}[>ox]|={3,}|\.+-[>ox]?|-\.+-[>ox]?)"
_PLAIN_LINK_RE = re.compile(r"^[<ox]?(?:-{2,}[>ox]|-{3,}|={2,}[>ox]|={3,}|-\.+-[>ox]?|~{3,})")
_TEXT_LINK_RE = re.compile(r"^[<ox]?(?P<open>--|==|-\.)\s*(?P<text>[^|]+?)\s*" + _LINK_END)
_PIPE_LABEL_RE = re.compile(r"^\|(?P<text>[^|]*)\|")

_FLOW_DIRECTIVES: Tuple[re.Pattern[str], ...] = (
    re.compile(r"^classDef\s+[\w,-]+\s+.+$"),
    re.compile(r"^class\s+[\w,-]+\s+[\w-]+$"),
    re.compile(r"^style\s+[\w-]+\s+.+$"),
    re.compile(r"^linkStyle\s+(?:default|[\d,\s]+)\s+.+$"),
    re.compile(r"^click\s+[\w-]+\s+.+$"),
    re.compile(r"^accTitle\s*:.*$"),
    re.compile(r"^accDescr\s*[:{].*$"),
    re.compile(r"^title\s+.+$"),
)

_SEQ_ARROWS = ("<<-->>", "<<->>", "-->>", "->>", "-->", "->", "--x", "-x", "--)", "-)")
_SEQ_MESSAGE_RE = re.compile(
    r"^(?P<src>[^\s:<>+-][^:<>]*?)\s*(?P<arrow>"
    + "|".join(re.escape(a) for a in _SEQ_ARROWS)
    + r")\s*[+-]?\s*(?P<tgt>[^:<>+-][^:]*?)\s*:(?P<text>.*)$"
)
_SEQ_PARTICIPANT_RE = re.compile(r"^(?:create\s+)?(?:participant|actor)\s+(?P<name>[^\s]+)(?:\s+as\s+.+)?$", re.IGNORECASE)
_SEQ_NOTE_RE = re.compile(r"^note\s+(?:left of|right of|over)\s+[^:]+:.*$", re.IGNORECASE)
_SEQ_SIMPLE_RE = re.compile(
    r"^(?:autonumber(?:\s+.*)?|title\s*:?.*|activate\s+\S+|deactivate\s+\S+|destroy\s+\S+|"
    r"links?\s+\S+\s*:.*|properties\s+\S+\s*:.*|details\s+\S+\s*:.*|accTitle\s*:.*|accDescr\s*:.*)$",
    re.IGNORECASE,
)
_SEQ_BLOCK_OPEN_RE = re.compile(r"^(?:loop|alt|opt|par|critical|break|rect|box)\b.*$", re.IGNORECASE)
_SEQ_BLOCK_BRANCH_RE = re.compile(r"^(?:else|and|option)\b.*$", re.IGNORECASE)


def _source_lines(text: str) -> List[Tuple[int, str]]:
    """Return (line number, stripped line) pairs without comments or blanks."""
    body = (text or "").replace("\r", "")
    front = _FRONT_MATTER_RE.match(body)
    offset = 0
    if front:
        offset = body[: front.end()].count("\n")
        body = body[front.end():]
    lines: List[Tuple[int, str]] = []
    for number, raw in enumerate(body.split("\n"), start=1 + offset):
        line = raw.strip()
        if not line or line.startswith("%%"):
            continue
        lines.append((number, line))
    return lines


def _split_header(line: str) -> Tuple[str, str]:
    token, _, rest = line.partition(" ")
    token = token.rstrip(";")
    return token, rest.strip()


def detect_diagram_type(text: str) -> Optional[str]:
    """Return the canonical diagram type named by the header, if any."""
    lines = _source_lines(text)
    if not lines:
        return None
    token, _ = _split_header(lines[0][1].split(";", 1)[0])
    return _DIAGRAM_TYPES.get(token.lower())


def parse_mermaid(text: str) -> ParsedDiagram:
    """Parse Mermaid text, raising MermaidSyntaxError when it is not valid."""
    lines = _source_lines(text)
    if not lines:
        raise MermaidSyntaxError("Diagram text is empty")

    number, header_line = lines[0]
    head, _, inline = header_line.partition(";")
    token, rest = _split_header(head.strip())
    diagram_type = _DIAGRAM_TYPES.get(token.lower())
    if diagram_type is None:
        raise MermaidSyntaxError(f'No diagram type detected for "{token}"', number)

    if diagram_type == "flowchart":
        body = list(lines[1:])
        if inline.strip():
            body.insert(0, (number, inline.strip()))
        return _parse_flowchart(header_line, rest, number, body)
    if diagram_type == "sequence":
        if rest:
            raise MermaidSyntaxError(f'Unexpected text after header: "{rest}"', number)
        return _parse_sequence(header_line, lines[1:])
    if diagram_type == "pie":
        return _parse_pie(header_line, rest, number, lines[1:])
    if diagram_type in {"class", "state", "er"}:
        if rest:
            raise MermaidSyntaxError(f'Unexpected text after header: "{rest}"', number)
        parser = {"class": _parse_class, "state": _parse_state, "er": _parse_er}[diagram_type]
        return parser(header_line, lines[1:])
    # remaining types are only checked by mermaid-cli (see validate_mermaid)
    return ParsedDiagram(diagram_type=diagram_type, header=header_line, body=[line for _, line in lines[1:]])


# ---------------------------------------------------------------------------
# Flowchart
# ---------------------------------------------------------------------------

def _parse_flowchart(header: str, rest: str, number: int, lines: List[Tuple[int, str]]) -> ParsedDiagram:
    direction = "TD"
    if rest:
        candidate = rest.upper()
        if candidate not in _DIRECTIONS:
            raise MermaidSyntaxError(f'Invalid direction "{rest}"', number)
        direction = "TD" if candidate in {"TD", "TB"} else candidate
    diagram = ParsedDiagram(diagram_type="flowchart", header=header, direction=direction)

    depth = 0
    for number, line in lines:
        for statement in (s.strip() for s in line.split(";")):
            if not statement:
                continue
            diagram.body.append(statement)
            if statement.startswith("subgraph ") or statement == "subgraph":
                label = statement[len("subgraph"):].strip()
                if not label:
                    raise MermaidSyntaxError("Subgraph requires an id or title", number)
                diagram.subgraphs.append(label)
                depth += 1
                continue
            if statement == "end":
                if depth == 0:
                    raise MermaidSyntaxError('"end" without an open subgraph', number)
                depth -= 1
                continue
            if re.match(r"^direction\s+\w+$", statement):
                if statement.split()[1].upper() not in _DIRECTIONS:
                    raise MermaidSyntaxError(f'Invalid direction in "{statement}"', number)
                continue
            if any(pattern.match(statement) for pattern in _FLOW_DIRECTIVES):
                continue
            _parse_chain(statement, number, diagram)

    if depth:
        raise MermaidSyntaxError("Unclosed subgraph", lines[-1][0] if lines else number)
    return diagram


def _consume_node(text: str, number: int, diagram: ParsedDiagram) -> Tuple[str, str]:
    match = _NODE_ID_RE.match(text)
    if not match or not match.group(0):
        raise MermaidSyntaxError(f'Expected a node near "{text[:30]}"', number)
    node_id = match.group(0)
    if node_id == "end":
        raise MermaidSyntaxError('"end" cannot be used as a node id', number)
    remaining = text[match.end():]

    label = None
    shape = "rect"
    for opener, closer, shape_name in _NODE_SHAPES:
        if not remaining.startswith(opener):
            continue
        inner = remaining[len(opener):]
        if inner.startswith('"'):
            close_quote = inner.find('"', 1)
            if close_quote == -1:
                raise MermaidSyntaxError("Unterminated quoted label", number)
            if not inner[close_quote + 1:].startswith(closer):
                continue
            label = inner[1:close_quote]
            remaining = inner[close_quote + 1 + len(closer):]
        else:
            end = inner.find(closer)
            if end == -1:
                continue
            label = inner[:end]
            if any(ch in label for ch in "[]{}") and shape_name not in {"parallelogram", "parallelogram-alt", "trapezoid", "trapezoid-alt"}:
                raise MermaidSyntaxError(f'Unbalanced shape in node "{node_id}"', number)
            remaining = inner[end + len(closer):]
        shape = shape_name
        break
    else:
        if remaining[:1] in {"[", "(", "{"}:
            raise MermaidSyntaxError(f'Unclosed shape for node "{node_id}"', number)

    meta = _NODE_META_RE.match(remaining)
    if meta:
        remaining = remaining[meta.end():]
    klass = _CLASS_SHORTHAND_RE.match(remaining)
    if klass:
        remaining = remaining[klass.end():]

    existing = diagram.nodes.get(node_id)
    if existing is None:
        diagram.nodes[node_id] = FlowNode(id=node_id, label=(label if label is not None else node_id).strip(), shape=shape)
    elif label is not None:
        existing.label = label.strip()
        existing.shape = shape
    return node_id, remaining.strip()


def _consume_group(text: str, number: int, diagram: ParsedDiagram) -> Tuple[List[str], str]:
    node_id, remaining = _consume_node(text, number, diagram)
    ids = [node_id]
    while remaining.startswith("&"):
        node_id, remaining = _consume_node(remaining[1:].strip(), number, diagram)
        ids.append(node_id)
    return ids, remaining


def _consume_link(text: str) -> Optional[Tuple[str, Optional[str], str]]:
    match = _PLAIN_LINK_RE.match(text)
    label: Optional[str] = None
    if match:
        op = match.group(0)
        remaining = text[match.end():].strip()
        pipe = _PIPE_LABEL_RE.match(remaining)
        if pipe:
            label = pipe.group("text").strip() or None
            remaining = remaining[pipe.end():].strip()
        return op, label, remaining
    match = _TEXT_LINK_RE.match(text)
    if match:
        return match.group("open"), match.group("text").strip(), text[match.end():].strip()
    return None


def _link_style(op: str) -> str:
    if "." in op:
        return "dotted"
    if "=" in op:
        return "thick"
    if "~" in op:
        return "invisible"
    return "solid"


def _parse_chain(statement: str, number: int, diagram: ParsedDiagram) -> None:
    sources, remaining = _consume_group(statement, number, diagram)
    while remaining:
        link = _consume_link(remaining)
        if link is None:
            raise MermaidSyntaxError(f'Unexpected text "{remaining[:30]}"', number)
        op, label, remaining = link
        if not remaining:
            raise MermaidSyntaxError("Link is missing a target node", number)
        targets, remaining = _consume_group(remaining, number, diagram)
        for source in sources:
            for target in targets:
                diagram.edges.append(FlowEdge(source=source, target=target, label=label, style=_link_style(op)))
        sources = targets


# ---------------------------------------------------------------------------
# Sequence
# ---------------------------------------------------------------------------

def _add_actor(diagram: ParsedDiagram, name: str) -> None:
    if name not in diagram.actors:
        diagram.actors.append(name)


def _parse_sequence(header: str, lines: List[Tuple[int, str]]) -> ParsedDiagram:
    diagram = ParsedDiagram(diagram_type="sequence", header=header)
    depth = 0
    for number, line in lines:
        diagram.body.append(line)
        participant = _SEQ_PARTICIPANT_RE.match(line)
        if participant:
            _add_actor(diagram, participant.group("name"))
            continue
        message = _SEQ_MESSAGE_RE.match(line)
        if message:
            source = message.group("src").strip()
            target = message.group("tgt").strip()
            _add_actor(diagram, source)
            _add_actor(diagram, target)
            diagram.messages.append(
                SequenceMessage(source=source, target=target, arrow=message.group("arrow"), text=message.group("text").strip())
            )
            continue
        if _SEQ_NOTE_RE.match(line) or _SEQ_SIMPLE_RE.match(line):
            continue
        if _SEQ_BLOCK_OPEN_RE.match(line):
            depth += 1
            continue
        if _SEQ_BLOCK_BRANCH_RE.match(line):
            if depth == 0:
                raise MermaidSyntaxError(f'"{line.split()[0]}" outside of a block', number)
            continue
        if line.lower() == "end":
            if depth == 0:
                raise MermaidSyntaxError('"end" without an open block', number)
            depth -= 1
            continue
        raise MermaidSyntaxError(f'Unrecognised statement "{line[:40]}"', number)
    if depth:
        raise MermaidSyntaxError("Unclosed block", lines[-1][0])
    return diagram


# ---------------------------------------------------------------------------
# Pie, class, state and entity-relationship bodies
# ---------------------------------------------------------------------------

_ACC_RE = re.compile(r"^(?:accTitle\s*:.*|accDescr\s*[:{].*)$")

_PIE_HEADER_RE = re.compile(r"^(?:showData)?\s*(?:title\s+.+)?$")
_PIE_SLICE_RE = re.compile(r'^"[^"]*"\s*:\s*\d+(?:\.\d+)?$')
_PIE_STATEMENT_RE = re.compile(r"^(?:title\s+.+|showData)$")

_CLASS_ID = r"(?:`[^`]+`|[A-Za-z_][\w~]*)"
_CLASS_RELATION_RE = re.compile(
    r"^" + _CLASS_ID + r'\s*(?:"[^"]*"\s*)?'
    r"(?:<\|?|\*|o|\(\))?(?:--|\.\.)(?:\|?>|\*|o|\(\))?"
    r'\s*(?:"[^"]*"\s*)?' + _CLASS_ID + r"\s*(?::.*)?$"
)
_CLASS_DECL_RE = re.compile(
    r"^class\s+" + _CLASS_ID + r'(?:\["[^"]*"\])?(?::::[\w-]+)?\s*(?P<open>\{)?\s*(?P<close>\})?$'
)
_CLASS_MEMBER_RE = re.compile(r"^" + _CLASS_ID + r"\s*:\s*.+$")
_CLASS_STATEMENT_RE = re.compile(
    r"^(?:direction\s+(?:TB|TD|BT|LR|RL)|<<[^>]+>>\s*" + _CLASS_ID + r"|note\s+(?:for\s+" + _CLASS_ID + r"\s+)?\"[^\"]*\"|"
    r"classDef\s+\S+\s+.+|cssClass\s+\"[^\"]+\"\s+\S+|style\s+\S+\s+.+|(?:click|link|callback)\s+\S+\s+.+)$"
)
_NAMESPACE_RE = re.compile(r"^namespace\s+[\w.]+\s*\{$")

_STATE_ID = r"(?:\[\*\]|\w[\w.]*)"
_STATE_TRANSITION_RE = re.compile(
    r"^" + _STATE_ID + r"(?::::[\w-]+)?\s*-->\s*" + _STATE_ID + r"(?::::[\w-]+)?\s*(?::.*)?$"
)
_STATE_DECL_RE = re.compile(
    r'^state\s+(?:"[^"]*"\s+as\s+)?\w[\w.]*(?:\s*<<(?:fork|join|choice)>>)?(?:\s*:\s*.+)?\s*(?P<open>\{)?$'
)
_STATE_DESCRIPTION_RE = re.compile(r"^\w[\w.]*(?::::[\w-]+)?\s*(?::\s*.*)?$")
_STATE_NOTE_RE = re.compile(r"^note\s+(?:left|right)\s+of\s+\w[\w.]*(?P<inline>\s*:.*)?$")
_STATE_STATEMENT_RE = re.compile(
    r"^(?:direction\s+(?:TB|TD|BT|LR|RL)|--|hide\s+empty\s+description|scale\s+\d+\s+\w+|"
    r"classDef\s+\S+\s+.+|class\s+[\w,]+\s+[\w-]+|style\s+\S+\s+.+)$"
)

_ER_ENTITY = r'(?:\w[\w-]*|"[^"]+")'
_ER_RELATION_RE = re.compile(
    r"^" + _ER_ENTITY + r"\s*(?:\|o|\|\||\}o|\}\|)(?:--|\.\.)(?:o\||\|\||o\{|\|\{)\s*" + _ER_ENTITY + r"\s*:\s*.+$"
)
_ER_BLOCK_RE = re.compile(r'^\w[\w-]*(?:\["[^"]*"\])?\s*\{(?P<close>\s*\})?$')
_ER_ENTITY_RE = re.compile(r"^\w[\w-]*$")
_ER_ATTRIBUTE_RE = re.compile(
    r'^[\w()\[\],-]+\s+[\w*-]+(?:\s+(?:PK|FK|UK)(?:\s*,\s*(?:PK|FK|UK))*)?(?:\s+"[^"]*")?$'
)


def _unrecognised(line: str, number: int) -> MermaidSyntaxError:
    return MermaidSyntaxError(f'Unrecognised statement "{line[:40]}"', number)


def _parse_pie(header: str, rest: str, number: int, lines: List[Tuple[int, str]]) -> ParsedDiagram:
    if not _PIE_HEADER_RE.match(rest):
        raise MermaidSyntaxError(f'Unexpected text after header: "{rest}"', number)
    diagram = ParsedDiagram(diagram_type="pie", header=header)
    for number, line in lines:
        if not (_PIE_SLICE_RE.match(line) or _PIE_STATEMENT_RE.match(line) or _ACC_RE.match(line)):
            raise _unrecognised(line, number)
        diagram.body.append(line)
    return diagram


def _parse_class(header: str, lines: List[Tuple[int, str]]) -> ParsedDiagram:
    diagram = ParsedDiagram(diagram_type="class", header=header)
    in_class = False
    namespaces = 0
    for number, line in lines:
        diagram.body.append(line)
        if in_class:
            # member declarations are free-form until the closing brace
            if line == "}":
                in_class = False
            elif "{" in line or "}" in line:
                raise _unrecognised(line, number)
            continue
        declaration = _CLASS_DECL_RE.match(line)
        if declaration:
            in_class = bool(declaration.group("open")) and not declaration.group("close")
            continue
        if _NAMESPACE_RE.match(line):
            namespaces += 1
            continue
        if line == "}":
            if namespaces == 0:
                raise MermaidSyntaxError('"}" without an open block', number)
            namespaces -= 1
            continue
        if (
            _CLASS_RELATION_RE.match(line)
            or _CLASS_MEMBER_RE.match(line)
            or _CLASS_STATEMENT_RE.match(line)
            or _ACC_RE.match(line)
        ):
            continue
        raise _unrecognised(line, number)
    if in_class or namespaces:
        raise MermaidSyntaxError("Unclosed block", lines[-1][0])
    return diagram


def _parse_state(header: str, lines: List[Tuple[int, str]]) -> ParsedDiagram:
    diagram = ParsedDiagram(diagram_type="state", header=header)
    depth = 0
    in_note = False
    for number, line in lines:
        diagram.body.append(line)
        if in_note:
            if line.lower() == "end note":
                in_note = False
            continue
        note = _STATE_NOTE_RE.match(line)
        if note:
            in_note = not note.group("inline")
            continue
        declaration = _STATE_DECL_RE.match(line)
        if declaration:
            if declaration.group("open"):
                depth += 1
            continue
        if line == "}":
            if depth == 0:
                raise MermaidSyntaxError('"}" without an open state', number)
            depth -= 1
            continue
        if (
            _STATE_TRANSITION_RE.match(line)
            or _STATE_STATEMENT_RE.match(line)
            or _STATE_DESCRIPTION_RE.match(line)
            or _ACC_RE.match(line)
        ):
            continue
        raise _unrecognised(line, number)
    if depth or in_note:
        raise MermaidSyntaxError("Unclosed block", lines[-1][0])
    return diagram


def _parse_er(header: str, lines: List[Tuple[int, str]]) -> ParsedDiagram:
    diagram = ParsedDiagram(diagram_type="er", header=header)
    in_entity = False
    for number, line in lines:
        diagram.body.append(line)
        if in_entity:
            if line == "}":
                in_entity = False
            elif not _ER_ATTRIBUTE_RE.match(line):
                raise MermaidSyntaxError(f'Invalid attribute "{line[:40]}"', number)
            continue
        block = _ER_BLOCK_RE.match(line)
        if block:
            in_entity = not block.group("close")
            continue
        if line == "}":
            raise MermaidSyntaxError('"}" without an open entity', number)
        if (
            _ER_RELATION_RE.match(line)
            or _ER_ENTITY_RE.match(line)
            or re.match(r"^direction\s+(?:TB|TD|BT|LR|RL)$", line)
            or _ACC_RE.match(line)
        ):
            continue
        raise _unrecognised(line, number)
    if in_entity:
        raise MermaidSyntaxError("Unclosed entity block", lines[-1][0])
    return diagram



def is_valid_mermaid(text: str) -> bool:
    try:
        parse_mermaid(text)
    except MermaidSyntaxError:
        return False
    return True
