"""Deterministic Mermaid rendering of diagram models."""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Dict, List, Sequence

from ..config import DIAGRAM_TYPES
from ..models import DiagramModel, DiagramNode

_SHAPES = {
    "ui": ('[/"', '"/]'),
    "api": ('(["', '"])'),
    "service": ('["', '"]'),
    "data": ('[("', '")]'),
    "infrastructure": ('{{"', '"}}'),
    "utility": ('("', '")'),
    "test": ('>"', '"]'),
}
_DEFAULT_SHAPE = ('["', '"]')

_CLASS_STYLES = {
    "ui": "fill:#e3f2fd,stroke:#1565c0",
    "api": "fill:#ede7f6,stroke:#4527a0",
    "service": "fill:#e8f5e9,stroke:#2e7d32",
    "data": "fill:#fff8e1,stroke:#ff8f00",
    "infrastructure": "fill:#eceff1,stroke:#455a64",
    "utility": "fill:#f5f5f5,stroke:#9e9e9e",
    "test": "fill:#fce4ec,stroke:#ad1457",
}

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_]")
_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n(.*?)\n?```\s*$", re.DOTALL)


class MermaidRenderer:
    """Emits ``flowchart`` markup; output depends only on the model and diagram type."""

    def render(self, model: DiagramModel, diagram_type: str = "component") -> str:
        if diagram_type not in DIAGRAM_TYPES:
            raise ValueError(f"Unsupported diagram type '{diagram_type}'")
        if diagram_type == "dependency":
            return self._render_dependency(model)
        return self._render_component(model)

    def _render_component(self, model: DiagramModel) -> str:
        refs = node_refs(model)
        nodes = _ordered(model.nodes)
        lines = ["flowchart TB"]

        grouped: Dict[str, List[DiagramNode]] = defaultdict(list)
        loose: List[DiagramNode] = []
        for node in nodes:
            if node.cluster is not None:
                grouped[node.cluster].append(node)
            else:
                loose.append(node)
        for cluster in sorted(model.clusters, key=lambda item: item.id):
            members = grouped.get(cluster.id)
            if not members:
                continue
            lines.append(f'    subgraph {_safe_id(cluster.id)}["{_escape(cluster.label)}"]')
            for node in members:
                lines.append(f"        {_node_line(node, refs)}")
            lines.append("    end")
        known_clusters = {cluster.id for cluster in model.clusters}
        for cluster_id in sorted(set(grouped) - known_clusters):
            loose.extend(grouped[cluster_id])
        for node in _ordered(loose):
            lines.append(f"    {_node_line(node, refs)}")

        for edge in sorted(model.edges, key=lambda item: (refs.get(item.source, ""), refs.get(item.target, ""), item.kind)):
            if edge.source in refs and edge.target in refs:
                lines.append(f"    {refs[edge.source]} -->|{edge.kind}| {refs[edge.target]}")

        by_kind: Dict[str, List[str]] = defaultdict(list)
        for node in nodes:
            if node.kind in _CLASS_STYLES:
                by_kind[node.kind].append(refs[node.component_id])
        for kind in sorted(by_kind):
            lines.append(f"    classDef {kind} {_CLASS_STYLES[kind]}")
            lines.append(f"    class {','.join(by_kind[kind])} {kind}")
        return "\n".join(lines) + "\n"

    def _render_dependency(self, model: DiagramModel) -> str:
        refs = node_refs(model)
        lines = ["flowchart LR"]
        for node in _ordered(model.nodes):
            lines.append(f'    {refs[node.component_id]}["{_escape(node.label)}"]')
        for edge in sorted(model.edges, key=lambda item: (refs.get(item.source, ""), refs.get(item.target, ""), item.kind)):
            if edge.source in refs and edge.target in refs:
                label = edge.kind if edge.weight == 1 else f"{edge.kind} x{edge.weight}"
                lines.append(f'    {refs[edge.source]} -->|"{label}"| {refs[edge.target]}')
        return "\n".join(lines) + "\n"


def node_refs(model: DiagramModel) -> Dict[str, str]:
    """Map component ids to Mermaid node identifiers (stable diagram ids when assigned)."""
    return {node.component_id: node.diagram_id or _safe_id(node.component_id) for node in model.nodes}


def strip_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE.match(stripped)
    return match.group(1).strip() if match else stripped


def validate_markup(markup: str, model: DiagramModel) -> List[str]:
    """Return problems that make ``markup`` unusable for ``model`` (empty when valid)."""
    problems: List[str] = []
    lines = [line.strip() for line in markup.splitlines() if line.strip()]
    if not lines or not lines[0].startswith(("flowchart", "graph")):
        problems.append("markup must start with a flowchart declaration")
    opened = sum(1 for line in lines if line.startswith("subgraph"))
    closed = sum(1 for line in lines if line == "end")
    if opened != closed:
        problems.append("unbalanced subgraph blocks")
    body = "\n".join(lines)
    missing = [ref for ref in node_refs(model).values() if not re.search(rf"\b{re.escape(ref)}\b", body)]
    if missing:
        problems.append(f"missing node(s): {', '.join(sorted(missing))}")
    return problems


def _ordered(nodes: Sequence[DiagramNode]) -> List[DiagramNode]:
    return sorted(nodes, key=lambda node: (node.layer, node.order, node.component_id))


def _node_line(node: DiagramNode, refs: Dict[str, str]) -> str:
    opening, closing = _SHAPES.get(node.kind, _DEFAULT_SHAPE)
    return f"{refs[node.component_id]}{opening}{_escape(node.label)}{closing}"


def _escape(text: str) -> str:
    return text.replace('"', "#quot;")


def _safe_id(value: str) -> str:
    return _UNSAFE_ID.sub("_", value)


__all__ = ["MermaidRenderer", "node_refs", "strip_fences", "validate_markup"]
