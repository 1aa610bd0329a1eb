"""JSON-compatible encoding of persisted models."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

from ..models import (
    ArchitectureGraph,
    Component,
    ComponentMetrics,
    DependencyEdge,
    DiagramCluster,
    DiagramEdge,
    DiagramModel,
    DiagramNode,
    ExternalDependency,
    Reference,
    SourceUnit,
    Symbol,
)


def unit_to_dict(unit: SourceUnit) -> Dict[str, Any]:
    data = asdict(unit)
    for symbol in data["symbols"]:
        symbol["aliases"] = list(symbol["aliases"])
    return data


def unit_from_dict(payload: object) -> Optional[SourceUnit]:
    if not isinstance(payload, dict):
        return None
    path = payload.get("path")
    content_hash = payload.get("content_hash")
    language = payload.get("language")
    if not isinstance(path, str) or not isinstance(content_hash, str) or not isinstance(language, str):
        return None
    symbols = tuple(
        Symbol(
            name=str(item.get("name", "")),
            qualified_name=str(item.get("qualified_name", "")),
            kind=str(item.get("kind", "")),
            path=str(item.get("path", path)),
            line=int(item.get("line", 0)),
            aliases=tuple(str(alias) for alias in item.get("aliases", ())),
        )
        for item in payload.get("symbols", [])
        if isinstance(item, dict)
    )
    references = tuple(
        Reference(
            source=str(item.get("source", "")),
            target=str(item.get("target", "")),
            kind=str(item.get("kind", "")),
            line=int(item.get("line", 0)),
        )
        for item in payload.get("references", [])
        if isinstance(item, dict)
    )
    return SourceUnit(
        path=path,
        content_hash=content_hash,
        language=language,
        symbols=symbols,
        references=references,
    )


def graph_to_dict(graph: ArchitectureGraph) -> Dict[str, Any]:
    return asdict(graph)


def graph_from_dict(payload: Dict[str, Any]) -> ArchitectureGraph:
    components = [
        Component(
            id=item["id"],
            name=item["name"],
            kind=item["kind"],
            qualified_name=item["qualified_name"],
            members=list(item.get("members", [])),
            files=list(item.get("files", [])),
            metrics=ComponentMetrics(**item.get("metrics", {})),
        )
        for item in payload.get("components", [])
    ]
    return ArchitectureGraph(
        project_id=payload["project_id"],
        commit=payload["commit"],
        components=components,
        edges=[DependencyEdge(**item) for item in payload.get("edges", [])],
        external=[ExternalDependency(**item) for item in payload.get("external", [])],
        files=dict(payload.get("files", {})),
    )


def diagram_to_dict(model: DiagramModel) -> Dict[str, Any]:
    return asdict(model)


def diagram_from_dict(payload: Dict[str, Any]) -> DiagramModel:
    return DiagramModel(
        project_id=payload["project_id"],
        nodes=[DiagramNode(**item) for item in payload.get("nodes", [])],
        edges=[DiagramEdge(**item) for item in payload.get("edges", [])],
        clusters=[
            DiagramCluster(
                id=item["id"],
                label=item["label"],
                pattern=item["pattern"],
                members=list(item.get("members", [])),
            )
            for item in payload.get("clusters", [])
        ],
        next_id=int(payload.get("next_id", 1)),
        revision=int(payload.get("revision", 0)),
        regenerated=bool(payload.get("regenerated", False)),
        commit=payload.get("commit"),
    )


__all__ = [
    "diagram_from_dict",
    "diagram_to_dict",
    "graph_from_dict",
    "graph_to_dict",
    "unit_from_dict",
    "unit_to_dict",
]
