"""Core data models shared across archdiagram components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import GraphBuildFailure

RELATION_KINDS: Tuple[str, ...] = ("calls", "imports", "extends", "composes")


@dataclass(frozen=True)
class Symbol:
    """A named construct declared in a source file."""

    name: str
    qualified_name: str
    kind: str
    path: str
    line: int = 0
    aliases: Tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return symbol_id(self.qualified_name, self.kind)


@dataclass(frozen=True)
class Reference:
    """Outgoing reference from a declared symbol to a (possibly unresolved) name."""

    source: str
    target: str
    kind: str
    line: int = 0


@dataclass(frozen=True)
class SourceUnit:
    """One parsed file: declared symbols and outgoing references."""

    path: str
    content_hash: str
    language: str
    symbols: Tuple[Symbol, ...] = ()
    references: Tuple[Reference, ...] = ()

    @property
    def cache_key(self) -> str:
        return unit_cache_key(self.language, self.path, self.content_hash)


def symbol_id(qualified_name: str, kind: str) -> str:
    return f"{kind}:{qualified_name}"


def unit_cache_key(language: str, path: str, content_hash: str) -> str:
    return f"{language}:{path}:{content_hash}"


@dataclass
class ComponentMetrics:
    """Structural metrics computed per component."""

    fan_in: int = 0
    fan_out: int = 0
    size: int = 0
    in_cycle: bool = False


@dataclass
class Component:
    """Deduplicated architectural unit grouping one or more symbols."""

    id: str
    name: str
    kind: str
    qualified_name: str
    members: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    metrics: ComponentMetrics = field(default_factory=ComponentMetrics)


@dataclass
class DependencyEdge:
    """Directed, weighted relation between two components."""

    source: str
    target: str
    kind: str
    weight: int = 1


@dataclass
class ExternalDependency:
    """Reference that did not resolve to an in-repo symbol."""

    source: str
    target: str
    kind: str
    weight: int = 1


@dataclass
class ArchitectureGraph:
    """Components and dependency edges for one (project, commit) snapshot."""

    project_id: str
    commit: str
    components: List[Component] = field(default_factory=list)
    edges: List[DependencyEdge] = field(default_factory=list)
    external: List[ExternalDependency] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)

    def component(self, component_id: str) -> Optional[Component]:
        for component in self.components:
            if component.id == component_id:
                return component
        return None

    def component_ids(self) -> List[str]:
        return [component.id for component in self.components]

    def components_by_id(self) -> Dict[str, Component]:
        return {component.id: component for component in self.components}

    def file_components(self) -> Dict[str, List[str]]:
        """Map each contributing file path to the component ids it feeds."""
        mapping: Dict[str, List[str]] = {}
        for component in self.components:
            for path in component.files:
                mapping.setdefault(path, []).append(component.id)
        return mapping

    def validate(self) -> None:
        """Raise GraphBuildFailure when graph invariants do not hold."""
        seen: set[str] = set()
        for component in self.components:
            if component.id in seen:
                raise GraphBuildFailure(f"Duplicate component id '{component.id}'")
            seen.add(component.id)
        for edge in self.edges:
            if edge.source not in seen or edge.target not in seen:
                raise GraphBuildFailure(
                    f"Edge {edge.source} -> {edge.target} references an unknown component"
                )
            if edge.source == edge.target:
                raise GraphBuildFailure(f"Self-loop on component '{edge.source}'")


@dataclass
class PatternMatch:
    """Architectural pattern detected over a set of components."""

    pattern: str
    component_ids: Tuple[str, ...]
    confidence: float
    groups: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    detail: Dict[str, Any] = field(default_factory=dict)


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class FileChange:
    path: str
    kind: ChangeKind
    old_path: Optional[str] = None


@dataclass(frozen=True)
class ChangeSet:
    """Ordered file changes between two commits."""

    from_ref: str
    to_ref: str
    changes: Tuple[FileChange, ...] = ()

    def paths(self) -> List[str]:
        return [change.path for change in self.changes]


@dataclass
class ImpactResult:
    """Affected components with decayed impact scores."""

    scores: Dict[str, float] = field(default_factory=dict)
    directly_touched: List[str] = field(default_factory=list)
    hops: Dict[str, int] = field(default_factory=dict)
    total_score: float = 0.0
    affected_fraction: float = 0.0

    def affected_ids(self) -> List[str]:
        return sorted(self.scores)


@dataclass
class DiagramNode:
    component_id: str
    label: str
    kind: str
    diagram_id: Optional[str] = None
    layer: int = 0
    order: int = 0
    cluster: Optional[str] = None


@dataclass
class DiagramEdge:
    source: str
    target: str
    kind: str
    weight: int = 1


@dataclass
class DiagramCluster:
    id: str
    label: str
    pattern: str
    members: List[str] = field(default_factory=list)


@dataclass
class DiagramModel:
    """Abstract diagram: nodes, edges, clusters and layout hints."""

    project_id: str
    nodes: List[DiagramNode] = field(default_factory=list)
    edges: List[DiagramEdge] = field(default_factory=list)
    clusters: List[DiagramCluster] = field(default_factory=list)
    next_id: int = 1
    revision: int = 0
    regenerated: bool = False
    commit: Optional[str] = None

    def node_for(self, component_id: str) -> Optional[DiagramNode]:
        for node in self.nodes:
            if node.component_id == component_id:
                return node
        return None

    def component_ids(self) -> List[str]:
        return [node.component_id for node in self.nodes]


@dataclass
class Diagnostic:
    """Non-fatal condition collected during a run."""

    code: str
    message: str
    severity: str = "warning"
    path: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)


__all__ = [
    "ArchitectureGraph",
    "ChangeKind",
    "ChangeSet",
    "Component",
    "ComponentMetrics",
    "DependencyEdge",
    "Diagnostic",
    "DiagramCluster",
    "DiagramEdge",
    "DiagramModel",
    "DiagramNode",
    "ExternalDependency",
    "FileChange",
    "ImpactResult",
    "PatternMatch",
    "RELATION_KINDS",
    "Reference",
    "SourceUnit",
    "Symbol",
    "symbol_id",
    "unit_cache_key",
]
