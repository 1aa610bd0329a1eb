"""Built-in architectural pattern rules.

Each rule is a pure function ``(graph, config) -> list[PatternMatch]``. Rules
only read the graph; an empty list means the pattern is absent.
"""

from __future__ import annotations

from collections import defaultdict
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..config import PatternConfig
from ..graph.cycles import cyclic_groups, to_digraph
from ..graph.grouping import tokens
from ..models import ArchitectureGraph, Component, PatternMatch

PatternRule = Callable[[ArchitectureGraph, PatternConfig], List[PatternMatch]]

CLUSTER_PATTERNS = ("layered", "microservice")

_LAYER_RANK = {"ui": 0, "api": 0, "service": 1, "data": 2, "infrastructure": 3, "utility": 3}
_LAYER_NAMES = {0: "presentation", 1: "service", 2: "data", 3: "infrastructure"}
_SERVICE_ROOTS = {"services", "apps", "packages", "modules", "microservices"}


def detect_layered(graph: ArchitectureGraph, config: PatternConfig) -> List[PatternMatch]:
    rank = {
        component.id: _LAYER_RANK[component.kind]
        for component in graph.components
        if component.kind in _LAYER_RANK
    }
    layers: Dict[int, List[str]] = defaultdict(list)
    for component_id, layer in rank.items():
        layers[layer].append(component_id)
    if len(layers) < 3:
        return []

    cross = [
        edge
        for edge in graph.edges
        if edge.source in rank and edge.target in rank and rank[edge.source] != rank[edge.target]
    ]
    if not cross:
        return []
    downward = sum(1 for edge in cross if rank[edge.source] < rank[edge.target])
    back_fraction = 1.0 - downward / len(cross)
    if back_fraction > config.layered_back_edge_tolerance:
        return []

    groups = {_LAYER_NAMES[layer]: tuple(sorted(members)) for layer, members in sorted(layers.items())}
    return [
        PatternMatch(
            pattern="layered",
            component_ids=tuple(sorted(rank)),
            confidence=round(downward / len(cross), 4),
            groups=groups,
            detail={"cross_layer_edges": len(cross), "back_edges": len(cross) - downward},
        )
    ]


def detect_repository(graph: ArchitectureGraph, config: PatternConfig) -> List[PatternMatch]:
    components = graph.components_by_id()
    matches: List[PatternMatch] = []
    for component in graph.components:
        if component.kind != "data" and "repository" not in tokens(component.name):
            continue
        incoming = [edge for edge in graph.edges if edge.target == component.id]
        outgoing = [edge for edge in graph.edges if edge.source == component.id]
        clients = sorted(
            {edge.source for edge in incoming if components[edge.source].kind == "service"}
        )
        if len(clients) < config.repository_min_service_fan_in:
            continue
        if any(components[edge.target].kind != "data" for edge in outgoing):
            continue
        service_share = sum(1 for edge in incoming if edge.source in clients) / len(incoming)
        matches.append(
            PatternMatch(
                pattern="repository",
                component_ids=tuple([component.id, *clients]),
                confidence=round(service_share, 4),
                groups={"repository": (component.id,), "clients": tuple(clients)},
                detail={"fan_in": len(incoming), "fan_out": len(outgoing)},
            )
        )
    return matches


def detect_microservices(graph: ArchitectureGraph, config: PatternConfig) -> List[PatternMatch]:
    roots: Dict[str, str] = {}
    for component in graph.components:
        root = service_root(component)
        if root is not None:
            roots[component.id] = root
    members: Dict[str, List[str]] = defaultdict(list)
    for component_id, root in roots.items():
        members[root].append(component_id)
    if len(members) < 2:
        return []

    touching = [edge for edge in graph.edges if edge.source in roots and edge.target in roots]
    internal = sum(1 for edge in touching if roots[edge.source] == roots[edge.target])
    confidence = internal / len(touching) if touching else 1.0
    return [
        PatternMatch(
            pattern="microservice",
            component_ids=tuple(sorted(roots)),
            confidence=round(confidence, 4),
            groups={root: tuple(sorted(ids)) for root, ids in sorted(members.items())},
            detail={"services": len(members), "cross_service_edges": len(touching) - internal},
        )
    ]


def detect_hubs(graph: ArchitectureGraph, config: PatternConfig) -> List[PatternMatch]:
    total = len(graph.components)
    if total < 4:
        return []
    neighbours: Dict[str, Set[str]] = defaultdict(set)
    for edge in graph.edges:
        neighbours[edge.source].add(edge.target)
        neighbours[edge.target].add(edge.source)
    matches: List[PatternMatch] = []
    for component in graph.components:
        degree = len(neighbours[component.id])
        share = degree / (total - 1)
        if degree >= 2 and share >= config.hub_degree_fraction:
            matches.append(
                PatternMatch(
                    pattern="hub",
                    component_ids=(component.id,),
                    confidence=round(share, 4),
                    groups={"neighbours": tuple(sorted(neighbours[component.id]))},
                    detail={"degree": degree},
                )
            )
    return matches


def detect_cycles(graph: ArchitectureGraph, config: PatternConfig) -> List[PatternMatch]:
    digraph = to_digraph(graph.component_ids(), graph.edges)
    return [
        PatternMatch(
            pattern="dependency_cycle",
            component_ids=tuple(group),
            confidence=1.0,
            detail={"size": len(group)},
        )
        for group in cyclic_groups(digraph)
    ]


def service_root(component: Component) -> Optional[str]:
    """Return ``services/<name>`` style roots shared by all of a component's files."""
    found: Set[str] = set()
    for path in component.files:
        parts = PurePosixPath(path).parts
        if len(parts) > 2 and parts[0] in _SERVICE_ROOTS:
            found.add(f"{parts[0]}/{parts[1]}")
        else:
            return None
    return found.pop() if len(found) == 1 else None


BUILTIN_RULES: Dict[str, PatternRule] = {
    "layered": detect_layered,
    "repository": detect_repository,
    "microservice": detect_microservices,
    "hub": detect_hubs,
    "dependency_cycle": detect_cycles,
}


def select_rules(enabled: Sequence[str] | None) -> Dict[str, PatternRule]:
    if not enabled:
        return dict(BUILTIN_RULES)
    unknown = sorted(set(enabled) - set(BUILTIN_RULES))
    if unknown:
        raise ValueError(f"Unknown pattern rules requested: {', '.join(unknown)}")
    return {name: rule for name, rule in BUILTIN_RULES.items() if name in enabled}


__all__ = [
    "BUILTIN_RULES",
    "CLUSTER_PATTERNS",
    "PatternRule",
    "detect_cycles",
    "detect_hubs",
    "detect_layered",
    "detect_microservices",
    "detect_repository",
    "select_rules",
    "service_root",
]
