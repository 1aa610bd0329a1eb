"""Projects an architecture graph and its patterns into a diagram model."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import DiagramConfig
from ..logging import get_logger
from ..models import (
    ArchitectureGraph,
    DependencyEdge,
    DiagramCluster,
    DiagramEdge,
    DiagramModel,
    DiagramNode,
    PatternMatch,
)
from ..patterns.rules import CLUSTER_PATTERNS
from .layout import layout

_logger = get_logger("diagram")


class DiagramModelBuilder:
    def __init__(self, config: Optional[DiagramConfig] = None) -> None:
        self.config = config or DiagramConfig()

    def build(
        self,
        graph: ArchitectureGraph,
        matches: Sequence[PatternMatch] = (),
        scope: Optional[Iterable[str]] = None,
    ) -> DiagramModel:
        """Build nodes for in-scope components; ``scope=None`` means every component."""
        known = graph.component_ids()
        in_scope = set(known) if scope is None else set(scope) & set(known)

        membership = cluster_membership(matches)
        nodes = [
            DiagramNode(
                component_id=component.id,
                label=component.name,
                kind=component.kind,
                cluster=membership[component.id][0] if component.id in membership else None,
            )
            for component in graph.components
            if component.id in in_scope
        ]

        clusters: Dict[str, DiagramCluster] = {}
        for node in nodes:
            if node.cluster is None:
                continue
            cluster_id, label, pattern = membership[node.component_id]
            cluster = clusters.setdefault(cluster_id, DiagramCluster(id=cluster_id, label=label, pattern=pattern))
            cluster.members.append(node.component_id)

        cluster_of = {node.component_id: node.cluster for node in nodes}
        scoped_edges = [
            edge for edge in graph.edges if edge.source in in_scope and edge.target in in_scope
        ]
        edges = visible_edges(scoped_edges, cluster_of, self.config.visibility_threshold)

        model = DiagramModel(
            project_id=graph.project_id,
            nodes=nodes,
            edges=edges,
            clusters=[clusters[key] for key in sorted(clusters)],
            commit=graph.commit,
        )
        layout(model, scoped_edges)
        _logger.debug(
            "Diagram model: %d nodes, %d edges, %d clusters", len(nodes), len(edges), len(model.clusters)
        )
        return model


def visible_edges(
    edges: Iterable[DependencyEdge],
    cluster_of: Dict[str, Optional[str]],
    threshold: int,
) -> List[DiagramEdge]:
    """Diagram edges between nodes in ``cluster_of`` that pass the visibility rule.

    An edge is shown when its weight reaches ``threshold`` or when it crosses
    a cluster boundary.
    """
    return [
        DiagramEdge(source=edge.source, target=edge.target, kind=edge.kind, weight=edge.weight)
        for edge in edges
        if edge.source in cluster_of
        and edge.target in cluster_of
        and (edge.weight >= threshold or cluster_of[edge.source] != cluster_of[edge.target])
    ]


def cluster_membership(matches: Sequence[PatternMatch]) -> Dict[str, Tuple[str, str, str]]:
    """Map component id to (cluster id, label, pattern) from its best cluster-eligible match."""
    best: Dict[str, Tuple[float, int, str, str, str]] = {}
    for match in matches:
        if match.pattern not in CLUSTER_PATTERNS:
            continue
        preference = CLUSTER_PATTERNS.index(match.pattern)
        for group_name, members in sorted(match.groups.items()):
            cluster_id = f"{match.pattern}:{group_name}"
            label = group_name.rsplit("/", 1)[-1]
            for component_id in members:
                candidate = (match.confidence, -preference, cluster_id, label, match.pattern)
                current = best.get(component_id)
                if current is None or candidate[:2] > current[:2]:
                    best[component_id] = candidate
    return {component_id: entry[2:] for component_id, entry in best.items()}


__all__ = ["DiagramModelBuilder", "cluster_membership", "visible_edges"]
