"""Merges a freshly built diagram model into the persisted one."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set

from ..config import DiagramConfig
from ..logging import get_logger
from ..models import ArchitectureGraph, DiagramCluster, DiagramEdge, DiagramModel, DiagramNode
from .builder import visible_edges
from .layout import layout

_logger = get_logger("diagram.reconcile")


class DiagramReconciler:
    """Keeps stable diagram ids across runs.

    Nodes match on component id. Matched nodes keep their diagram id (always)
    and their layout hints (unless the run regenerates). Fresh ids come from
    the model's monotonically increasing counter, so an id is never reused.

    When ``graph`` is given, edges are recomputed from it over the final node
    set (in-scope plus carried nodes). Without it, only prior edges between
    two carried nodes survive next to the new model's own edges.
    """

    def __init__(self, config: Optional[DiagramConfig] = None) -> None:
        self.config = config or DiagramConfig()

    def reconcile(
        self,
        new_model: DiagramModel,
        prior_model: Optional[DiagramModel] = None,
        scope: Optional[Iterable[str]] = None,
        graph: Optional[ArchitectureGraph] = None,
    ) -> DiagramModel:
        if prior_model is None:
            counter = _assign_ids(new_model.nodes, {}, 1)
            new_model.next_id = counter
            new_model.revision = 1
            new_model.regenerated = True
            layout(new_model)
            _logger.info("No prior diagram for %s; laid out %d node(s)", new_model.project_id, len(new_model.nodes))
            return new_model

        scope_set: Optional[Set[str]] = set(scope) if scope is not None else None
        incoming = {node.component_id for node in new_model.nodes}
        prior_nodes = {node.component_id: node for node in prior_model.nodes}
        carried = [
            node
            for node in prior_model.nodes
            if scope_set is not None and node.component_id not in scope_set and node.component_id not in incoming
        ]
        carried_ids = {node.component_id for node in carried}

        unmatched = [node for node in new_model.nodes if node.component_id not in prior_nodes]
        fraction = len(unmatched) / len(new_model.nodes) if new_model.nodes else 0.0
        regenerate = fraction > self.config.regeneration_threshold

        stable_ids = {component_id: node.diagram_id for component_id, node in prior_nodes.items() if node.diagram_id}
        counter = _assign_ids(new_model.nodes, stable_ids, prior_model.next_id)

        if regenerate:
            nodes = sorted(
                [*new_model.nodes, *(replace(node) for node in carried)],
                key=lambda node: node.component_id,
            )
            model = DiagramModel(
                project_id=new_model.project_id,
                nodes=nodes,
                edges=self._edges(nodes, new_model, prior_model, carried_ids, graph),
                clusters=_clusters(nodes, [*prior_model.clusters, *new_model.clusters]),
                next_id=counter,
                revision=prior_model.revision + 1,
                regenerated=True,
                commit=new_model.commit,
            )
            layout(model)
            _logger.info(
                "Regenerated diagram for %s: %.0f%% of nodes unmatched", model.project_id, fraction * 100
            )
            return model

        merged: List[DiagramNode] = []
        for node in new_model.nodes:
            prior = prior_nodes.get(node.component_id)
            if prior is None:
                merged.append(node)
                continue
            prior.label = node.label
            prior.kind = node.kind
            prior.cluster = node.cluster
            merged.append(prior)
        merged.extend(carried)
        merged.sort(key=lambda node: node.component_id)

        prior_model.clusters = _clusters(merged, [*prior_model.clusters, *new_model.clusters])
        prior_model.nodes = merged
        prior_model.edges = self._edges(merged, new_model, prior_model, carried_ids, graph)
        prior_model.next_id = counter
        prior_model.revision += 1
        prior_model.regenerated = False
        prior_model.commit = new_model.commit
        _logger.info(
            "Reconciled diagram for %s: %d kept, %d added, %d carried",
            prior_model.project_id,
            len(new_model.nodes) - len(unmatched),
            len(unmatched),
            len(carried),
        )
        return prior_model

    def _edges(
        self,
        nodes: List[DiagramNode],
        new_model: DiagramModel,
        prior_model: DiagramModel,
        carried_ids: Set[str],
        graph: Optional[ArchitectureGraph],
    ) -> List[DiagramEdge]:
        if graph is not None:
            cluster_of = {node.component_id: node.cluster for node in nodes}
            return _dedupe_edges(visible_edges(graph.edges, cluster_of, self.config.visibility_threshold))
        edges = list(new_model.edges)
        edges.extend(
            edge for edge in prior_model.edges if edge.source in carried_ids and edge.target in carried_ids
        )
        return _dedupe_edges(edges)


def _assign_ids(nodes: List[DiagramNode], stable: Dict[str, str], counter: int) -> int:
    for node in sorted(nodes, key=lambda item: item.component_id):
        existing = stable.get(node.component_id)
        if existing is not None:
            node.diagram_id = existing
        else:
            node.diagram_id = f"n{counter}"
            counter += 1
    return counter


def _dedupe_edges(edges: List[DiagramEdge]) -> List[DiagramEdge]:
    unique: Dict[tuple[str, str, str], DiagramEdge] = {}
    for edge in edges:
        unique.setdefault((edge.source, edge.target, edge.kind), edge)
    return [unique[key] for key in sorted(unique)]


def _clusters(nodes: List[DiagramNode], definitions: List[DiagramCluster]) -> List[DiagramCluster]:
    by_id: Dict[str, DiagramCluster] = {}
    for definition in definitions:
        by_id[definition.id] = definition
    members: Dict[str, List[str]] = {}
    for node in nodes:
        if node.cluster is not None and node.cluster in by_id:
            members.setdefault(node.cluster, []).append(node.component_id)
    return [
        DiagramCluster(
            id=cluster_id,
            label=by_id[cluster_id].label,
            pattern=by_id[cluster_id].pattern,
            members=members[cluster_id],
        )
        for cluster_id in sorted(members)
    ]


__all__ = ["DiagramReconciler"]
