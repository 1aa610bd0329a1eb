"""Top-to-bottom layering hints for diagram nodes."""

from __future__ import annotations

from typing import Iterable, List, Tuple

from ..graph.cycles import acyclic_projection, layer_index, to_digraph
from ..models import DependencyEdge, DiagramEdge, DiagramModel


def layout(model: DiagramModel, edges: Iterable[DependencyEdge | DiagramEdge] | None = None) -> List[Tuple[str, str]]:
    """Assign ``layer``/``order`` on every node; returns the arcs dropped to break cycles.

    Only a projection is made acyclic, the model's edges are left alone.
    """
    source_edges = list(edges) if edges is not None else list(model.edges)
    node_ids = model.component_ids()
    present = set(node_ids)
    digraph = to_digraph(
        node_ids,
        [
            DependencyEdge(source=edge.source, target=edge.target, kind=edge.kind, weight=edge.weight)
            for edge in source_edges
            if edge.source in present and edge.target in present
        ],
    )
    projection, removed = acyclic_projection(digraph)
    positions = layer_index(projection)
    for node in model.nodes:
        node.layer, node.order = positions.get(node.component_id, (0, 0))
    return removed


__all__ = ["layout"]
