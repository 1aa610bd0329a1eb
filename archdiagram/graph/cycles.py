"""networkx helpers for cycle detection and layering over component graphs."""

from __future__ import annotations

from typing import Dict, Iterable, List, Set, Tuple

import networkx as nx

from ..models import DependencyEdge


def to_digraph(node_ids: Iterable[str], edges: Iterable[DependencyEdge]) -> nx.DiGraph:
    """Collapse relation kinds into one weighted arc per ordered component pair."""
    graph = nx.DiGraph()
    graph.add_nodes_from(sorted(set(node_ids)))
    for edge in sorted(edges, key=lambda item: (item.source, item.target, item.kind)):
        if edge.source == edge.target:
            continue
        if graph.has_edge(edge.source, edge.target):
            graph[edge.source][edge.target]["weight"] += edge.weight
        else:
            graph.add_edge(edge.source, edge.target, weight=edge.weight)
    return graph


def cyclic_groups(graph: nx.DiGraph) -> List[List[str]]:
    """Strongly connected components with two or more members, sorted."""
    groups = [sorted(group) for group in nx.strongly_connected_components(graph) if len(group) > 1]
    return sorted(groups)


def cycle_members(graph: nx.DiGraph) -> Set[str]:
    return {node for group in cyclic_groups(graph) for node in group}


def acyclic_projection(graph: nx.DiGraph) -> Tuple[nx.DiGraph, List[Tuple[str, str]]]:
    """Return a copy with cycles broken and the arcs removed to break them.

    Each detected cycle loses its lowest-weight arc (ties broken by endpoint
    order). The input graph is not modified.
    """
    projection = graph.copy()
    removed: List[Tuple[str, str]] = []
    while True:
        try:
            cycle = nx.find_cycle(projection)
        except nx.NetworkXNoCycle:
            break
        arcs = [(source, target) for source, target, *_ in cycle]
        weakest = min(arcs, key=lambda arc: (projection[arc[0]][arc[1]].get("weight", 1), arc))
        projection.remove_edge(*weakest)
        removed.append(weakest)
    return projection, removed


def layer_index(graph: nx.DiGraph) -> Dict[str, Tuple[int, int]]:
    """Map each node to (layer, order) from topological generations of an acyclic graph."""
    positions: Dict[str, Tuple[int, int]] = {}
    for layer, generation in enumerate(nx.topological_generations(graph)):
        for order, node in enumerate(sorted(generation)):
            positions[node] = (layer, order)
    return positions


__all__ = ["acyclic_projection", "cycle_members", "cyclic_groups", "layer_index", "to_digraph"]
