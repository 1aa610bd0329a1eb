from __future__ import annotations

from archdiagram.config import DiagramConfig, PatternConfig
from archdiagram.diagram import DiagramModelBuilder, cluster_membership
from archdiagram.models import ArchitectureGraph, Component, DependencyEdge, PatternMatch
from archdiagram.patterns.rules import detect_layered


def _graph(edges, kinds=None) -> ArchitectureGraph:
    kinds = kinds or {}
    names = sorted({name for edge in edges for name in edge[:2]} | set(kinds))
    return ArchitectureGraph(
        project_id="shop",
        commit="c1",
        components=[
            Component(id=f"file:{name}", name=name, kind=kinds.get(name, "module"), qualified_name=name)
            for name in names
        ],
        edges=[
            DependencyEdge(source=f"file:{source}", target=f"file:{target}", kind="calls", weight=weight)
            for source, target, weight in edges
        ],
    )


def test_layered_match_becomes_clusters() -> None:
    graph = _graph(
        [("api", "orders", 1), ("orders", "store", 1)],
        {"api": "api", "orders": "service", "store": "data"},
    )
    matches = detect_layered(graph, PatternConfig())

    model = DiagramModelBuilder().build(graph, matches)

    assert [cluster.id for cluster in model.clusters] == [
        "layered:data",
        "layered:presentation",
        "layered:service",
    ]
    assert model.node_for("file:api").cluster == "layered:presentation"
    assert model.clusters[0].label == "data"
    assert model.clusters[0].members == ["file:store"]
    assert [(node.component_id, node.layer) for node in model.nodes] == [
        ("file:api", 0),
        ("file:orders", 1),
        ("file:store", 2),
    ]
    assert model.commit == "c1"


def test_weak_edges_inside_a_cluster_are_hidden() -> None:
    graph = _graph([("a", "b", 1), ("a", "c", 1), ("b", "c", 3)])
    matches = [
        PatternMatch(
            pattern="microservice",
            component_ids=("file:c",),
            confidence=1.0,
            groups={"services/billing": ("file:c",)},
        )
    ]

    model = DiagramModelBuilder(DiagramConfig(visibility_threshold=2)).build(graph, matches)

    assert [(edge.source, edge.target) for edge in model.edges] == [
        ("file:a", "file:c"),
        ("file:b", "file:c"),
    ]
    assert model.clusters[0].label == "billing"


def test_scope_limits_nodes_and_edges() -> None:
    graph = _graph([("a", "b", 1), ("b", "c", 1)])

    model = DiagramModelBuilder().build(graph, scope=["file:a", "file:b", "file:missing"])

    assert model.component_ids() == ["file:a", "file:b"]
    assert [(edge.source, edge.target) for edge in model.edges] == [("file:a", "file:b")]


def test_cycles_are_laid_out_without_dropping_edges() -> None:
    graph = _graph([("a", "b", 2), ("b", "a", 1)])

    model = DiagramModelBuilder().build(graph)

    assert len(model.edges) == 2
    assert {node.component_id: node.layer for node in model.nodes} == {"file:a": 0, "file:b": 1}


def test_higher_confidence_cluster_wins() -> None:
    matches = [
        PatternMatch(pattern="layered", component_ids=("file:a",), confidence=0.6, groups={"service": ("file:a",)}),
        PatternMatch(
            pattern="microservice",
            component_ids=("file:a",),
            confidence=0.9,
            groups={"services/orders": ("file:a",)},
        ),
        PatternMatch(pattern="hub", component_ids=("file:a",), confidence=1.0, groups={"neighbours": ()}),
    ]

    assert cluster_membership(matches) == {
        "file:a": ("microservice:services/orders", "orders", "microservice"),
    }
