"""Tests for built-in pattern rules and rule isolation."""

from __future__ import annotations

from typing import List, Optional

import pytest

from archdiagram.config import PatternConfig
from archdiagram.models import ArchitectureGraph, Component, DependencyEdge, PatternMatch
from archdiagram.patterns import PatternDetector
from archdiagram.patterns.rules import (
    detect_cycles,
    detect_hubs,
    detect_layered,
    detect_microservices,
    detect_repository,
    select_rules,
)


def _component(component_id: str, kind: str = "module", files: Optional[List[str]] = None) -> Component:
    name = component_id.split(":", 1)[-1].rsplit(".", 1)[-1]
    return Component(
        id=component_id,
        name=name,
        kind=kind,
        qualified_name=component_id.split(":", 1)[-1],
        files=files or [f"{name}.py"],
    )


def _graph(components: List[Component], edges: List[tuple]) -> ArchitectureGraph:
    return ArchitectureGraph(
        project_id="shop",
        commit="c1",
        components=components,
        edges=[DependencyEdge(source, target, "calls") for source, target in edges],
    )


def _layered_graph(*extra_edges: tuple) -> ArchitectureGraph:
    return _graph(
        [
            _component("file:api", "api"),
            _component("file:orders", "service"),
            _component("file:store", "data"),
        ],
        [("file:api", "file:orders"), ("file:orders", "file:store"), *extra_edges],
    )


def test_layered_architecture_is_detected() -> None:
    matches = detect_layered(_layered_graph(), PatternConfig())

    assert len(matches) == 1
    match = matches[0]
    assert match.pattern == "layered"
    assert match.confidence == 1.0
    assert match.groups == {
        "presentation": ("file:api",),
        "service": ("file:orders",),
        "data": ("file:store",),
    }


def test_back_edges_beyond_tolerance_reject_layering() -> None:
    graph = _layered_graph(("file:store", "file:api"))

    assert detect_layered(graph, PatternConfig()) == []
    tolerant = detect_layered(graph, PatternConfig(layered_back_edge_tolerance=0.5))
    assert tolerant[0].detail == {"cross_layer_edges": 3, "back_edges": 1}


def test_repository_needs_multiple_service_clients() -> None:
    components = [
        _component("file:orders", "service"),
        _component("file:billing", "service"),
        _component("file:user_repository", "data"),
    ]
    graph = _graph(
        components,
        [("file:orders", "file:user_repository"), ("file:billing", "file:user_repository")],
    )

    matches = detect_repository(graph, PatternConfig())

    assert [match.component_ids for match in matches] == [
        ("file:user_repository", "file:billing", "file:orders"),
    ]
    assert detect_repository(graph, PatternConfig(repository_min_service_fan_in=3)) == []


def test_repository_must_not_depend_on_other_layers() -> None:
    graph = _graph(
        [
            _component("file:orders", "service"),
            _component("file:billing", "service"),
            _component("file:store", "data"),
        ],
        [
            ("file:orders", "file:store"),
            ("file:billing", "file:store"),
            ("file:store", "file:orders"),
        ],
    )

    assert detect_repository(graph, PatternConfig()) == []


def test_microservices_are_grouped_by_service_root() -> None:
    graph = _graph(
        [
            _component("file:orders.api", files=["services/orders/api.py"]),
            _component("file:orders.db", files=["services/orders/db.py"]),
            _component("file:billing.api", files=["services/billing/api.py"]),
        ],
        [("file:orders.api", "file:orders.db"), ("file:orders.api", "file:billing.api")],
    )

    matches = detect_microservices(graph, PatternConfig())

    assert len(matches) == 1
    assert matches[0].confidence == 0.5
    assert matches[0].groups == {
        "services/billing": ("file:billing.api",),
        "services/orders": ("file:orders.api", "file:orders.db"),
    }


def test_hub_is_reported_for_highly_connected_component() -> None:
    spokes = [f"file:spoke{index}" for index in range(4)]
    graph = _graph(
        [_component("file:core"), *(_component(spoke) for spoke in spokes)],
        [(spoke, "file:core") for spoke in spokes],
    )

    matches = detect_hubs(graph, PatternConfig())

    assert [match.component_ids for match in matches] == [("file:core",)]
    assert matches[0].confidence == 1.0


def test_dependency_cycles_are_reported() -> None:
    graph = _graph(
        [_component("file:a"), _component("file:b"), _component("file:c")],
        [("file:a", "file:b"), ("file:b", "file:a"), ("file:b", "file:c")],
    )

    matches = detect_cycles(graph, PatternConfig())

    assert [(match.pattern, match.component_ids) for match in matches] == [
        ("dependency_cycle", ("file:a", "file:b")),
    ]


def test_failing_rule_becomes_a_diagnostic() -> None:
    def fine(graph: ArchitectureGraph, config: PatternConfig) -> List[PatternMatch]:
        return [PatternMatch(pattern="fine", component_ids=("file:api",), confidence=1.0)]

    def broken(graph: ArchitectureGraph, config: PatternConfig) -> List[PatternMatch]:
        raise RuntimeError("rule exploded")

    detector = PatternDetector(rules={"fine": fine, "broken": broken})

    matches, diagnostics = detector.detect(_layered_graph())

    assert [match.pattern for match in matches] == ["fine"]
    assert len(diagnostics) == 1
    assert diagnostics[0].code == "pattern_rule_failure"
    assert diagnostics[0].detail == {"rule": "broken"}
    assert "rule exploded" in diagnostics[0].message


def test_empty_graph_has_no_patterns() -> None:
    assert PatternDetector().detect(ArchitectureGraph(project_id="p", commit="c")) == ([], [])


def test_enabled_rules_are_validated() -> None:
    assert list(select_rules(["hub"])) == ["hub"]
    assert len(select_rules(None)) == 5
    with pytest.raises(ValueError, match="telepathy"):
        select_rules(["telepathy"])
