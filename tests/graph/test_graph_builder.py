"""Tests for component graph construction."""

from __future__ import annotations

import pytest

from archdiagram.graph import GraphBuilder
from archdiagram.models import DependencyEdge, SourceUnit, Symbol

_CALLER = """
from app.b import Bar

class Foo:
    def run(self):
        return Bar()
"""

_CALLEE = """
class Bar:
    pass
"""


@pytest.fixture
def scenario_units(parse_unit):
    return [parse_unit("app/a.py", _CALLER), parse_unit("app/b.py", _CALLEE)]


def test_single_call_produces_one_weighted_edge(scenario_units) -> None:
    graph = GraphBuilder().build(scenario_units, project_id="shop", commit="c1")

    assert graph.project_id == "shop"
    assert graph.commit == "c1"
    assert graph.component_ids() == ["file:app.a", "file:app.b"]
    assert graph.edges == [DependencyEdge(source="file:app.a", target="file:app.b", kind="calls", weight=1)]
    caller = graph.component("file:app.a")
    assert caller is not None
    assert caller.files == ["app/a.py"]
    assert caller.metrics.fan_out == 1
    assert caller.metrics.size == 3
    assert graph.component("file:app.b").metrics.fan_in == 1
    assert graph.files == {unit.path: unit.content_hash for unit in scenario_units}


def test_repeated_calls_accumulate_edge_weight(parse_unit) -> None:
    caller = parse_unit(
        "app/a.py",
        """
        from app.b import Bar

        class Foo:
            def run(self):
                Bar()
                return Bar()
        """,
    )
    callee = parse_unit("app/b.py", _CALLEE)

    graph = GraphBuilder().build([caller, callee])

    assert [(edge.source, edge.target, edge.weight) for edge in graph.edges] == [
        ("file:app.a", "file:app.b", 2),
    ]


def test_unresolved_targets_are_recorded_as_external(parse_unit) -> None:
    unit = parse_unit(
        "app/client.py",
        """
        import requests

        def fetch():
            return requests.get("https://example.com")
        """,
    )

    graph = GraphBuilder().build([unit])

    assert graph.edges == []
    assert {dependency.source for dependency in graph.external} == {"file:app.client"}
    assert "requests" in {dependency.target for dependency in graph.external}


def test_output_is_independent_of_input_order(parse_unit, scenario_units) -> None:
    extra = parse_unit(
        "app/c.py",
        """
        from app.a import Foo

        def main():
            return Foo().run()
        """,
    )
    units = [*scenario_units, extra]

    forward = GraphBuilder().build(units, commit="c1")
    backward = GraphBuilder().build(list(reversed(units)), commit="c1")

    assert forward == backward


def test_duplicate_paths_keep_a_single_unit() -> None:
    symbol = Symbol(name="x", qualified_name="app.x", kind="module", path="app/x.py", aliases=("app.x",))
    newer = SourceUnit(path="app/x.py", content_hash="b2", language="python", symbols=(symbol,))
    older = SourceUnit(path="app/x.py", content_hash="a1", language="python", symbols=(symbol,))

    graph = GraphBuilder().build([newer, older])

    assert graph.files == {"app/x.py": "a1"}
    assert graph.component_ids() == ["file:app.x"]


def test_mutual_dependencies_are_flagged_as_cycles(parse_unit) -> None:
    units = [
        parse_unit(
            "app/a.py",
            """
            from app.b import g

            def f():
                return g()
            """,
        ),
        parse_unit(
            "app/b.py",
            """
            from app.a import f

            def g():
                return f()
            """,
        ),
        parse_unit(
            "app/c.py",
            """
            from app.a import f

            def h():
                return f()
            """,
        ),
    ]

    graph = GraphBuilder().build(units)

    flags = {component.id: component.metrics.in_cycle for component in graph.components}
    assert flags == {"file:app.a": True, "file:app.b": True, "file:app.c": False}


def test_symbol_policy_groups_by_top_level_declaration(scenario_units) -> None:
    graph = GraphBuilder(policy="symbol").build(scenario_units)

    assert graph.component_ids() == ["symbol:app.a.Foo", "symbol:app.b.Bar"]
    assert [(edge.source, edge.target) for edge in graph.edges] == [("symbol:app.a.Foo", "symbol:app.b.Bar")]
    assert graph.component("symbol:app.a.Foo").members == [
        "class:app.a.Foo",
        "method:app.a.Foo.run",
        "module:app.a",
    ]


def test_package_policy_drops_intra_package_edges(scenario_units) -> None:
    graph = GraphBuilder().build(scenario_units, "package")

    assert graph.component_ids() == ["package:app"]
    assert graph.edges == []
    assert graph.component("package:app").files == ["app/a.py", "app/b.py"]


def test_layer_policy_groups_by_heuristic_kind(parse_unit) -> None:
    units = [
        parse_unit(
            "app/services/orders.py",
            """
            from app.repos.users import UserRepo

            def place():
                return UserRepo()
            """,
        ),
        parse_unit("app/repos/users.py", "class UserRepo:\n    pass\n"),
    ]

    graph = GraphBuilder(policy="layer").build(units)

    assert graph.component_ids() == ["layer:data", "layer:service"]
    assert [(edge.source, edge.target, edge.kind) for edge in graph.edges] == [
        ("layer:service", "layer:data", "calls"),
    ]


def test_unknown_policy_is_rejected(scenario_units) -> None:
    with pytest.raises(ValueError, match="grouping policy"):
        GraphBuilder(policy="galaxy").build(scenario_units)
