"""Tests for the analysis engine pipeline."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import pytest

from archdiagram.engine import AnalysisOptions, CancellationToken
from archdiagram.errors import AnalysisCancelled, AnalysisNotFound, RepositoryUnavailable
from archdiagram.models import ComponentMetrics, DependencyEdge
from archdiagram.parsers import ParserRegistry
from archdiagram.parsers.python_ast import parse_python
from archdiagram.stores import SnapshotRepository

CALLER = """
from app.b import Bar

class Foo:
    def run(self):
        return Bar()
"""

CALLEE = """
class Bar:
    pass
"""

HELPER = """
def helper():
    return 1
"""


def _project(vcs, ref: str = "c1", **extra: str) -> None:
    vcs.commit("shop", ref, {"app/a.py": CALLER, "app/b.py": CALLEE, **extra})


def _wide_project(vcs) -> None:
    _project(vcs, **{f"app/{name}.py": HELPER for name in "cdef"})


class _BrokenStore:
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise OSError("disk unavailable")

    def put(self, key: str, value: Dict[str, Any]) -> None:
        raise OSError("disk full")

    def delete(self, key: str) -> bool:
        raise OSError("read-only")

    def keys(self, prefix: str = "") -> List[str]:
        return []


class _StyledRunner:
    def __init__(self) -> None:
        self.prompts: List[str] = []

    def run(self, prompt: str, *, system: str | None = None) -> str:
        self.prompts.append(prompt)
        return "flowchart TB\n    n1([\"Foo\"]) --> n2[(\"Bar\")]"


def test_full_analysis_builds_graph_and_diagram(vcs, make_engine) -> None:
    _project(vcs)

    result = make_engine().analyze("shop", "c1")

    assert result.analysis_id == "shop@c1"
    assert result.incremental is False
    assert result.graph.component_ids() == ["file:app.a", "file:app.b"]
    assert result.graph.edges == [DependencyEdge("file:app.a", "file:app.b", "calls", 1)]
    assert [(node.component_id, node.diagram_id) for node in result.diagram.nodes] == [
        ("file:app.a", "n1"),
        ("file:app.b", "n2"),
    ]
    assert result.diagram.commit == "c1"
    assert result.diagnostics == []


def test_broken_file_is_reported_and_skipped(vcs, make_engine) -> None:
    _project(vcs, **{"app/broken.py": "def broken(:\n    pass\n"})

    result = make_engine().analyze("shop", "c1")

    assert [(item.code, item.path) for item in result.diagnostics] == [("parse_error", "app/broken.py")]
    assert result.graph.component_ids() == ["file:app.a", "file:app.b"]
    assert "app/broken.py" not in result.graph.files


def test_incremental_run_reuses_unchanged_units(vcs, make_engine) -> None:
    _wide_project(vcs)
    engine = make_engine()
    first = engine.analyze("shop", "c1")
    first_ids = {node.component_id: node.diagram_id for node in first.diagram.nodes}
    vcs.commit(
        "shop",
        "c2",
        {"app/b.py": "class Bar:\n    def ping(self):\n        return 1\n"},
        base="c1",
    )

    second = engine.analyze("shop", "c2", prior_ref="c1")

    assert second.incremental is True
    assert second.impact.scores == {"file:app.a": 0.5, "file:app.b": 1.0}
    assert vcs.fetches["app/a.py"] == 1
    assert vcs.fetches["app/c.py"] == 1
    assert vcs.fetches["app/b.py"] == 2
    assert {node.component_id: node.diagram_id for node in second.diagram.nodes} == first_ids
    assert second.diagram.revision == 2
    assert second.diagram.commit == "c2"
    assert second.graph.component("file:app.b").members == [
        "class:app.b.Bar",
        "method:app.b.Bar.ping",
        "module:app.b",
    ]


def test_broad_change_regenerates_the_diagram(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    engine.analyze("shop", "c1")
    vcs.commit("shop", "c2", {"app/b.py": "class Bar:\n    size = 2\n"}, base="c1")

    result = engine.analyze("shop", "c2", prior_ref="c1")

    assert result.impact is not None
    assert result.impact.affected_fraction == 1.0
    assert result.incremental is False
    assert [node.diagram_id for node in result.diagram.nodes] == ["n1", "n2"]
    assert result.diagram.revision == 2


def test_unknown_prior_ref_falls_back_to_full_analysis(vcs, make_engine) -> None:
    _project(vcs)

    result = make_engine().analyze("shop", "c1", prior_ref="never-analyzed")

    assert result.incremental is False
    assert result.impact is None


def test_unavailable_diff_is_a_diagnostic(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    engine.analyze("shop", "c1")
    _project(vcs, ref="c2")
    del vcs.snapshots[("shop", "c1")]

    result = engine.analyze("shop", "c2", prior_ref="c1")

    assert [item.code for item in result.diagnostics] == ["diff_unavailable"]
    assert result.incremental is False


def test_cancelled_token_aborts_before_work(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    token = CancellationToken()
    token.cancel()

    with pytest.raises(AnalysisCancelled):
        engine.analyze("shop", "c1", cancel=token)

    assert vcs.fetches == {}
    assert engine.analyze("shop", "c1").graph.components


def test_cancelling_mid_run_discards_results(vcs, make_engine) -> None:
    _wide_project(vcs)
    engine = make_engine()
    token = CancellationToken()
    vcs.gate = threading.Event()
    errors: List[Exception] = []

    def run() -> None:
        try:
            engine.analyze("shop", "c1", cancel=token)
        except Exception as exc:
            errors.append(exc)

    worker = threading.Thread(target=run)
    worker.start()
    assert vcs.started.wait(timeout=5)
    token.cancel()
    vcs.gate.set()
    worker.join(timeout=10)

    assert len(errors) == 1
    assert isinstance(errors[0], AnalysisCancelled)
    assert engine.repository.get_graph("shop", "c1") is None
    with pytest.raises(AnalysisNotFound):
        engine.get_analysis("shop@c1")


def test_time_budget_cancels_the_run(vcs, make_engine) -> None:
    _project(vcs)
    ticks = itertools.count(step=10)
    engine = make_engine(clock=lambda: float(next(ticks)))

    with pytest.raises(AnalysisCancelled, match="time budget"):
        engine.analyze("shop", "c1", options=AnalysisOptions(timeout=5))


def test_concurrent_identical_requests_share_one_run(vcs, make_engine, caplog) -> None:
    caplog.set_level(logging.INFO, logger="archdiagram.engine")
    _project(vcs)
    engine = make_engine()
    vcs.gate = threading.Event()
    results: List[Any] = []

    def run() -> None:
        results.append(engine.analyze("shop", "c1"))

    owner = threading.Thread(target=run)
    owner.start()
    assert vcs.started.wait(timeout=5)
    joiner = threading.Thread(target=run)
    joiner.start()
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline and not any(
        "Joining in-flight analysis" in record.getMessage() for record in caplog.records
    ):
        time.sleep(0.01)
    vcs.gate.set()
    owner.join(timeout=10)
    joiner.join(timeout=10)

    assert len(results) == 2
    assert results[0] is results[1]
    assert vcs.fetches["app/a.py"] == 1


def test_transient_fetch_failures_are_retried(vcs, make_engine) -> None:
    _project(vcs)
    vcs.transient_failures["app/b.py"] = 1

    result = make_engine().analyze("shop", "c1")

    assert vcs.fetches["app/b.py"] == 2
    assert result.diagnostics == []


def test_exhausted_fetch_retries_skip_the_file(vcs, make_engine) -> None:
    _project(vcs)
    vcs.transient_failures["app/b.py"] = 10

    result = make_engine().analyze("shop", "c1")

    assert [(item.code, item.path) for item in result.diagnostics] == [("file_unavailable", "app/b.py")]
    assert result.graph.component_ids() == ["file:app.a"]
    assert [dependency.target for dependency in result.graph.external] == ["app.b.Bar"]


def test_listing_is_retried_then_reported(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()

    vcs.list_failures = 1
    assert engine.analyze("shop", "c1").graph.components

    vcs.list_failures = 10
    with pytest.raises(RepositoryUnavailable, match="after 3 attempt"):
        engine.analyze("shop", "c1")


def test_unknown_snapshot_is_unavailable(make_engine) -> None:
    with pytest.raises(RepositoryUnavailable, match="not found"):
        make_engine().analyze("shop", "missing")


def test_persistence_failures_do_not_fail_the_run(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine(repository=SnapshotRepository(_BrokenStore()))

    result = engine.analyze("shop", "c1")

    assert result.graph.component_ids() == ["file:app.a", "file:app.b"]
    assert {item.code for item in result.diagnostics} == {"persistence_failure"}
    assert len(result.diagnostics) == 3


def test_path_selection_and_options(vcs, make_engine) -> None:
    _project(
        vcs,
        **{
            "tests/test_a.py": "def test_a():\n    assert True\n",
            "web/main.ts": "export const x = 1;\n",
            "docs/readme.md": "# Shop\n",
            "node_modules/pkg/index.py": "x = 1\n",
        },
    )
    engine = make_engine()

    default = engine.analyze("shop", "c1")
    assert default.graph.component_ids() == ["file:app.a", "file:app.b"]
    assert [(item.code, item.path) for item in default.diagnostics] == [("unsupported_language", "web/main.ts")]

    _project(
        vcs,
        ref="c2",
        **{"tests/test_a.py": "def test_a():\n    assert True\n", "web/main.ts": "export const x = 1;\n"},
    )
    options = AnalysisOptions(languages=["python"], include_tests=True, exclude_paths=["app/b.py"])
    selected = engine.analyze("shop", "c2", options=options)
    assert selected.graph.component_ids() == ["file:app.a", "file:tests.test_a"]
    assert selected.diagnostics == []


def test_requested_renderings_are_attached(vcs, make_engine) -> None:
    _project(vcs)

    result = make_engine().analyze("shop", "c1", options=AnalysisOptions(diagram_types=["dependency"]))

    assert [(item.diagram_type, item.source) for item in result.renderings] == [("dependency", "deterministic")]
    assert result.renderings[0].markup.startswith("flowchart LR\n")


def test_get_analysis_reads_memory_then_storage(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    result = engine.analyze("shop", "c1")

    assert engine.get_analysis("shop@c1") is result

    reader = make_engine(repository=engine.repository)
    loaded = reader.get_analysis("shop@c1")
    assert loaded.graph == result.graph
    assert loaded.diagram is not None
    assert loaded.diagram.commit == "c1"

    with pytest.raises(AnalysisNotFound):
        reader.get_analysis("shop@c9")
    with pytest.raises(AnalysisNotFound, match="Malformed"):
        reader.get_analysis("no-separator")


def test_generate_diagram_for_each_type(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    engine.analyze("shop", "c1")

    renderings = engine.generate_diagram("shop@c1", ["component", "dependency"])

    assert [item.diagram_type for item in renderings] == ["component", "dependency"]
    assert renderings[0].markup.startswith("flowchart TB\n")
    assert "n1 -->|calls| n2" in renderings[0].markup
    assert all(item.diagnostics == [] for item in renderings)

    with pytest.raises(ValueError, match="sequence"):
        engine.generate_diagram("shop@c1", ["sequence"])


def test_generate_diagram_rebuilds_superseded_snapshots(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    engine.analyze("shop", "c1")
    vcs.commit("shop", "c2", {"app/extra.py": HELPER}, base="c1")
    engine.analyze("shop", "c2", prior_ref="c1")

    reader = make_engine(repository=engine.repository)
    markup = reader.generate_diagram("shop@c1", ["dependency"])[0].markup

    assert "extra" not in markup
    assert '["a"]' in markup
    with pytest.raises(AnalysisNotFound):
        reader.generate_diagram("shop@c7")


def test_ai_rendering_without_runtime_degrades(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    engine.analyze("shop", "c1")

    rendering = engine.generate_diagram("shop@c1", use_ai=True)[0]

    assert rendering.source == "deterministic"
    assert [item.code for item in rendering.diagnostics] == ["rendering_unavailable"]


def test_ai_rendering_uses_configured_runner(vcs, make_engine) -> None:
    _project(vcs)
    runner = _StyledRunner()
    engine = make_engine(ai_runner=runner)
    engine.analyze("shop", "c1")
    try:
        rendering = engine.generate_diagram("shop@c1", use_ai=True)[0]
    finally:
        engine.close()

    assert rendering.source == "ai"
    assert rendering.markup == 'flowchart TB\n    n1(["Foo"]) --> n2[("Bar")]\n'
    assert len(runner.prompts) == 1


def test_delete_analysis_drops_graph_units_and_diagram(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    engine.analyze("shop", "c1")
    assert len(engine.store) == 2

    assert engine.delete_analysis("shop@c1") is True

    assert len(engine.store) == 0
    assert engine.repository.get_diagram("shop") is None
    with pytest.raises(AnalysisNotFound):
        engine.get_analysis("shop@c1")
    assert engine.delete_analysis("shop@c1") is False


def test_engine_requires_a_vcs(engine_config) -> None:
    from archdiagram.engine import AnalysisEngine

    with pytest.raises(ValueError, match="version-control"):
        AnalysisEngine(engine_config)


def test_scoped_run_shows_new_edges_to_components_outside_the_scope(vcs, make_engine) -> None:
    _wide_project(vcs)
    engine = make_engine()
    first = engine.analyze("shop", "c1")
    vcs.commit(
        "shop",
        "c2",
        {
            "app/a.py": (
                "from app.b import Bar\nfrom app.f import helper\n\n"
                "class Foo:\n    def run(self):\n        helper()\n        return Bar()\n"
            )
        },
        base="c1",
    )

    second = engine.analyze("shop", "c2", prior_ref="c1")

    graph_edges = {(edge.source, edge.target) for edge in second.graph.edges}
    diagram_edges = {(edge.source, edge.target) for edge in second.diagram.edges}
    assert second.incremental is True
    assert "file:app.f" not in second.impact.scores
    assert ("file:app.a", "file:app.f") in graph_edges
    assert diagram_edges == graph_edges
    assert {node.component_id: node.diagram_id for node in second.diagram.nodes} == {
        node.component_id: node.diagram_id for node in first.diagram.nodes
    }
    assert engine.repository.get_diagram("shop").edges == second.diagram.edges


def test_slow_parse_times_out_without_starving_queued_files(vcs, engine_config, make_engine) -> None:
    _project(vcs, **{"app/slow.py": HELPER, "app/z.py": HELPER})
    engine_config.analysis.workers = 1
    engine_config.analysis.parse_timeout = 0.3
    release = threading.Event()

    def sluggish_python(path: str, text: str):
        if path == "app/slow.py":
            release.wait(timeout=5)
        return parse_python(path, text)

    engine = make_engine(registry=ParserRegistry({"python": sluggish_python}))
    try:
        started = time.monotonic()
        result = engine.analyze("shop", "c1")
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert [(item.code, item.path, item.detail) for item in result.diagnostics] == [
        ("parse_error", "app/slow.py", {"reason": "timeout"})
    ]
    assert result.graph.component_ids() == ["file:app.a", "file:app.b", "file:app.z"]
    assert elapsed < 4


class _UnusedDetector:
    def detect(self, graph):
        raise AssertionError("pattern detection should have been skipped")


def test_pattern_detection_can_be_skipped(vcs, make_engine) -> None:
    _project(vcs)
    engine = make_engine()
    engine.detector = _UnusedDetector()

    result = engine.analyze("shop", "c1", options=AnalysisOptions(detect_patterns=False))

    assert result.patterns == []
    assert [node.component_id for node in result.diagram.nodes] == ["file:app.a", "file:app.b"]


def test_external_dependencies_and_metrics_can_be_omitted(vcs, make_engine) -> None:
    vcs.commit("shop", "c1", {"app/a.py": CALLER, "app/c.py": "from app.a import Foo\n\nFoo()\n"})
    engine = make_engine()

    full = engine.analyze("shop", "c1")
    trimmed = engine.analyze(
        "shop", "c1", options=AnalysisOptions(include_dependencies=False, generate_metrics=False)
    )

    assert [dependency.target for dependency in full.graph.external] == ["app.b.Bar"]
    assert full.graph.component("file:app.a").metrics.fan_in == 1
    assert trimmed.graph.external == []
    assert {component.id: component.metrics for component in trimmed.graph.components} == {
        "file:app.a": ComponentMetrics(),
        "file:app.c": ComponentMetrics(),
    }
    assert trimmed.graph.edges == full.graph.edges
    stored = engine.repository.get_graph("shop", "c1")
    assert [dependency.target for dependency in stored.external] == ["app.b.Bar"]
    assert stored.component("file:app.a").metrics.fan_in == 1


def test_max_depth_limits_impact_propagation(vcs, make_engine) -> None:
    _wide_project(vcs)
    engine = make_engine()
    engine.analyze("shop", "c1")
    vcs.commit("shop", "c2", {"app/b.py": "class Bar:\n    size = 3\n"}, base="c1")

    result = engine.analyze("shop", "c2", prior_ref="c1", options=AnalysisOptions(max_depth=0))

    assert result.impact.scores == {"file:app.b": 1.0}
    assert result.impact.directly_touched == ["file:app.b"]
