"""Analysis pipeline: snapshot → units → graph → patterns → impact → diagram."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple

from .config import DIAGRAM_TYPES, EngineConfig, default_config
from .diagram import DiagramModelBuilder, DiagramReconciler
from .errors import (
    AnalysisCancelled,
    AnalysisNotFound,
    ImpactComputationTimeout,
    ParseError,
    PersistenceFailure,
    RenderingUnavailable,
    RepositoryUnavailable,
    UnsupportedLanguage,
)
from .graph import GraphBuilder
from .impact import ChangeImpactAnalyzer
from .llm import LLMError, LLMRunner
from .logging import get_logger
from .models import (
    ArchitectureGraph,
    ChangeSet,
    ComponentMetrics,
    Diagnostic,
    DiagramModel,
    ImpactResult,
    PatternMatch,
    SourceUnit,
    unit_cache_key,
)
from .parsers import ParserRegistry, discover_adapters
from .parsers.base import content_hash
from .parsers.language import detect_language, is_excluded_dir, is_test_path, matches_any, normalise_path
from .patterns import PatternDetector
from .render import AIRenderer, MermaidRenderer, Rendering
from .render.ai import CompletionRunner
from .stores import InMemoryStore, JsonDirectoryStore, SnapshotRepository, SymbolStore
from .vcs.base import NotFoundError, TransientError, VersionControlClient

# Seconds between checks for finished, overdue or cancelled parses.
_POLL_INTERVAL = 0.05


class CancellationToken:
    """Cooperative cancellation flag shared by the caller and the parse workers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelled("Analysis was cancelled")


@dataclass
class AnalysisOptions:
    """Per-request overrides of the configured analysis settings."""

    languages: List[str] = field(default_factory=list)
    include_paths: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    include_tests: Optional[bool] = None
    diagram_types: List[str] = field(default_factory=list)
    use_ai: Optional[bool] = None
    timeout: Optional[float] = None
    detect_patterns: bool = True
    include_dependencies: bool = True
    generate_metrics: bool = True
    # Overrides impact.hop_limit for this run.
    max_depth: Optional[int] = None


@dataclass
class AnalysisResult:
    """Outcome of one analysis run."""

    analysis_id: str
    project_id: str
    ref: str
    graph: ArchitectureGraph
    patterns: List[PatternMatch] = field(default_factory=list)
    diagram: Optional[DiagramModel] = None
    impact: Optional[ImpactResult] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    incremental: bool = False
    renderings: List[Rendering] = field(default_factory=list)
    duration: float = 0.0


def analysis_id_for(project_id: str, ref: str) -> str:
    return f"{project_id}@{ref}"


def _result_graph(graph: ArchitectureGraph, options: AnalysisOptions) -> ArchitectureGraph:
    """Copy of ``graph`` trimmed to what the request asked for; the stored snapshot stays complete."""
    if options.include_dependencies and options.generate_metrics:
        return graph
    components = graph.components
    if not options.generate_metrics:
        components = [replace(component, metrics=ComponentMetrics()) for component in components]
    return replace(
        graph,
        components=components,
        external=graph.external if options.include_dependencies else [],
    )


def split_analysis_id(analysis_id: str) -> Tuple[str, str]:
    project_id, sep, ref = analysis_id.partition("@")
    if not sep or not project_id or not ref:
        raise AnalysisNotFound(f"Malformed analysis id '{analysis_id}'")
    return project_id, ref


class AnalysisEngine:
    """Coordinates analysis runs against a version-control collaborator.

    At most one run per (project, ref) executes at a time; identical
    concurrent requests wait for it and receive the same result.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        vcs: VersionControlClient | None = None,
        *,
        registry: ParserRegistry | None = None,
        store: SymbolStore | None = None,
        repository: SnapshotRepository | None = None,
        ai_runner: CompletionRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if vcs is None:
            raise ValueError("AnalysisEngine requires a version-control client")
        self.config = config or default_config()
        self.vcs = vcs
        self.registry = registry or discover_adapters()
        self.store = store or SymbolStore(self.config.store.cache_capacity, self.config.store.cache_path)
        self.repository = repository or self._default_repository()
        self.graph_builder = GraphBuilder(self.config.analysis.grouping)
        self.detector = PatternDetector(self.config.patterns)
        self.impact_analyzer = ChangeImpactAnalyzer(
            self.config.impact, policy=self.config.analysis.grouping, clock=clock
        )
        self.diagram_builder = DiagramModelBuilder(self.config.diagram)
        self.reconciler = DiagramReconciler(self.config.diagram)
        self.renderer = MermaidRenderer()
        self.logger = get_logger("engine")
        self._clock = clock
        self._ai_runner = ai_runner
        self._ai_renderer: Optional[AIRenderer] = None
        self._lock = threading.Lock()
        self._runs: Dict[Tuple[str, str], Future[AnalysisResult]] = {}
        self._results: Dict[str, AnalysisResult] = {}

    # ------------------------------------------------------------------
    # Public surface

    def analyze(
        self,
        project_id: str,
        ref: str,
        prior_ref: Optional[str] = None,
        *,
        cancel: CancellationToken | None = None,
        options: AnalysisOptions | None = None,
    ) -> AnalysisResult:
        """Analyze ``project_id`` at ``ref``, incrementally when ``prior_ref`` was analyzed before."""
        key = (project_id, ref)
        with self._lock:
            joined = self._runs.get(key)
            if joined is None:
                future: Future[AnalysisResult] = Future()
                self._runs[key] = future
        if joined is not None:
            self.logger.info("Joining in-flight analysis of %s", analysis_id_for(project_id, ref))
            return joined.result()

        try:
            result = self._run(project_id, ref, prior_ref, cancel or CancellationToken(), options or AnalysisOptions())
        except BaseException as exc:
            with self._lock:
                self._runs.pop(key, None)
            future.set_exception(exc)
            raise
        with self._lock:
            self._runs.pop(key, None)
            self._results[result.analysis_id] = result
        future.set_result(result)
        return result

    def get_analysis(self, analysis_id: str) -> AnalysisResult:
        project_id, ref = split_analysis_id(analysis_id)
        with self._lock:
            cached = self._results.get(analysis_id)
        if cached is not None:
            return cached

        graph = self.repository.get_graph(project_id, ref)
        if graph is None:
            raise AnalysisNotFound(f"No analysis stored for '{analysis_id}'")
        matches, diagnostics = self.detector.detect(graph)
        diagram = self.repository.get_diagram(project_id)
        if diagram is not None and diagram.commit != ref:
            diagram = None
        return AnalysisResult(
            analysis_id=analysis_id,
            project_id=project_id,
            ref=ref,
            graph=graph,
            patterns=matches,
            diagram=diagram,
            diagnostics=diagnostics,
        )

    def generate_diagram(
        self,
        analysis_id: str,
        diagram_types: Sequence[str] | None = None,
        *,
        use_ai: Optional[bool] = None,
    ) -> List[Rendering]:
        """Render the analysis' diagram model as markup, one rendering per requested type."""
        types = list(diagram_types or [self.config.diagram.type])
        unknown = [kind for kind in types if kind not in DIAGRAM_TYPES]
        if unknown:
            raise ValueError(
                f"Unknown diagram type(s): {', '.join(unknown)} (expected one of {', '.join(DIAGRAM_TYPES)})"
            )
        model = self._diagram_for(analysis_id)
        return self._render(model, types, use_ai)

    def delete_analysis(self, analysis_id: str) -> bool:
        """Drop the stored snapshot, its cached units and its diagram. Returns False when unknown."""
        project_id, ref = split_analysis_id(analysis_id)
        with self._lock:
            cached = self._results.pop(analysis_id, None)
        graph = cached.graph if cached is not None else self.repository.get_graph(project_id, ref)
        if graph is None:
            return False

        keys = [
            unit_cache_key(detect_language(path) or "", path, digest) for path, digest in graph.files.items()
        ]
        evicted = self.store.invalidate(keys)
        self.repository.delete_graph(project_id, ref)
        diagram = self.repository.get_diagram(project_id)
        if diagram is not None and diagram.commit == ref:
            self.repository.delete_diagram(project_id)
        self.logger.info("Deleted analysis %s (%d cached unit(s) evicted)", analysis_id, evicted)
        return True

    def close(self) -> None:
        if self._ai_renderer is not None:
            self._ai_renderer.close()
        if self.config.store.cache_path is not None:
            self.store.persist()

    # ------------------------------------------------------------------
    # Pipeline

    def _run(
        self,
        project_id: str,
        ref: str,
        prior_ref: Optional[str],
        token: CancellationToken,
        options: AnalysisOptions,
    ) -> AnalysisResult:
        started = self._clock()
        deadline = started + options.timeout if options.timeout else None
        analysis_id = analysis_id_for(project_id, ref)
        self.logger.info("Starting analysis %s", analysis_id)
        diagnostics: List[Diagnostic] = []

        paths = self._select_paths(self._list_files(project_id, ref), options, diagnostics)
        self.logger.debug("Selected %d source file(s)", len(paths))
        self._checkpoint(token, deadline)

        prior_graph: Optional[ArchitectureGraph] = None
        change_set: Optional[ChangeSet] = None
        if prior_ref and prior_ref != ref:
            prior_graph = self._load(lambda: self.repository.get_graph(project_id, prior_ref), diagnostics)
            if prior_graph is None:
                self.logger.info("No stored graph for %s; running a full analysis", prior_ref)
            else:
                change_set = self._diff(project_id, prior_ref, ref, diagnostics)

        units, fresh = self._parse_all(
            project_id,
            ref,
            paths,
            prior_graph,
            change_set,
            token,
            deadline,
            diagnostics,
        )

        graph = self.graph_builder.build(units, project_id=project_id, commit=ref)
        self._checkpoint(token, deadline)
        matches: List[PatternMatch] = []
        if options.detect_patterns:
            matches, rule_diagnostics = self.detector.detect(graph)
            diagnostics.extend(rule_diagnostics)
        else:
            self.logger.debug("Pattern detection disabled for %s", analysis_id)

        impact: Optional[ImpactResult] = None
        scope: Optional[Set[str]] = None
        if prior_graph is not None and change_set is not None:
            try:
                impact = self.impact_analyzer.impact(
                    change_set, prior_graph, fresh, hop_limit=options.max_depth
                )
            except ImpactComputationTimeout as exc:
                self.logger.warning("%s; regenerating the full diagram", exc)
                diagnostics.append(exc.to_diagnostic())
            else:
                if self.impact_analyzer.should_regenerate(impact):
                    self.logger.info(
                        "Change affects %.0f%% of components; regenerating the full diagram",
                        impact.affected_fraction * 100,
                    )
                else:
                    added = set(graph.component_ids()) - set(prior_graph.component_ids())
                    scope = set(impact.affected_ids()) | added

        prior_diagram = self._load(lambda: self.repository.get_diagram(project_id), diagnostics)
        if scope is not None and (prior_diagram is None or prior_diagram.commit != prior_ref):
            scope = None
        self._checkpoint(token, deadline)

        model = self.diagram_builder.build(graph, matches, scope)
        diagram = self.reconciler.reconcile(model, prior_diagram, scope, graph)

        self._store(lambda: self.repository.put_graph(graph), diagnostics)
        self._store(lambda: self.repository.put_diagram(diagram), diagnostics)

        result = AnalysisResult(
            analysis_id=analysis_id,
            project_id=project_id,
            ref=ref,
            graph=_result_graph(graph, options),
            patterns=matches,
            diagram=diagram,
            impact=impact,
            diagnostics=diagnostics,
            incremental=scope is not None,
        )
        if options.diagram_types:
            result.renderings = self._render(diagram, options.diagram_types, options.use_ai)
        result.duration = self._clock() - started
        self.logger.info(
            "Analysis %s finished: %d component(s), %d edge(s), %d pattern(s), %d diagnostic(s)",
            analysis_id,
            len(graph.components),
            len(graph.edges),
            len(matches),
            len(diagnostics),
        )
        return result

    def _select_paths(
        self, paths: Sequence[str], options: AnalysisOptions, diagnostics: List[Diagnostic]
    ) -> List[str]:
        analysis = self.config.analysis
        languages = {lang.lower() for lang in (options.languages or analysis.languages)}
        include = options.include_paths or analysis.include_paths
        exclude = [*analysis.exclude_paths, *options.exclude_paths]
        include_tests = analysis.include_tests if options.include_tests is None else options.include_tests

        selected: Set[str] = set()
        for raw in paths:
            path = normalise_path(raw)
            language = detect_language(path)
            if language is None or is_excluded_dir(path):
                continue
            if languages and language not in languages:
                continue
            if include and not matches_any(path, include):
                continue
            if exclude and matches_any(path, exclude):
                continue
            if not include_tests and is_test_path(path):
                continue
            if not self.registry.supports(language):
                failure = UnsupportedLanguage(path, language)
                self.logger.warning("Skipping %s: %s", path, failure)
                diagnostics.append(failure.to_diagnostic())
                continue
            selected.add(path)
        return sorted(selected)

    def _parse_all(
        self,
        project_id: str,
        ref: str,
        paths: Sequence[str],
        prior_graph: Optional[ArchitectureGraph],
        change_set: Optional[ChangeSet],
        token: CancellationToken,
        deadline: Optional[float],
        diagnostics: List[Diagnostic],
    ) -> Tuple[List[SourceUnit], List[SourceUnit]]:
        """Return every unit of the snapshot plus the ones that were fetched this run.

        At most ``analysis.workers`` parses are live at once. A parse that runs
        longer than ``analysis.parse_timeout`` is abandoned as a timeout and
        stops counting against that limit; files still waiting for a worker are
        not charged for the time they spent queued.
        """
        reusable: Dict[str, str] = {}
        if prior_graph is not None and change_set is not None:
            changed = {change.path for change in change_set.changes}
            changed.update(change.old_path for change in change_set.changes if change.old_path)
            reusable = {path: digest for path, digest in prior_graph.files.items() if path not in changed}

        units: List[SourceUnit] = []
        queued: Deque[Tuple[str, str]] = deque()
        for path in paths:
            language = detect_language(path) or ""
            digest = reusable.get(path)
            cached = self.store.peek(unit_cache_key(language, path, digest)) if digest else None
            if cached is not None:
                units.append(cached)
            else:
                queued.append((path, language))
        if reusable:
            self.logger.debug("Reused %d unchanged unit(s) from the symbol store", len(units))

        limit = self.config.analysis.workers
        parse_timeout = self.config.analysis.parse_timeout
        poll = max(0.01, min(_POLL_INTERVAL, parse_timeout))
        started: Dict[str, float] = {}
        outcomes: Dict[str, Optional[SourceUnit] | ParseError | UnsupportedLanguage] = {}
        live: Dict[Future[Optional[SourceUnit]], str] = {}
        # Abandoned parses keep their thread, so the pool may grow past ``limit``.
        pool = ThreadPoolExecutor(max_workers=limit + len(queued), thread_name_prefix="archdiagram-parse")
        try:
            while queued or live:
                self._checkpoint(token, deadline)
                while queued and len(live) < limit:
                    path, language = queued.popleft()
                    task = pool.submit(self._parse_file, project_id, ref, path, language, token, started)
                    live[task] = path

                done, _ = wait(live, timeout=poll, return_when=FIRST_COMPLETED)
                for task in done:
                    path = live.pop(task)
                    try:
                        outcomes[path] = task.result()
                    except (ParseError, UnsupportedLanguage) as exc:
                        outcomes[path] = exc

                now = time.monotonic()
                for task, path in list(live.items()):
                    began = started.get(path)
                    if began is not None and now - began >= parse_timeout:
                        del live[task]
                        outcomes[path] = ParseError(path, "timeout")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        fresh: List[SourceUnit] = []
        for path in sorted(outcomes):
            outcome = outcomes[path]
            if isinstance(outcome, (ParseError, UnsupportedLanguage)):
                self._record(outcome, diagnostics)
                continue
            if outcome is None:
                self.logger.warning("Skipping %s: content unavailable at %s", path, ref)
                diagnostics.append(
                    Diagnostic(
                        code="file_unavailable",
                        message=f"Content of {path} could not be fetched at {ref}",
                        path=path,
                    )
                )
                continue
            units.append(outcome)
            fresh.append(outcome)
        return units, fresh

    def _parse_file(
        self,
        project_id: str,
        ref: str,
        path: str,
        language: str,
        token: CancellationToken,
        started: Dict[str, float],
    ) -> Optional[SourceUnit]:
        started[path] = time.monotonic()
        token.raise_if_cancelled()
        content = self._fetch(project_id, ref, path)
        if content is None:
            return None
        key = unit_cache_key(language, path, content_hash(content))
        return self.store.get_or_parse(key, lambda: self.registry.parse(path, content, language))

    # ------------------------------------------------------------------
    # Collaborators

    def _list_files(self, project_id: str, ref: str) -> List[str]:
        attempts = max(0, self.config.analysis.fetch_retries) + 1
        for attempt in range(1, attempts + 1):
            try:
                return list(self.vcs.list_files(project_id, ref))
            except NotFoundError as exc:
                raise RepositoryUnavailable(f"Snapshot {project_id}@{ref} not found: {exc}") from exc
            except TransientError as exc:
                if attempt == attempts:
                    raise RepositoryUnavailable(
                        f"Unable to list files of {project_id}@{ref} after {attempts} attempt(s): {exc}"
                    ) from exc
                self.logger.debug("Retrying file listing (%d/%d): %s", attempt, attempts, exc)
        return []

    def _fetch(self, project_id: str, ref: str, path: str) -> Optional[bytes]:
        attempts = max(0, self.config.analysis.fetch_retries) + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.vcs.get_file_content(project_id, ref, path)
            except NotFoundError as exc:
                self.logger.debug("%s not found at %s: %s", path, ref, exc)
                return None
            except TransientError as exc:
                if attempt == attempts:
                    self.logger.debug("Giving up on %s after %d attempt(s): %s", path, attempts, exc)
                    return None
                self.logger.debug("Retrying fetch of %s (%d/%d): %s", path, attempt, attempts, exc)
        return None

    def _diff(
        self, project_id: str, prior_ref: str, ref: str, diagnostics: List[Diagnostic]
    ) -> Optional[ChangeSet]:
        try:
            return self.vcs.diff(project_id, prior_ref, ref)
        except (NotFoundError, TransientError) as exc:
            self.logger.warning("Diff %s..%s unavailable (%s); running a full analysis", prior_ref, ref, exc)
            diagnostics.append(
                Diagnostic(code="diff_unavailable", message=f"Diff {prior_ref}..{ref} unavailable: {exc}")
            )
            return None

    def _render(self, model: DiagramModel, types: Sequence[str], use_ai: Optional[bool]) -> List[Rendering]:
        wants_ai = self.config.render.ai_enabled if use_ai is None else use_ai
        ai = self._resolve_ai_renderer() if wants_ai else None
        renderings: List[Rendering] = []
        for diagram_type in types:
            if ai is not None:
                renderings.append(ai.render(model, diagram_type))
                continue
            rendering = Rendering(markup=self.renderer.render(model, diagram_type), diagram_type=diagram_type)
            if wants_ai:
                failure = RenderingUnavailable("AI rendering unavailable: no model runtime configured")
                rendering.diagnostics.append(failure.to_diagnostic())
            renderings.append(rendering)
        return renderings

    def _resolve_ai_renderer(self) -> Optional[AIRenderer]:
        with self._lock:
            if self._ai_renderer is not None:
                return self._ai_renderer
            runner = self._ai_runner
            if runner is None and self.config.llm is not None:
                try:
                    runner = LLMRunner.from_config(self.config.llm)
                except LLMError as exc:
                    self.logger.warning("Failed to initialise LLM runner: %s", exc)
                    return None
            if runner is None:
                self.logger.debug("No LLM configuration detected; rendering deterministically")
                return None
            self._ai_renderer = AIRenderer(runner, config=self.config.render, fallback=self.renderer)
            return self._ai_renderer

    def _diagram_for(self, analysis_id: str) -> DiagramModel:
        project_id, ref = split_analysis_id(analysis_id)
        with self._lock:
            cached = self._results.get(analysis_id)
        if cached is not None and cached.diagram is not None:
            return cached.diagram

        stored = self.repository.get_diagram(project_id)
        if stored is not None and stored.commit == ref:
            return stored
        graph = cached.graph if cached is not None else self.repository.get_graph(project_id, ref)
        if graph is None:
            raise AnalysisNotFound(f"No analysis stored for '{analysis_id}'")
        matches, _ = self.detector.detect(graph)
        return self.reconciler.reconcile(self.diagram_builder.build(graph, matches))

    # ------------------------------------------------------------------
    # Helpers

    def _default_repository(self) -> SnapshotRepository:
        directory = self.config.store.persistence_dir
        if directory is not None:
            return SnapshotRepository(JsonDirectoryStore(directory))
        return SnapshotRepository(InMemoryStore())

    def _checkpoint(self, token: CancellationToken, deadline: Optional[float]) -> None:
        token.raise_if_cancelled()
        if deadline is not None and self._clock() > deadline:
            raise AnalysisCancelled("Analysis exceeded its time budget")

    def _record(self, exc: ParseError | UnsupportedLanguage, diagnostics: List[Diagnostic]) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.warning("Skipping %s: %s", exc.path, exc, exc_info=exc)
        else:
            self.logger.warning("Skipping %s: %s", exc.path, exc)
        diagnostics.append(exc.to_diagnostic())

    def _load(self, loader: Callable[[], object], diagnostics: List[Diagnostic]):
        try:
            return loader()
        except PersistenceFailure as exc:
            self.logger.warning("%s", exc)
            diagnostics.append(exc.to_diagnostic())
            return None

    def _store(self, writer: Callable[[], None], diagnostics: List[Diagnostic]) -> None:
        try:
            writer()
        except PersistenceFailure as exc:
            self.logger.error("%s", exc)
            diagnostics.append(exc.to_diagnostic())


__all__ = [
    "AnalysisEngine",
    "AnalysisOptions",
    "AnalysisResult",
    "CancellationToken",
    "analysis_id_for",
    "split_analysis_id",
]
