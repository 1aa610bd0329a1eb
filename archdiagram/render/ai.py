"""AI-assisted rendering layered over the deterministic Mermaid renderer."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from ..config import RenderConfig
from ..errors import RenderingUnavailable
from ..logging import get_logger
from ..models import Diagnostic, DiagramModel
from .mermaid import MermaidRenderer, strip_fences, validate_markup
from .prompting import DiagramPromptBuilder

_logger = get_logger("render.ai")


class CompletionRunner(Protocol):
    def run(self, prompt: str, *, system: str | None = None) -> str:
        ...


@dataclass
class Rendering:
    """Rendered markup plus where it came from."""

    markup: str
    diagram_type: str
    source: str = "deterministic"
    diagnostics: List[Diagnostic] = field(default_factory=list)


class CircuitBreaker:
    """Closed/open/half-open breaker guarding calls to the model runtime."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_after: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = max(1, failure_threshold)
        self.reset_after = reset_after
        self._clock = clock
        self._state = self.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            self._refresh()
            return self._state

    def allow(self) -> bool:
        with self._lock:
            self._refresh()
            return self._state != self.OPEN

    def record_success(self) -> None:
        with self._lock:
            self._state = self.CLOSED
            self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._refresh()
            self._failures += 1
            if self._state == self.HALF_OPEN or self._failures >= self.failure_threshold:
                self._state = self.OPEN
                self._opened_at = self._clock()

    def _refresh(self) -> None:
        if self._state == self.OPEN and self._clock() - self._opened_at >= self.reset_after:
            self._state = self.HALF_OPEN


class AIRenderer:
    """Asks a model to restyle deterministic markup; always returns usable markup.

    Any failure (open breaker, timeout, runner error, invalid output) yields the
    deterministic rendering with a ``RenderingUnavailable`` diagnostic.
    """

    def __init__(
        self,
        runner: CompletionRunner,
        *,
        config: Optional[RenderConfig] = None,
        fallback: Optional[MermaidRenderer] = None,
        prompt_builder: Optional[DiagramPromptBuilder] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.config = config or RenderConfig()
        self.runner = runner
        self.fallback = fallback or MermaidRenderer()
        self.prompt_builder = prompt_builder or DiagramPromptBuilder()
        self.breaker = breaker or CircuitBreaker(self.config.failure_threshold, self.config.reset_after)
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="archdiagram-ai")

    def render(self, model: DiagramModel, diagram_type: str = "component") -> Rendering:
        baseline = self.fallback.render(model, diagram_type)
        if not self.breaker.allow():
            return self._degraded(baseline, diagram_type, "circuit breaker is open")

        request = self.prompt_builder.build(model, diagram_type, baseline)
        future = self._pool.submit(self.runner.run, request.prompt, system=request.system)
        try:
            raw = future.result(timeout=self.config.timeout)
        except FutureTimeout:
            future.cancel()
            self.breaker.record_failure()
            return self._degraded(baseline, diagram_type, f"model did not answer within {self.config.timeout:.1f}s")
        except Exception as exc:
            self.breaker.record_failure()
            return self._degraded(baseline, diagram_type, f"{type(exc).__name__}: {exc}")

        markup = strip_fences(raw or "")
        problems = validate_markup(markup, model)
        if problems:
            self.breaker.record_failure()
            return self._degraded(baseline, diagram_type, "invalid markup: " + "; ".join(problems))

        self.breaker.record_success()
        return Rendering(markup=markup.rstrip() + "\n", diagram_type=diagram_type, source="ai")

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def _degraded(self, baseline: str, diagram_type: str, reason: str) -> Rendering:
        failure = RenderingUnavailable(f"AI rendering unavailable: {reason}", diagram_type=diagram_type)
        _logger.warning("%s; using deterministic markup", failure)
        return Rendering(
            markup=baseline,
            diagram_type=diagram_type,
            source="deterministic",
            diagnostics=[failure.to_diagnostic()],
        )


__all__ = ["AIRenderer", "CircuitBreaker", "CompletionRunner", "Rendering"]
