"""Error taxonomy for analysis runs.

Fatal errors abort a run. Non-fatal ones are converted into diagnostics and
collected alongside the result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import Diagnostic


class ArchDiagramError(RuntimeError):
    """Base class for archdiagram failures."""

    code = "error"
    severity = "error"

    def __init__(self, message: str, *, path: Optional[str] = None, **detail: Any) -> None:
        super().__init__(message)
        self.path = path
        self.detail: Dict[str, Any] = detail

    def to_diagnostic(self) -> "Diagnostic":
        from .models import Diagnostic

        return Diagnostic(
            code=self.code,
            message=str(self),
            severity=self.severity,
            path=self.path,
            detail=dict(self.detail),
        )


class ConfigError(ArchDiagramError):
    """Raised when the configuration file cannot be parsed."""

    code = "config_error"


class UnsupportedLanguage(ArchDiagramError):
    """No registered adapter handles the file's language."""

    code = "unsupported_language"
    severity = "warning"

    def __init__(self, path: str, language: str) -> None:
        super().__init__(f"No parser registered for language '{language}'", path=path, language=language)
        self.language = language


class ParseError(ArchDiagramError):
    """A file could not be parsed; it is excluded from the run."""

    code = "parse_error"
    severity = "warning"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to parse {path}: {reason}", path=path, reason=reason)
        self.reason = reason


class GraphBuildFailure(ArchDiagramError):
    """Graph invariants were violated; the run is aborted."""

    code = "graph_build_failure"


class PatternRuleFailure(ArchDiagramError):
    """A single pattern rule raised; its matches are skipped."""

    code = "pattern_rule_failure"
    severity = "warning"

    def __init__(self, rule: str, reason: str) -> None:
        super().__init__(f"Pattern rule '{rule}' failed: {reason}", rule=rule)
        self.rule = rule


class ImpactComputationTimeout(ArchDiagramError):
    """Impact propagation exceeded its time budget."""

    code = "impact_timeout"
    severity = "warning"


class RenderingUnavailable(ArchDiagramError):
    """The AI renderer could not produce markup; deterministic output is used."""

    code = "rendering_unavailable"
    severity = "warning"


class PersistenceFailure(ArchDiagramError):
    """Storing or loading results failed."""

    code = "persistence_failure"


class RepositoryUnavailable(ArchDiagramError):
    """The version-control collaborator could not serve the snapshot."""

    code = "repository_unavailable"


class AnalysisCancelled(ArchDiagramError):
    """The caller cancelled the run; partial results are discarded."""

    code = "cancelled"


class AnalysisNotFound(ArchDiagramError):
    """No stored or in-memory analysis exists for the requested id."""

    code = "not_found"


__all__ = [
    "AnalysisCancelled",
    "AnalysisNotFound",
    "ArchDiagramError",
    "ConfigError",
    "GraphBuildFailure",
    "ImpactComputationTimeout",
    "ParseError",
    "PatternRuleFailure",
    "PersistenceFailure",
    "RenderingUnavailable",
    "RepositoryUnavailable",
    "UnsupportedLanguage",
]
