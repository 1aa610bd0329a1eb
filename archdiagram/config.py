"""Configuration loading for archdiagram (.archdiagram.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import ConfigError

CONFIG_FILENAME = ".archdiagram.yml"

GROUPING_POLICIES = ("file", "package", "symbol", "layer")
DIAGRAM_TYPES = ("component", "dependency")
LOG_LEVELS = ("debug", "info", "warning", "error")
DEFAULT_LOG_FORMAT = "[archdiagram] %(levelname)s %(message)s"


@dataclass
class AnalysisConfig:
    """Parsing and snapshot selection settings."""

    workers: int = 8
    parse_timeout: float = 30.0
    fetch_retries: int = 2
    grouping: str = "file"
    languages: List[str] = field(default_factory=list)
    include_paths: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    include_tests: bool = False


@dataclass
class ImpactConfig:
    """Change impact propagation policy."""

    decay: float = 0.5
    hop_limit: int = 3
    min_impact: float = 0.1
    full_regeneration_fraction: float = 0.5
    time_budget: float = 10.0


@dataclass
class PatternConfig:
    """Pattern rule enablement and thresholds."""

    enabled: List[str] = field(default_factory=list)
    layered_back_edge_tolerance: float = 0.1
    repository_min_service_fan_in: int = 2
    hub_degree_fraction: float = 0.5


@dataclass
class DiagramConfig:
    """Diagram projection and reconciliation settings."""

    visibility_threshold: int = 1
    regeneration_threshold: float = 0.5
    type: str = "component"


@dataclass
class RenderConfig:
    """AI rendering guard rails."""

    ai_enabled: bool = True
    timeout: float = 30.0
    failure_threshold: int = 3
    reset_after: float = 60.0


@dataclass
class LLMConfig:
    """LLM runtime settings used by the AI renderer."""

    runner: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    request_timeout: Optional[float] = None


@dataclass
class StoreConfig:
    """Symbol cache and persistence locations."""

    cache_capacity: int = 4096
    cache_path: Optional[Path] = None
    persistence_dir: Optional[Path] = None


@dataclass
class LoggingConfig:
    """Console format, level and optional file sink for the archdiagram logger."""

    level: str = "info"
    format: str = DEFAULT_LOG_FORMAT
    file: Optional[Path] = None


@dataclass
class EngineConfig:
    """Represents the settings defined in .archdiagram.yml."""

    root: Path
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    impact: ImpactConfig = field(default_factory=ImpactConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    diagram: DiagramConfig = field(default_factory=DiagramConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    llm: Optional[LLMConfig] = None
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def default_config(root: Path | None = None) -> EngineConfig:
    return EngineConfig(root=(root or Path.cwd()).resolve())


def load_config(config_path: Path) -> EngineConfig:
    """Load configuration from disk."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return EngineConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    config = EngineConfig(root=root)

    analysis_data = _as_dict(data.get("analysis"))
    if analysis_data:
        analysis = config.analysis
        analysis.workers = _positive_int(analysis_data.get("workers"), analysis.workers, "analysis.workers")
        analysis.parse_timeout = _as_float(analysis_data.get("parse_timeout"), analysis.parse_timeout)
        analysis.fetch_retries = _as_int(analysis_data.get("fetch_retries"), analysis.fetch_retries)
        grouping = _as_str(analysis_data.get("grouping"))
        if grouping is not None:
            if grouping not in GROUPING_POLICIES:
                raise ConfigError(
                    f"analysis.grouping must be one of {', '.join(GROUPING_POLICIES)} (got '{grouping}')"
                )
            analysis.grouping = grouping
        analysis.languages = [lang.lower() for lang in _as_str_list(analysis_data.get("languages"))]
        analysis.include_paths = _as_str_list(analysis_data.get("include_paths"))
        analysis.exclude_paths = _as_str_list(analysis_data.get("exclude_paths"))
        include_tests = _as_bool(analysis_data.get("include_tests"))
        if include_tests is not None:
            analysis.include_tests = include_tests

    impact_data = _as_dict(data.get("impact"))
    if impact_data:
        impact = config.impact
        impact.decay = _fraction(impact_data.get("decay"), impact.decay, "impact.decay")
        impact.hop_limit = _as_int(impact_data.get("hop_limit"), impact.hop_limit)
        impact.min_impact = _fraction(impact_data.get("min_impact"), impact.min_impact, "impact.min_impact")
        impact.full_regeneration_fraction = _fraction(
            impact_data.get("full_regeneration_fraction"),
            impact.full_regeneration_fraction,
            "impact.full_regeneration_fraction",
        )
        impact.time_budget = _as_float(impact_data.get("time_budget"), impact.time_budget)

    pattern_data = _as_dict(data.get("patterns"))
    if pattern_data:
        patterns = config.patterns
        patterns.enabled = _as_str_list(pattern_data.get("enabled"))
        patterns.layered_back_edge_tolerance = _fraction(
            pattern_data.get("layered_back_edge_tolerance"),
            patterns.layered_back_edge_tolerance,
            "patterns.layered_back_edge_tolerance",
        )
        patterns.repository_min_service_fan_in = _as_int(
            pattern_data.get("repository_min_service_fan_in"),
            patterns.repository_min_service_fan_in,
        )
        patterns.hub_degree_fraction = _fraction(
            pattern_data.get("hub_degree_fraction"),
            patterns.hub_degree_fraction,
            "patterns.hub_degree_fraction",
        )

    diagram_data = _as_dict(data.get("diagram"))
    if diagram_data:
        diagram = config.diagram
        diagram.visibility_threshold = _as_int(
            diagram_data.get("visibility_threshold"), diagram.visibility_threshold
        )
        diagram.regeneration_threshold = _fraction(
            diagram_data.get("regeneration_threshold"),
            diagram.regeneration_threshold,
            "diagram.regeneration_threshold",
        )
        diagram_type = _as_str(diagram_data.get("type"))
        if diagram_type is not None:
            if diagram_type not in DIAGRAM_TYPES:
                raise ConfigError(
                    f"diagram.type must be one of {', '.join(DIAGRAM_TYPES)} (got '{diagram_type}')"
                )
            diagram.type = diagram_type

    render_data = _as_dict(data.get("render"))
    if render_data:
        render = config.render
        ai_enabled = _as_bool(render_data.get("ai_enabled"))
        if ai_enabled is not None:
            render.ai_enabled = ai_enabled
        render.timeout = _as_float(render_data.get("timeout"), render.timeout)
        render.failure_threshold = _as_int(render_data.get("failure_threshold"), render.failure_threshold)
        render.reset_after = _as_float(render_data.get("reset_after"), render.reset_after)

    llm_data = _as_dict(data.get("llm"))
    if llm_data:
        llm = LLMConfig(
            runner=_as_str(llm_data.get("runner")),
            model=_as_str(llm_data.get("model")),
            temperature=_as_optional_float(llm_data.get("temperature")),
            max_tokens=_as_optional_int(llm_data.get("max_tokens")),
            base_url=_as_str(llm_data.get("base_url")),
            api_key=_as_str(llm_data.get("api_key")),
            request_timeout=_as_optional_float(llm_data.get("request_timeout")),
        )
        if any(
            (
                llm.runner,
                llm.model,
                llm.temperature,
                llm.max_tokens,
                llm.base_url,
                llm.api_key,
                llm.request_timeout,
            )
        ):
            config.llm = llm

    store_data = _as_dict(data.get("store"))
    if store_data:
        store = config.store
        store.cache_capacity = _positive_int(
            store_data.get("cache_capacity"), store.cache_capacity, "store.cache_capacity"
        )
        cache_path = _as_str(store_data.get("cache_path"))
        if cache_path:
            store.cache_path = root / cache_path
        persistence_dir = _as_str(store_data.get("persistence_dir"))
        if persistence_dir:
            store.persistence_dir = root / persistence_dir

    logging_data = _as_dict(data.get("logging"))
    if logging_data:
        settings = config.logging
        level = _as_str(logging_data.get("level"))
        if level is not None:
            if level.lower() not in LOG_LEVELS:
                raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)} (got '{level}')")
            settings.level = level.lower()
        settings.format = _as_str(logging_data.get("format")) or settings.format
        log_file = _as_str(logging_data.get("file"))
        if log_file:
            settings.file = root / log_file

    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_optional_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_float(value: Any, default: float) -> float:
    parsed = _as_optional_float(value)
    return default if parsed is None else parsed


def _as_int(value: Any, default: int) -> int:
    parsed = _as_optional_int(value)
    return default if parsed is None else parsed


def _positive_int(value: Any, default: int, name: str) -> int:
    parsed = _as_int(value, default)
    if parsed < 1:
        raise ConfigError(f"{name} must be a positive integer (got {parsed})")
    return parsed


def _fraction(value: Any, default: float, name: str) -> float:
    parsed = _as_float(value, default)
    if not 0.0 <= parsed <= 1.0:
        raise ConfigError(f"{name} must be between 0 and 1 (got {parsed})")
    return parsed


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "AnalysisConfig",
    "CONFIG_FILENAME",
    "DIAGRAM_TYPES",
    "DiagramConfig",
    "EngineConfig",
    "GROUPING_POLICIES",
    "ImpactConfig",
    "LOG_LEVELS",
    "LLMConfig",
    "LoggingConfig",
    "PatternConfig",
    "RenderConfig",
    "StoreConfig",
    "default_config",
    "load_config",
]
