from __future__ import annotations

import logging
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from archdiagram.config import EngineConfig, default_config
from archdiagram.engine import AnalysisEngine
from archdiagram.models import SourceUnit
from archdiagram.parsers import ParserRegistry
from archdiagram.parsers.language import detect_language
from archdiagram.parsers.python_ast import parse_python
from tests._fixtures.fake_vcs import InMemoryVCS


@pytest.fixture
def vcs() -> InMemoryVCS:
    """Provide an empty in-memory version-control collaborator."""
    return InMemoryVCS()


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    config = default_config(tmp_path)
    config.analysis.workers = 2
    config.analysis.parse_timeout = 5.0
    config.render.ai_enabled = False
    return config


@pytest.fixture
def python_registry() -> ParserRegistry:
    """Registry with only the Python adapter so engine tests never depend on grammars."""
    return ParserRegistry({"python": parse_python})


@pytest.fixture
def make_engine(
    vcs: InMemoryVCS, engine_config: EngineConfig, python_registry: ParserRegistry
) -> Callable[..., AnalysisEngine]:
    def _factory(**overrides: object) -> AnalysisEngine:
        kwargs: dict[str, object] = {"registry": python_registry}
        kwargs.update(overrides)
        return AnalysisEngine(engine_config, vcs, **kwargs)  # type: ignore[arg-type]

    return _factory


@pytest.fixture
def parse_unit(python_registry: ParserRegistry) -> Callable[[str, str], SourceUnit]:
    """Parse dedented source text into a SourceUnit."""

    def _parse(path: str, text: str) -> SourceUnit:
        source = textwrap.dedent(text).lstrip("\n")
        return python_registry.parse(path, source, detect_language(path))

    return _parse


@pytest.fixture(autouse=True)
def _reset_archdiagram_logger():
    """Undo configure_logging() so later tests can still capture records."""
    yield
    logger = logging.getLogger("archdiagram")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
