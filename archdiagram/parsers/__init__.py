"""Parser adapters and the language registry."""

from __future__ import annotations

from importlib import metadata
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..errors import ParseError, UnsupportedLanguage
from ..logging import get_logger
from ..models import SourceUnit
from .base import ParsedFile, ParserAdapter, content_hash
from .language import detect_language
from .python_ast import parse_python
from .tree_sitter import grammar_available, parse_java, parse_typescript

_ENTRY_POINT_GROUP = "archdiagram.parsers"

_BUILTIN_ADAPTERS: Dict[str, ParserAdapter] = {
    "python": parse_python,
    "java": parse_java,
    "typescript": parse_typescript,
    "javascript": parse_typescript,
}

# language -> tree-sitter grammar the adapter needs
_REQUIRED_GRAMMARS = {
    "java": "java",
    "typescript": "typescript",
    "javascript": "typescript",
}

_logger = get_logger("parsers")


class ParserRegistry:
    """Maps language tags to adapter callables and wraps their output into SourceUnits."""

    def __init__(self, adapters: Optional[Mapping[str, ParserAdapter]] = None) -> None:
        self._adapters: Dict[str, ParserAdapter] = dict(adapters or {})

    def register(self, language: str, adapter: ParserAdapter) -> None:
        if not callable(adapter):
            raise TypeError(f"Parser adapter for '{language}' must be callable")
        self._adapters[language.lower()] = adapter

    def supports(self, language: Optional[str]) -> bool:
        return language is not None and language.lower() in self._adapters

    def languages(self) -> List[str]:
        return sorted(self._adapters)

    def parse(self, path: str, content: bytes | str, language: Optional[str] = None) -> SourceUnit:
        """Parse one file into a SourceUnit.

        Raises UnsupportedLanguage when no adapter is registered for the tag and
        ParseError when the content is not UTF-8 or the adapter rejects it.
        """
        tag = (language or detect_language(path) or "").lower()
        adapter = self._adapters.get(tag)
        if adapter is None:
            raise UnsupportedLanguage(path, tag or "unknown")

        raw = content.encode("utf-8") if isinstance(content, str) else content
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(path, f"content is not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc

        try:
            parsed = adapter(path, text)
        except ParseError:
            raise
        except Exception as exc:
            raise ParseError(path, f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(parsed, ParsedFile):
            raise ParseError(path, f"adapter for '{tag}' returned {type(parsed).__name__}")

        return SourceUnit(
            path=path,
            content_hash=content_hash(raw),
            language=tag,
            symbols=tuple(parsed.symbols),
            references=tuple(parsed.references),
        )


def discover_adapters(enabled: Sequence[str] | None = None) -> ParserRegistry:
    """Return a registry with built-in and entry-point adapters, honoring optional enabled tags."""

    enabled_set: Set[str] | None = None
    if enabled is not None:
        enabled_set = {name.lower() for name in enabled}

    registry = ParserRegistry()
    seen: Set[str] = set()

    def _add(name: str, adapter: ParserAdapter) -> None:
        key = name.lower()
        if enabled_set is not None and key not in enabled_set:
            return
        if key in seen:
            return
        registry.register(key, adapter)
        seen.add(key)
        if enabled_set is not None:
            enabled_set.discard(key)

    for name, adapter in _BUILTIN_ADAPTERS.items():
        grammar = _REQUIRED_GRAMMARS.get(name)
        if grammar is not None and not grammar_available(grammar):
            _logger.debug("Skipping %s adapter; tree-sitter grammar '%s' is not installed", name, grammar)
            continue
        _add(name, adapter)

    for entry in _iter_entry_points():
        try:
            loaded = entry.load()
        except Exception as exc:  # pragma: no cover - broken third-party plugin
            raise RuntimeError(f"Failed to load parser entry point '{entry.name}': {exc}") from exc
        _add(entry.name, _coerce_adapter(entry.name, loaded))

    if enabled_set:
        missing = ", ".join(sorted(enabled_set))
        raise ValueError(f"Unknown parser languages requested: {missing}")

    return registry


def _coerce_adapter(name: str, obj: object) -> ParserAdapter:
    if callable(obj):
        return obj  # type: ignore[return-value]
    raise TypeError(f"Parser entry point '{name}' must be a callable (path, text) -> ParsedFile")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points().select(group=_ENTRY_POINT_GROUP)


__all__ = [
    "ParsedFile",
    "ParserAdapter",
    "ParserRegistry",
    "detect_language",
    "discover_adapters",
]
