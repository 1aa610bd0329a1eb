"""Shared contract and helpers for parser adapters."""

from __future__ import annotations

import hashlib
import posixpath
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional

from ..models import Reference, Symbol

_INDEX_STEMS = {"__init__", "index", "package-info"}
_SOURCE_ROOTS = ("src/main/java/", "src/test/java/", "src/")
_SCRIPT_SUFFIXES = {".js", ".jsx", ".mjs", ".ts", ".tsx", ".mts", ".cts"}


@dataclass
class ParsedFile:
    """Symbols and references extracted from one file, in source order."""

    symbols: List[Symbol] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)


ParserAdapter = Callable[[str, str], ParsedFile]
"""Adapter signature: ``(path, text) -> ParsedFile``; raises ParseError on malformed input."""


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def module_name_from_path(path: str) -> str:
    """Derive a dotted module name from a repository-relative path."""
    normalized = path.replace("\\", "/")
    for root in _SOURCE_ROOTS:
        if normalized.startswith(root):
            normalized = normalized[len(root) :]
            break
    pure = PurePosixPath(normalized)
    parts = list(pure.parent.parts) if str(pure.parent) != "." else []
    if pure.stem not in _INDEX_STEMS or not parts:
        parts.append(pure.stem)
    return ".".join(part for part in parts if part)


def resolve_relative_module(importer_path: str, specifier: str) -> str:
    """Turn an ``./x`` style import specifier into a dotted module name."""
    base_dir = posixpath.dirname(importer_path.replace("\\", "/"))
    joined = posixpath.normpath(posixpath.join(base_dir, specifier))
    stem, ext = posixpath.splitext(joined)
    if ext in _SCRIPT_SUFFIXES:
        joined = stem
    return module_name_from_path(joined + ".ts")


class SymbolCollector:
    """Accumulates symbols and references while an adapter walks a tree."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.symbols: List[Symbol] = []
        self.references: List[Reference] = []
        self._aliases: Dict[str, str] = {}
        self._used_aliases: set[str] = set()

    def declare(
        self,
        name: str,
        qualified_name: str,
        kind: str,
        line: int,
        aliases: tuple[str, ...] = (),
    ) -> Symbol:
        symbol = Symbol(
            name=name,
            qualified_name=qualified_name,
            kind=kind,
            path=self.path,
            line=line,
            aliases=aliases,
        )
        self.symbols.append(symbol)
        return symbol

    def refer(self, source: Symbol, target: Optional[str], kind: str, line: int) -> None:
        if not target:
            return
        self.references.append(Reference(source=source.id, target=target, kind=kind, line=line))

    def alias(self, local_name: str, qualified_name: str) -> None:
        self._aliases[local_name] = qualified_name

    def has_alias(self, local_name: str) -> bool:
        return local_name in self._aliases

    def qualify(self, dotted: str, local_names: Dict[str, str] | None = None) -> str:
        """Expand the head of a dotted name through import aliases or local definitions."""
        head, _, rest = dotted.partition(".")
        if head in self._aliases:
            self._used_aliases.add(head)
            base = self._aliases[head]
        elif local_names and head in local_names:
            base = local_names[head]
        else:
            return dotted
        return f"{base}.{rest}" if rest else base

    def unused_aliases(self) -> List[tuple[str, str]]:
        return [
            (local, target)
            for local, target in self._aliases.items()
            if local not in self._used_aliases
        ]

    def result(self) -> ParsedFile:
        return ParsedFile(symbols=list(self.symbols), references=list(self.references))


__all__ = [
    "ParsedFile",
    "ParserAdapter",
    "SymbolCollector",
    "content_hash",
    "module_name_from_path",
    "resolve_relative_module",
]
