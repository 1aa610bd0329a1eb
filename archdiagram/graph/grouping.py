"""Grouping policies and component kind heuristics."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Sequence

from ..models import SourceUnit, Symbol
from ..parsers.base import module_name_from_path
from ..parsers.language import is_test_path

COMPONENT_KINDS = ("ui", "api", "service", "data", "infrastructure", "utility", "test", "module")

_KIND_TOKENS: Sequence[tuple[str, frozenset[str]]] = (
    (
        "ui",
        frozenset(
            {"ui", "view", "views", "page", "pages", "screen", "screens", "widget", "widgets",
             "component", "components", "frontend", "template", "templates", "presentation"}
        ),
    ),
    (
        "api",
        frozenset(
            {"api", "apis", "controller", "controllers", "route", "routes", "router", "routers",
             "handler", "handlers", "endpoint", "endpoints", "rest", "resource", "resources", "web", "http"}
        ),
    ),
    (
        "service",
        frozenset(
            {"service", "services", "usecase", "usecases", "interactor", "domain", "logic",
             "manager", "managers", "workflow", "workflows"}
        ),
    ),
    (
        "data",
        frozenset(
            {"repository", "repositories", "repo", "repos", "dao", "daos", "model", "models",
             "entity", "entities", "db", "database", "persistence", "schema", "schemas", "store",
             "stores", "record", "records", "orm", "migrations"}
        ),
    ),
    (
        "infrastructure",
        frozenset(
            {"infra", "infrastructure", "config", "configuration", "settings", "adapter", "adapters",
             "client", "clients", "gateway", "gateways", "queue", "messaging", "cache", "transport"}
        ),
    ),
    (
        "utility",
        frozenset({"util", "utils", "utility", "utilities", "helper", "helpers", "common", "shared", "lib", "libs"}),
    ),
)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[^A-Za-z0-9]+")

_INDEX_STEMS = {"__init__", "index", "package-info"}
_TOP_LEVEL_KINDS = {"class", "interface", "enum", "function"}


def tokens(text: str) -> List[str]:
    """Split an identifier or path segment into lower-case words."""
    words: List[str] = []
    for chunk in _SEPARATORS.split(text):
        if chunk:
            words.extend(part.lower() for part in _CAMEL_BOUNDARY.split(chunk) if part)
    return words


def kind_for(path: str, name: str = "") -> str:
    """Heuristic component kind from the symbol name first, then enclosing directories."""
    if is_test_path(path):
        return "test"
    pure = PurePosixPath(path)
    candidates = [name, pure.stem] + list(reversed(pure.parts[:-1]))
    for candidate in candidates:
        words = tokens(candidate)
        # Prefer the trailing word ("UserRepository" is data, not user).
        for word in reversed(words):
            for kind, vocabulary in _KIND_TOKENS:
                if word in vocabulary:
                    return kind
    return "module"


@dataclass(frozen=True)
class Group:
    """Component a symbol is assigned to."""

    qualified_name: str
    name: str
    kind: str


def module_qualified_name(unit: SourceUnit) -> str:
    for symbol in unit.symbols:
        if symbol.kind == "module":
            return symbol.qualified_name
    return module_name_from_path(unit.path)


def group_file(unit: SourceUnit) -> Dict[str, Group]:
    qualified = module_qualified_name(unit)
    name = qualified.rsplit(".", 1)[-1]
    group = Group(qualified, name, kind_for(unit.path, name))
    return {symbol.id: group for symbol in unit.symbols}


def group_package(unit: SourceUnit) -> Dict[str, Group]:
    module = module_qualified_name(unit)
    pure = PurePosixPath(unit.path)
    if pure.stem in _INDEX_STEMS:
        package = module
    elif "." in module:
        package = module.rsplit(".", 1)[0]
    else:
        package = "__root__"
    name = "root" if package == "__root__" else package.rsplit(".", 1)[-1]
    group = Group(package, name, kind_for(str(pure.parent / "__init__.py"), name))
    return {symbol.id: group for symbol in unit.symbols}


def group_symbol(unit: SourceUnit) -> Dict[str, Group]:
    containers = {symbol.qualified_name for symbol in unit.symbols if symbol.kind != "module"}
    top_level: List[Symbol] = [
        symbol
        for symbol in unit.symbols
        if symbol.kind in _TOP_LEVEL_KINDS
        and symbol.qualified_name.rsplit(".", 1)[0] not in containers
    ]
    if not top_level:
        return group_file(unit)
    groups = {
        symbol.qualified_name: Group(symbol.qualified_name, symbol.name, kind_for(unit.path, symbol.name))
        for symbol in top_level
    }
    first = min(top_level, key=lambda symbol: (symbol.line, symbol.qualified_name))
    ordered = sorted(groups, key=len, reverse=True)
    mapping: Dict[str, Group] = {}
    for symbol in unit.symbols:
        owner = next(
            (qn for qn in ordered if symbol.qualified_name == qn or symbol.qualified_name.startswith(f"{qn}.")),
            None,
        )
        mapping[symbol.id] = groups[owner] if owner is not None else groups[first.qualified_name]
    return mapping


def group_layer(unit: SourceUnit) -> Dict[str, Group]:
    module = module_qualified_name(unit)
    kind = kind_for(unit.path, module.rsplit(".", 1)[-1])
    group = Group(kind, kind, kind)
    return {symbol.id: group for symbol in unit.symbols}


POLICIES = {
    "file": group_file,
    "package": group_package,
    "symbol": group_symbol,
    "layer": group_layer,
}


def assign(unit: SourceUnit, policy: str) -> Dict[str, Group]:
    try:
        grouping = POLICIES[policy]
    except KeyError:
        raise ValueError(f"Unknown grouping policy '{policy}'") from None
    return grouping(unit)


__all__ = ["COMPONENT_KINDS", "Group", "POLICIES", "assign", "kind_for", "module_qualified_name", "tokens"]
