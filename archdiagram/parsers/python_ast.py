"""Python adapter built on the standard library ``ast`` module."""

from __future__ import annotations

import ast
import builtins
import typing
from typing import Dict, List, Optional

from ..errors import ParseError
from ..models import Symbol
from .base import ParsedFile, SymbolCollector, module_name_from_path

_IGNORED_NAMES = set(dir(builtins)) | set(dir(typing)) | {"self", "cls", "super"}


def parse_python(path: str, text: str) -> ParsedFile:
    """Extract module, class and function symbols plus their references."""
    try:
        tree = ast.parse(text, filename=path)
    except SyntaxError as exc:
        raise ParseError(path, f"syntax error at line {exc.lineno}: {exc.msg}") from exc
    except ValueError as exc:  # null bytes in source
        raise ParseError(path, str(exc)) from exc

    module = module_name_from_path(path)
    visitor = _PythonVisitor(path, module, is_package=path.endswith("__init__.py"))
    visitor.run(tree)
    return visitor.result()


class _PythonVisitor(ast.NodeVisitor):
    def __init__(self, path: str, module: str, *, is_package: bool) -> None:
        self.collector = SymbolCollector(path)
        self.module = module
        self.is_package = is_package
        self._scopes: List[Symbol] = []
        self._local_names: Dict[str, str] = {}
        self._module_symbol: Optional[Symbol] = None

    def run(self, tree: ast.Module) -> None:
        short_name = self.module.rsplit(".", 1)[-1]
        self._module_symbol = self.collector.declare(short_name, self.module, "module", 1)
        for node in tree.body:
            if isinstance(node, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
                self._local_names[node.name] = f"{self.module}.{node.name}"
        self._scopes.append(self._module_symbol)
        self.generic_visit(tree)
        self._scopes.pop()
        for _local, target in self.collector.unused_aliases():
            self.collector.refer(self._module_symbol, target, "imports", 1)

    def result(self) -> ParsedFile:
        return self.collector.result()

    # ------------------------------------------------------------------
    # Declarations

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        scope = self._scopes[-1]
        qualified = f"{scope.qualified_name}.{node.name}"
        aliases = (node.name,) if scope.kind == "module" else (f"{scope.name}.{node.name}",)
        symbol = self.collector.declare(node.name, qualified, "class", node.lineno, aliases)
        for base in node.bases:
            target = self._dotted(base)
            if target and not self._ignored(target):
                self.collector.refer(symbol, self._qualify(target), "extends", node.lineno)
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._scopes.append(symbol)
        for child in node.body:
            self.visit(child)
        self._scopes.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        scope = self._scopes[-1]
        qualified = f"{scope.qualified_name}.{node.name}"
        if scope.kind == "class":
            kind = "method"
            aliases: tuple[str, ...] = (f"{scope.name}.{node.name}",)
        elif scope.kind == "module":
            kind = "function"
            aliases = (node.name,)
        else:
            kind = "function"
            aliases = ()
        symbol = self.collector.declare(node.name, qualified, kind, node.lineno, aliases)
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._scopes.append(symbol)
        for child in node.body:
            self.visit(child)
        self._scopes.pop()

    visit_AsyncFunctionDef = visit_FunctionDef  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Imports

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if alias.asname:
                self.collector.alias(alias.asname, alias.name)
            self.collector.refer(self._scopes[-1], alias.name, "imports", node.lineno)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        base = self._resolve_from(node.module, node.level)
        for alias in node.names:
            if alias.name == "*":
                if base:
                    self.collector.refer(self._scopes[-1], base, "imports", node.lineno)
                continue
            target = f"{base}.{alias.name}" if base else alias.name
            self.collector.alias(alias.asname or alias.name, target)

    def _resolve_from(self, module: Optional[str], level: int) -> str:
        if level == 0:
            return module or ""
        package_parts = self.module.split(".")
        if not self.is_package:
            package_parts = package_parts[:-1]
        if level > 1:
            package_parts = package_parts[: len(package_parts) - (level - 1)]
        if module:
            package_parts.append(module)
        return ".".join(part for part in package_parts if part)

    # ------------------------------------------------------------------
    # References

    def visit_Call(self, node: ast.Call) -> None:
        target = self._dotted(node.func)
        if target and not self._ignored(target):
            self.collector.refer(self._scopes[-1], self._qualify(target), "calls", node.lineno)
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        scope = self._scopes[-1]
        if scope.kind == "class":
            for name in self._annotation_names(node.annotation):
                self.collector.refer(scope, self._qualify(name), "composes", node.lineno)
        if node.value is not None:
            self.visit(node.value)

    def _annotation_names(self, annotation: ast.expr) -> List[str]:
        names: List[str] = []
        for child in ast.walk(annotation):
            if isinstance(child, (ast.Name, ast.Attribute)):
                dotted = self._dotted(child)
                if dotted and not self._ignored(dotted) and dotted not in names:
                    names.append(dotted)
            elif isinstance(child, ast.Constant) and isinstance(child.value, str):
                if child.value.isidentifier() and child.value not in _IGNORED_NAMES:
                    names.append(child.value)
        # Attribute chains also yield their inner Name; keep the longest form.
        return [name for name in names if not any(other != name and other.startswith(f"{name}.") for other in names)]

    def _ignored(self, dotted: str) -> bool:
        head = dotted.split(".", 1)[0]
        if head in self._local_names or self.collector.has_alias(head):
            return False
        return head in _IGNORED_NAMES

    def _qualify(self, dotted: str) -> str:
        return self.collector.qualify(dotted, self._local_names)

    @staticmethod
    def _dotted(node: ast.AST) -> Optional[str]:
        parts: List[str] = []
        current = node
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if isinstance(current, ast.Name):
            parts.append(current.id)
            return ".".join(reversed(parts))
        return None


__all__ = ["parse_python"]
