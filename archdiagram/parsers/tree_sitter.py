"""Tree-sitter powered adapters for Java and TypeScript/JavaScript sources."""

from __future__ import annotations

import importlib
import importlib.util
import threading
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Dict, Iterable, Iterator, List, Optional, Set

from tree_sitter import Language, Node, Parser

from ..errors import ParseError
from ..models import Symbol
from .base import ParsedFile, SymbolCollector, module_name_from_path, resolve_relative_module

# grammar key -> (module, factory attribute)
_GRAMMARS: Dict[str, tuple[str, str]] = {
    "java": ("tree_sitter_java", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
}

_JAVA_TYPE_KINDS = {
    "class_declaration": "class",
    "record_declaration": "class",
    "interface_declaration": "interface",
    "annotation_type_declaration": "interface",
    "enum_declaration": "enum",
}

_JAVA_IGNORED_TYPES = {
    "String",
    "Object",
    "Integer",
    "Long",
    "Short",
    "Byte",
    "Boolean",
    "Double",
    "Float",
    "Character",
    "Void",
    "Number",
    "List",
    "ArrayList",
    "LinkedList",
    "Map",
    "HashMap",
    "TreeMap",
    "Set",
    "HashSet",
    "TreeSet",
    "Collection",
    "Collections",
    "Iterable",
    "Iterator",
    "Optional",
    "Arrays",
    "Objects",
    "Math",
    "System",
    "Exception",
    "RuntimeException",
    "Override",
    "Thread",
    "StringBuilder",
}

_TS_CLASS_TYPES = {"class_declaration", "abstract_class_declaration", "class"}
_TS_FUNCTION_VALUES = {"arrow_function", "function_expression", "function"}

_TS_IGNORED_TYPES = {
    "Array",
    "ReadonlyArray",
    "Promise",
    "Record",
    "Partial",
    "Required",
    "Readonly",
    "Pick",
    "Omit",
    "Map",
    "Set",
    "WeakMap",
    "Date",
    "Error",
    "RegExp",
    "Object",
    "String",
    "Number",
    "Boolean",
    "Function",
    "JSON",
    "Math",
    "console",
}

_PARSERS = threading.local()


def grammar_available(grammar: str) -> bool:
    """Return True when the grammar package for ``grammar`` can be imported."""
    module_name, _ = _GRAMMARS[grammar]
    return importlib.util.find_spec(module_name) is not None


@lru_cache(maxsize=None)
def _language(grammar: str) -> Language:
    module_name, attribute = _GRAMMARS[grammar]
    module = importlib.import_module(module_name)
    return Language(getattr(module, attribute)())


def _parser(grammar: str) -> Parser:
    # Parser instances are not shared between threads.
    cache: Optional[Dict[str, Parser]] = getattr(_PARSERS, "cache", None)
    if cache is None:
        cache = {}
        _PARSERS.cache = cache
    parser = cache.get(grammar)
    if parser is None:
        parser = Parser(_language(grammar))
        cache[grammar] = parser
    return parser


def _parse_tree(path: str, text: str, grammar: str) -> tuple[Node, bytes]:
    source = text.encode("utf-8")
    tree = _parser(grammar).parse(source)
    root = tree.root_node
    if root.has_error:
        error = _first_error(root)
        line = error.start_point[0] + 1 if error is not None else 1
        raise ParseError(path, f"syntax error near line {line}")
    return root, source


def _first_error(node: Node) -> Optional[Node]:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return current
        stack.extend(reversed(current.children))
    return None


def parse_java(path: str, text: str) -> ParsedFile:
    root, source = _parse_tree(path, text, "java")
    walker = _JavaWalker(path, source)
    walker.run(root)
    return walker.collector.result()


def parse_typescript(path: str, text: str) -> ParsedFile:
    """Parse TypeScript or JavaScript; ``.tsx``/``.jsx`` files use the TSX grammar."""
    suffix = PurePosixPath(path).suffix.lower()
    grammar = "tsx" if suffix in {".tsx", ".jsx"} else "typescript"
    root, source = _parse_tree(path, text, grammar)
    walker = _TypeScriptWalker(path, source)
    walker.run(root)
    return walker.collector.result()


class _Walker:
    def __init__(self, path: str, source: bytes) -> None:
        self.path = path
        self.source = source
        self.collector = SymbolCollector(path)
        self.local_names: Dict[str, str] = {}
        self._declared: Set[str] = set()

    def text(self, node: Optional[Node]) -> str:
        if node is None:
            return ""
        return self.source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")

    @staticmethod
    def line(node: Node) -> int:
        return node.start_point[0] + 1

    def declare(
        self, name: str, qualified_name: str, kind: str, node: Node, aliases: tuple[str, ...] = ()
    ) -> Optional[Symbol]:
        key = f"{kind}:{qualified_name}"
        if key in self._declared:
            return None
        self._declared.add(key)
        return self.collector.declare(name, qualified_name, kind, self.line(node), aliases)

    def qualify(self, dotted: str) -> str:
        return self.collector.qualify(dotted, self.local_names)

    def finish(self, module: Symbol) -> None:
        for _local, target in self.collector.unused_aliases():
            self.collector.refer(module, target, "imports", 1)

    @staticmethod
    def descendants(node: Node) -> Iterator[Node]:
        stack = list(reversed(node.named_children))
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(current.named_children))


class _JavaWalker(_Walker):
    def __init__(self, path: str, source: bytes) -> None:
        super().__init__(path, source)
        self.package = ""

    def run(self, root: Node) -> None:
        for child in root.named_children:
            if child.type == "package_declaration":
                for sub in child.named_children:
                    if sub.type in {"scoped_identifier", "identifier"}:
                        self.package = self.text(sub)
        stem = PurePosixPath(self.path).stem
        module_qn = f"{self.package}.{stem}" if self.package else stem
        module = self.collector.declare(stem, module_qn, "module", 1)

        for child in root.named_children:
            if child.type in _JAVA_TYPE_KINDS:
                name = self.text(child.child_by_field_name("name"))
                if name:
                    self.local_names[name] = self._scoped(self.package, name)

        for child in root.named_children:
            if child.type == "import_declaration":
                self._import(child, module)
            elif child.type in _JAVA_TYPE_KINDS:
                self._type_declaration(child, self.package, None)
        self.finish(module)

    @staticmethod
    def _scoped(scope: str, name: str) -> str:
        return f"{scope}.{name}" if scope else name

    def _import(self, node: Node, module: Symbol) -> None:
        target = ""
        wildcard = False
        for child in node.children:
            if child.type in {"scoped_identifier", "identifier"}:
                target = self.text(child)
            elif child.type == "asterisk":
                wildcard = True
        if not target:
            return
        if wildcard:
            self.collector.refer(module, target, "imports", self.line(node))
            return
        self.collector.alias(target.rsplit(".", 1)[-1], target)

    def _type_declaration(self, node: Node, scope: str, outer: Optional[str]) -> None:
        name = self.text(node.child_by_field_name("name"))
        if not name:
            return
        qualified = self._scoped(scope, name)
        aliases = (name,) if outer is None else (f"{outer}.{name}",)
        symbol = self.declare(name, qualified, _JAVA_TYPE_KINDS[node.type], node, aliases)
        if symbol is None:
            return

        heritage: List[Node] = []
        for field_name in ("superclass", "interfaces"):
            child = node.child_by_field_name(field_name)
            if child is not None:
                heritage.append(child)
        heritage.extend(child for child in node.named_children if child.type == "extends_interfaces")
        for clause in heritage:
            for type_name in self._type_names(clause):
                self.collector.refer(symbol, self.qualify(type_name), "extends", self.line(clause))

        body = node.child_by_field_name("body")
        if body is None:
            return
        fields: Dict[str, str] = {}
        members = list(self._members(body))
        for member in members:
            if member.type in {"field_declaration", "constant_declaration"}:
                type_node = member.child_by_field_name("type")
                for type_name in self._type_names(type_node):
                    self.collector.refer(symbol, self.qualify(type_name), "composes", self.line(member))
                primary = self._primary_type(type_node)
                if primary:
                    for declarator in member.children_by_field_name("declarator"):
                        variable = self.text(declarator.child_by_field_name("name"))
                        if variable:
                            fields[variable] = primary
        for member in members:
            if member.type in {"method_declaration", "constructor_declaration"}:
                self._method(member, symbol, fields)
            elif member.type in _JAVA_TYPE_KINDS:
                self._type_declaration(member, qualified, name)

    def _members(self, body: Node) -> Iterator[Node]:
        for child in body.named_children:
            if child.type == "enum_body_declarations":
                yield from child.named_children
            else:
                yield child

    def _method(self, node: Node, owner: Symbol, fields: Dict[str, str]) -> None:
        name = self.text(node.child_by_field_name("name"))
        if not name:
            return
        qualified = f"{owner.qualified_name}.{name}"
        symbol = self.declare(name, qualified, "method", node, (f"{owner.name}.{name}",))
        if symbol is None:
            # Overloads share one symbol; attribute their references to the first.
            symbol = Symbol(
                name=name, qualified_name=qualified, kind="method", path=self.path
            )
        env = dict(fields)
        parameters = node.child_by_field_name("parameters")
        if parameters is not None:
            for parameter in parameters.named_children:
                primary = self._primary_type(parameter.child_by_field_name("type"))
                variable = self.text(parameter.child_by_field_name("name"))
                if primary and variable:
                    env[variable] = primary
        body = node.child_by_field_name("body")
        if body is not None:
            self._body(body, symbol, owner, env)

    def _body(self, body: Node, symbol: Symbol, owner: Symbol, env: Dict[str, str]) -> None:
        for node in self.descendants(body):
            if node.type == "local_variable_declaration":
                primary = self._primary_type(node.child_by_field_name("type"))
                if primary:
                    for declarator in node.children_by_field_name("declarator"):
                        variable = self.text(declarator.child_by_field_name("name"))
                        if variable:
                            env[variable] = primary
            elif node.type == "method_invocation":
                target = self._invocation_target(node, owner, env)
                if target:
                    self.collector.refer(symbol, target, "calls", self.line(node))
            elif node.type == "object_creation_expression":
                primary = self._primary_type(node.child_by_field_name("type"))
                if primary and primary not in _JAVA_IGNORED_TYPES:
                    self.collector.refer(symbol, self.qualify(primary), "calls", self.line(node))

    def _invocation_target(self, node: Node, owner: Symbol, env: Dict[str, str]) -> Optional[str]:
        name = self.text(node.child_by_field_name("name"))
        receiver = node.child_by_field_name("object")
        if receiver is None:
            if name in self.local_names or self.collector.has_alias(name):
                return self.qualify(name)
            return f"{owner.qualified_name}.{name}"
        if receiver.type == "this":
            return f"{owner.qualified_name}.{name}"
        receiver_type: Optional[str] = None
        if receiver.type == "identifier":
            variable = self.text(receiver)
            if variable in env:
                receiver_type = env[variable]
            elif variable[:1].isupper():
                receiver_type = variable
        elif receiver.type == "field_access":
            if self.text(receiver.child_by_field_name("object")) == "this":
                receiver_type = env.get(self.text(receiver.child_by_field_name("field")))
        if not receiver_type or receiver_type in _JAVA_IGNORED_TYPES:
            return None
        return f"{self.qualify(receiver_type)}.{name}"

    def _type_names(self, node: Optional[Node]) -> List[str]:
        if node is None:
            return []
        names: List[str] = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == "scoped_type_identifier":
                candidate = self.text(current)
            elif current.type == "type_identifier":
                candidate = self.text(current)
            else:
                stack.extend(reversed(current.named_children))
                continue
            if candidate and candidate not in _JAVA_IGNORED_TYPES and candidate not in names:
                names.append(candidate)
        return names

    def _primary_type(self, node: Optional[Node]) -> Optional[str]:
        if node is None:
            return None
        if node.type in {"type_identifier", "scoped_type_identifier"}:
            return self.text(node)
        if node.type == "generic_type":
            for child in node.named_children:
                if child.type in {"type_identifier", "scoped_type_identifier"}:
                    return self.text(child)
        if node.type == "array_type":
            return self._primary_type(node.child_by_field_name("element"))
        return None


class _TypeScriptWalker(_Walker):
    def run(self, root: Node) -> None:
        self.module_qn = module_name_from_path(self.path)
        short_name = self.module_qn.rsplit(".", 1)[-1]
        self.module = self.collector.declare(short_name, self.module_qn, "module", 1)

        for declaration in self._top_level(root):
            name = self.text(declaration.child_by_field_name("name"))
            if name and declaration.type != "variable_declarator":
                self.local_names[name] = f"{self.module_qn}.{name}"
            elif name and self._is_function_value(declaration):
                self.local_names[name] = f"{self.module_qn}.{name}"

        for child in root.named_children:
            self._statement(child)
        self.finish(self.module)

    def _top_level(self, root: Node) -> Iterator[Node]:
        for child in root.named_children:
            node = child
            if node.type == "export_statement":
                declaration = node.child_by_field_name("declaration")
                if declaration is None:
                    continue
                node = declaration
            if node.type in {"lexical_declaration", "variable_declaration"}:
                yield from (sub for sub in node.named_children if sub.type == "variable_declarator")
            elif node.type in _TS_CLASS_TYPES | {
                "function_declaration",
                "generator_function_declaration",
                "interface_declaration",
                "enum_declaration",
            }:
                yield node

    def _is_function_value(self, declarator: Node) -> bool:
        value = declarator.child_by_field_name("value")
        return value is not None and value.type in _TS_FUNCTION_VALUES

    def _statement(self, node: Node) -> None:
        if node.type == "export_statement":
            declaration = node.child_by_field_name("declaration")
            if declaration is not None:
                self._statement(declaration)
                return
            source = node.child_by_field_name("source")
            if source is not None:
                self.collector.refer(
                    self.module, self._module_target(self._string(source)), "imports", self.line(node)
                )
                return
            self._body(node, self.module, None, {})
        elif node.type == "import_statement":
            self._import(node)
        elif node.type in _TS_CLASS_TYPES:
            self._class(node)
        elif node.type == "interface_declaration":
            self._interface(node)
        elif node.type == "enum_declaration":
            name = self.text(node.child_by_field_name("name"))
            if name:
                self.declare(name, f"{self.module_qn}.{name}", "enum", node, (name,))
        elif node.type in {"function_declaration", "generator_function_declaration"}:
            self._function(node, node)
        elif node.type in {"lexical_declaration", "variable_declaration"}:
            for declarator in node.named_children:
                if declarator.type != "variable_declarator":
                    continue
                if self._is_function_value(declarator):
                    self._function(declarator, declarator.child_by_field_name("value"))
                else:
                    self._body(declarator, self.module, None, {})
        elif node.type not in {"comment", "type_alias_declaration"}:
            self._body(node, self.module, None, {})

    # ------------------------------------------------------------------
    # Imports

    def _import(self, node: Node) -> None:
        source = node.child_by_field_name("source")
        if source is None:
            return
        base = self._module_target(self._string(source))
        clause = next((child for child in node.named_children if child.type == "import_clause"), None)
        if clause is None:
            self.collector.refer(self.module, base, "imports", self.line(node))
            return
        for child in clause.named_children:
            if child.type == "identifier":
                self.collector.alias(self.text(child), base)
            elif child.type == "namespace_import":
                for sub in child.named_children:
                    if sub.type == "identifier":
                        self.collector.alias(self.text(sub), base)
            elif child.type == "named_imports":
                for specifier in child.named_children:
                    if specifier.type != "import_specifier":
                        continue
                    imported = self.text(specifier.child_by_field_name("name"))
                    local = self.text(specifier.child_by_field_name("alias")) or imported
                    if imported:
                        self.collector.alias(local, f"{base}.{imported}")

    def _module_target(self, specifier: str) -> str:
        if specifier.startswith("."):
            return resolve_relative_module(self.path, specifier)
        return specifier

    def _string(self, node: Node) -> str:
        return self.text(node).strip("'\"`")

    # ------------------------------------------------------------------
    # Declarations

    def _class(self, node: Node) -> None:
        name = self.text(node.child_by_field_name("name"))
        if not name:
            return
        qualified = f"{self.module_qn}.{name}"
        symbol = self.declare(name, qualified, "class", node, (name,))
        if symbol is None:
            return
        for child in node.named_children:
            if child.type != "class_heritage":
                continue
            for clause in child.named_children:
                for target in self._heritage_names(clause):
                    self.collector.refer(symbol, self.qualify(target), "extends", self.line(clause))

        body = node.child_by_field_name("body")
        if body is None:
            return
        fields: Dict[str, str] = {}
        for member in body.named_children:
            if member.type in {"public_field_definition", "field_definition"}:
                field_name = self.text(member.child_by_field_name("name"))
                type_node = member.child_by_field_name("type")
                for type_name in self._type_names(type_node):
                    self.collector.refer(symbol, self.qualify(type_name), "composes", self.line(member))
                primary = self._primary_type(type_node)
                value = member.child_by_field_name("value")
                if primary is None and value is not None and value.type == "new_expression":
                    primary = self.text(value.child_by_field_name("constructor")) or None
                if field_name and primary:
                    fields[field_name] = primary
            elif member.type == "method_definition" and self.text(member.child_by_field_name("name")) == "constructor":
                for parameter in self._parameters(member):
                    if not any(
                        child.type in {"accessibility_modifier", "readonly"} or self.text(child) == "readonly"
                        for child in parameter.children
                    ):
                        continue
                    type_node = parameter.child_by_field_name("type")
                    for type_name in self._type_names(type_node):
                        self.collector.refer(symbol, self.qualify(type_name), "composes", self.line(parameter))
                    primary = self._primary_type(type_node)
                    variable = self.text(parameter.child_by_field_name("pattern"))
                    if primary and variable:
                        fields[variable] = primary
        for member in body.named_children:
            if member.type in {"method_definition", "abstract_method_signature", "method_signature"}:
                method_name = self.text(member.child_by_field_name("name"))
                if not method_name:
                    continue
                method = self.declare(
                    method_name,
                    f"{qualified}.{method_name}",
                    "method",
                    member,
                    (f"{name}.{method_name}",),
                )
                body_node = member.child_by_field_name("body")
                if method is not None and body_node is not None:
                    env = dict(fields)
                    env.update(self._parameter_types(member))
                    self._body(body_node, method, symbol, env)
            elif member.type in {"public_field_definition", "field_definition"}:
                value = member.child_by_field_name("value")
                if value is not None:
                    self._body(value, symbol, symbol, dict(fields))

    def _interface(self, node: Node) -> None:
        name = self.text(node.child_by_field_name("name"))
        if not name:
            return
        symbol = self.declare(name, f"{self.module_qn}.{name}", "interface", node, (name,))
        if symbol is None:
            return
        for child in node.named_children:
            if child.type == "extends_type_clause":
                for target in self._heritage_names(child):
                    self.collector.refer(symbol, self.qualify(target), "extends", self.line(child))

    def _function(self, declaration: Node, function: Optional[Node]) -> None:
        name = self.text(declaration.child_by_field_name("name"))
        if not name or function is None:
            return
        symbol = self.declare(name, f"{self.module_qn}.{name}", "function", declaration, (name,))
        body = function.child_by_field_name("body")
        if symbol is not None and body is not None:
            self._body(body, symbol, None, self._parameter_types(function))

    def _parameters(self, function: Node) -> List[Node]:
        parameters = function.child_by_field_name("parameters")
        if parameters is None:
            return []
        return [
            child
            for child in parameters.named_children
            if child.type in {"required_parameter", "optional_parameter"}
        ]

    def _parameter_types(self, function: Node) -> Dict[str, str]:
        env: Dict[str, str] = {}
        for parameter in self._parameters(function):
            primary = self._primary_type(parameter.child_by_field_name("type"))
            variable = self.text(parameter.child_by_field_name("pattern"))
            if primary and variable:
                env[variable] = primary
        return env

    # ------------------------------------------------------------------
    # References

    def _body(self, body: Node, symbol: Symbol, owner: Optional[Symbol], env: Dict[str, str]) -> None:
        nodes: Iterable[Node] = [body, *self.descendants(body)]
        for node in nodes:
            if node.type == "variable_declarator":
                variable = self.text(node.child_by_field_name("name"))
                primary = self._primary_type(node.child_by_field_name("type"))
                value = node.child_by_field_name("value")
                if primary is None and value is not None and value.type == "new_expression":
                    primary = self.text(value.child_by_field_name("constructor")) or None
                if variable and primary:
                    env[variable] = primary
            elif node.type == "call_expression":
                target = self._call_target(node.child_by_field_name("function"), owner, env)
                if target:
                    self.collector.refer(symbol, target, "calls", self.line(node))
            elif node.type == "new_expression":
                constructor = node.child_by_field_name("constructor")
                if constructor is not None and constructor.type in {"identifier", "member_expression"}:
                    name = self.text(constructor)
                    if self._known(name) or (name[:1].isupper() and name not in _TS_IGNORED_TYPES):
                        self.collector.refer(symbol, self.qualify(name), "calls", self.line(node))

    def _call_target(self, function: Optional[Node], owner: Optional[Symbol], env: Dict[str, str]) -> Optional[str]:
        if function is None:
            return None
        if function.type == "identifier":
            name = self.text(function)
            return self.qualify(name) if self._known(name) else None
        if function.type != "member_expression":
            return None
        receiver = function.child_by_field_name("object")
        member = self.text(function.child_by_field_name("property"))
        if receiver is None or not member:
            return None
        if receiver.type == "this":
            return f"{owner.qualified_name}.{member}" if owner is not None else None
        receiver_type: Optional[str] = None
        if receiver.type == "member_expression":
            inner = receiver.child_by_field_name("object")
            if inner is not None and inner.type == "this":
                receiver_type = env.get(self.text(receiver.child_by_field_name("property")))
        elif receiver.type == "identifier":
            variable = self.text(receiver)
            if variable in env:
                receiver_type = env[variable]
            elif self._known(variable):
                receiver_type = variable
        if not receiver_type or receiver_type in _TS_IGNORED_TYPES:
            return None
        return f"{self.qualify(receiver_type)}.{member}"

    def _known(self, name: str) -> bool:
        head = name.split(".", 1)[0]
        return head in self.local_names or self.collector.has_alias(head)

    def _heritage_names(self, clause: Node) -> List[str]:
        names: List[str] = []
        for child in clause.named_children:
            if child.type in {"identifier", "type_identifier", "member_expression", "nested_type_identifier"}:
                names.append(self.text(child))
            elif child.type == "generic_type":
                primary = self._primary_type(child)
                if primary:
                    names.append(primary)
        return [name for name in names if name and name not in _TS_IGNORED_TYPES]

    def _type_names(self, node: Optional[Node]) -> List[str]:
        if node is None:
            return []
        names: List[str] = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type in {"type_identifier", "nested_type_identifier"}:
                candidate = self.text(current)
                if candidate and candidate not in _TS_IGNORED_TYPES and candidate not in names:
                    names.append(candidate)
                continue
            stack.extend(reversed(current.named_children))
        return names

    def _primary_type(self, node: Optional[Node]) -> Optional[str]:
        if node is None:
            return None
        if node.type == "type_annotation":
            inner = node.named_children
            return self._primary_type(inner[0]) if inner else None
        if node.type in {"type_identifier", "nested_type_identifier"}:
            return self.text(node)
        if node.type == "generic_type":
            name = node.child_by_field_name("name")
            if name is not None:
                return self.text(name)
        return None


__all__ = ["grammar_available", "parse_java", "parse_typescript"]
