"""Tests for the Python ast adapter."""

from __future__ import annotations

import hashlib

import pytest

from archdiagram.errors import ParseError
from archdiagram.models import Reference
from archdiagram.parsers.python_ast import parse_python


def test_declares_module_class_and_method_symbols(parse_unit) -> None:
    unit = parse_unit(
        "app/a.py",
        """
        from app.b import Bar

        class Foo:
            def run(self):
                return Bar()
        """,
    )

    assert unit.language == "python"
    assert [(symbol.kind, symbol.qualified_name) for symbol in unit.symbols] == [
        ("module", "app.a"),
        ("class", "app.a.Foo"),
        ("method", "app.a.Foo.run"),
    ]
    assert unit.symbols[1].aliases == ("Foo",)
    assert unit.symbols[2].aliases == ("Foo.run",)
    assert unit.references == (
        Reference(source="method:app.a.Foo.run", target="app.b.Bar", kind="calls", line=5),
    )


def test_repeated_calls_are_kept_as_separate_references(parse_unit) -> None:
    unit = parse_unit(
        "app/a.py",
        """
        from app.b import Bar

        def build():
            Bar()
            Bar()
        """,
    )

    targets = [(ref.source, ref.target, ref.kind) for ref in unit.references]
    assert targets == [("function:app.a.build", "app.b.Bar", "calls")] * 2


def test_unused_from_imports_become_import_references(parse_unit) -> None:
    unit = parse_unit(
        "pkg/sub/mod.py",
        """
        import os
        from ..util import helper
        from .models import *
        """,
    )

    found = {(ref.source, ref.target, ref.kind) for ref in unit.references}
    assert found == {
        ("module:pkg.sub.mod", "os", "imports"),
        ("module:pkg.sub.mod", "pkg.util.helper", "imports"),
        ("module:pkg.sub.mod", "pkg.sub.models", "imports"),
    }


def test_package_relative_import_resolves_inside_package(parse_unit) -> None:
    unit = parse_unit("pkg/__init__.py", "from . import models\n")

    assert unit.symbols[0].qualified_name == "pkg"
    assert [ref.target for ref in unit.references] == ["pkg.models"]


def test_builtins_are_ignored_unless_shadowed(parse_unit) -> None:
    unit = parse_unit(
        "tools/report.py",
        """
        def print(value):
            return value

        def main(items):
            total = len(items)
            print(total)
        """,
    )

    assert [(ref.source, ref.target) for ref in unit.references] == [
        ("function:tools.report.main", "tools.report.print"),
    ]


def test_bases_and_class_annotations_produce_extends_and_composes(parse_unit) -> None:
    unit = parse_unit(
        "app/profile.py",
        """
        from app.models import User
        from app.base import Base

        class Profile(Base):
            owner: User
            count: int
        """,
    )

    found = {(ref.target, ref.kind) for ref in unit.references}
    assert found == {("app.base.Base", "extends"), ("app.models.User", "composes")}


def test_nested_functions_have_no_aliases(parse_unit) -> None:
    unit = parse_unit(
        "app/jobs.py",
        """
        def outer():
            def inner():
                return 1
            return inner()
        """,
    )

    inner = next(symbol for symbol in unit.symbols if symbol.name == "inner")
    assert inner.qualified_name == "app.jobs.outer.inner"
    assert inner.aliases == ()


def test_syntax_error_raises_parse_error() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_python("app/broken.py", "def broken(:\n    pass\n")

    assert excinfo.value.path == "app/broken.py"
    assert "syntax error at line 1" in str(excinfo.value)
    assert excinfo.value.to_diagnostic().code == "parse_error"


def test_content_hash_is_sha256_of_raw_bytes(python_registry) -> None:
    content = b"class Foo:\n    pass\n"

    unit = python_registry.parse("app/foo.py", content)

    assert unit.content_hash == hashlib.sha256(content).hexdigest()
    assert unit.cache_key == f"python:app/foo.py:{unit.content_hash}"
