"""Tests for adapter registration and discovery."""

from __future__ import annotations

import pytest

from archdiagram.errors import ParseError, UnsupportedLanguage
from archdiagram.models import Symbol
from archdiagram.parsers import ParsedFile, ParserRegistry, discover_adapters
from archdiagram.parsers.language import detect_language, is_test_path, matches_any, normalise_path


def test_unknown_language_raises_unsupported_language(python_registry: ParserRegistry) -> None:
    with pytest.raises(UnsupportedLanguage) as excinfo:
        python_registry.parse("docs/readme.md", "# hi")

    assert excinfo.value.path == "docs/readme.md"
    assert excinfo.value.to_diagnostic().code == "unsupported_language"


def test_invalid_utf8_raises_parse_error(python_registry: ParserRegistry) -> None:
    with pytest.raises(ParseError, match="not valid UTF-8"):
        python_registry.parse("app/latin.py", b"name = '\xff'\n")


def test_adapter_exceptions_are_wrapped_as_parse_errors() -> None:
    def explode(path: str, text: str) -> ParsedFile:
        raise KeyError("boom")

    registry = ParserRegistry({"python": explode})

    with pytest.raises(ParseError, match="KeyError"):
        registry.parse("app/a.py", "x = 1\n")


def test_custom_adapter_output_becomes_source_unit() -> None:
    def fake(path: str, text: str) -> ParsedFile:
        return ParsedFile(symbols=[Symbol(name="a", qualified_name="a", kind="module", path=path)])

    registry = ParserRegistry()
    registry.register("Kotlin", fake)

    unit = registry.parse("app/A.kt", "fun main() {}")

    assert registry.supports("kotlin")
    assert unit.language == "kotlin"
    assert [symbol.qualified_name for symbol in unit.symbols] == ["a"]


def test_register_rejects_non_callables() -> None:
    with pytest.raises(TypeError):
        ParserRegistry().register("python", "not-a-function")  # type: ignore[arg-type]


def test_discover_adapters_honours_enabled_list() -> None:
    registry = discover_adapters(["python"])

    assert registry.languages() == ["python"]


def test_discover_adapters_rejects_unknown_languages() -> None:
    with pytest.raises(ValueError, match="cobol"):
        discover_adapters(["python", "cobol"])


def test_language_detection_and_path_helpers() -> None:
    assert detect_language("src/App.tsx") == "typescript"
    assert detect_language("web/main.js") == "javascript"
    assert detect_language("Makefile") is None
    assert normalise_path(".\\pkg\\mod.py") == "pkg/mod.py"
    assert normalise_path("./pkg/mod.py") == "pkg/mod.py"
    assert is_test_path("tests/test_api.py")
    assert is_test_path("src/test/java/FooTest.java")
    assert is_test_path("web/button.spec.ts")
    assert not is_test_path("app/contest.py")
    assert matches_any("vendor/lib/x.py", ["vendor/"])
    assert matches_any("app/gen/x_pb2.py", ["*_pb2.py"])
    assert matches_any("app/gen/x.py", ["app/gen/**"])
    assert not matches_any("app/core/x.py", ["app/gen/**"])
