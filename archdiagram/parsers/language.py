"""Language tag detection and path classification for repository files."""

from __future__ import annotations

from fnmatch import fnmatchcase
from pathlib import PurePosixPath
from typing import Optional, Sequence

_LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".pyi": "python",
    ".java": "java",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cc": "cpp",
    ".swift": "swift",
    ".scala": "scala",
}

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "node_modules",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".idea",
    "build",
    "dist",
    "target",
    ".archdiagram",
}

_TEST_DIRS = {"test", "tests", "__tests__", "spec", "specs"}


def detect_language(path: str) -> Optional[str]:
    """Return the language tag for a source path, or None for non-source files."""
    suffix = PurePosixPath(normalise_path(path)).suffix.lower()
    return _LANGUAGE_BY_SUFFIX.get(suffix)


def normalise_path(path: str) -> str:
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def is_test_path(path: str) -> bool:
    """Heuristically decide whether a path holds test code."""
    pure = PurePosixPath(normalise_path(path))
    if any(part.lower() in _TEST_DIRS for part in pure.parts[:-1]):
        return True
    name = pure.name.lower()
    stem = pure.stem.lower()
    if name.startswith("test_") or stem.endswith("_test"):
        return True
    if stem.endswith("test") and pure.suffix == ".java":
        return True
    return ".test." in name or ".spec." in name


def is_excluded_dir(path: str) -> bool:
    return any(part in _EXCLUDED_DIRS for part in PurePosixPath(normalise_path(path)).parts[:-1])


def matches_any(path: str, patterns: Sequence[str]) -> bool:
    """Match a repository path against glob or directory-prefix patterns."""
    normalized = normalise_path(path)
    for pattern in patterns:
        if pattern.endswith("/"):
            if normalized.startswith(pattern) or f"/{pattern}" in f"/{normalized}":
                return True
        elif pattern.endswith("/**"):
            prefix = pattern[:-3]
            if normalized == prefix or normalized.startswith(f"{prefix}/"):
                return True
        elif fnmatchcase(normalized, pattern):
            return True
        elif "/" not in pattern and fnmatchcase(PurePosixPath(normalized).name, pattern):
            return True
    return False


__all__ = [
    "detect_language",
    "is_excluded_dir",
    "is_test_path",
    "matches_any",
    "normalise_path",
]
