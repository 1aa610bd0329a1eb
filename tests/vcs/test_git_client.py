from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Sequence

import pytest

from archdiagram.models import ChangeKind, FileChange
from archdiagram.vcs import GitClient, NotFoundError, TransientError, VersionControlClient
from archdiagram.vcs.git import parse_name_status


class _FakeGit:
    def __init__(self, outputs: Dict[str, bytes] | None = None, error: Exception | None = None) -> None:
        self.outputs = outputs or {}
        self.error = error
        self.calls: List[tuple[List[str], Path]] = []

    def __call__(self, args: Sequence[str], cwd: Path) -> bytes:
        self.calls.append((list(args), cwd))
        if self.error is not None:
            raise self.error
        return self.outputs.get(args[1], b"")


def _failure(stderr: bytes) -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(128, ["git"], output=b"", stderr=stderr)


def test_parse_name_status_handles_renames_and_copies() -> None:
    output = "M\0app/a.py\0R087\0app/old.py\0app/new.py\0C100\0app/x.py\0app/y.py\0D\0app/gone.py\0X\0weird\0"

    assert parse_name_status(output) == [
        FileChange(path="app/a.py", kind=ChangeKind.MODIFIED),
        FileChange(path="app/new.py", kind=ChangeKind.RENAMED, old_path="app/old.py"),
        FileChange(path="app/y.py", kind=ChangeKind.ADDED),
        FileChange(path="app/gone.py", kind=ChangeKind.DELETED),
    ]


def test_git_client_issues_plumbing_commands(tmp_path: Path) -> None:
    runner = _FakeGit(
        {
            "ls-tree": b"b.py\0a.py\0",
            "show": b"print('hi')\n",
            "diff": b"A\0c.py\0",
            "rev-parse": b"0123abcd\n",
        }
    )
    client = GitClient({"shop": tmp_path}, runner=runner)

    assert isinstance(client, VersionControlClient)
    assert client.list_files("shop", "HEAD") == ["a.py", "b.py"]
    assert client.get_file_content("shop", "HEAD", "a.py") == b"print('hi')\n"
    change_set = client.diff("shop", "v1", "v2")
    assert change_set.changes == (FileChange(path="c.py", kind=ChangeKind.ADDED),)
    assert client.resolve("shop", "main") == "0123abcd"
    assert [args for args, _ in runner.calls] == [
        ["git", "ls-tree", "-r", "--name-only", "-z", "HEAD"],
        ["git", "show", "HEAD:a.py"],
        ["git", "diff", "--name-status", "-M", "-z", "v1", "v2"],
        ["git", "rev-parse", "--verify", "main^{commit}"],
    ]
    assert {cwd for _, cwd in runner.calls} == {tmp_path}


def test_projects_resolve_under_base_dir(tmp_path: Path) -> None:
    (tmp_path / "shop").mkdir()
    runner = _FakeGit({"ls-tree": b"a.py\0"})
    client = GitClient(base_dir=tmp_path, runner=runner)

    assert client.list_files("shop", "HEAD") == ["a.py"]
    with pytest.raises(NotFoundError, match="Unknown project 'missing'"):
        client.list_files("missing", "HEAD")


def test_missing_revisions_are_not_found(tmp_path: Path) -> None:
    client = GitClient({"shop": tmp_path}, runner=_FakeGit(error=_failure(b"fatal: bad revision 'nope'\n")))

    with pytest.raises(NotFoundError, match="bad revision"):
        client.list_files("shop", "nope")


def test_other_git_failures_are_transient(tmp_path: Path) -> None:
    client = GitClient(
        {"shop": tmp_path},
        runner=_FakeGit(error=_failure(b"fatal: Unable to create index.lock: File exists\n")),
    )

    with pytest.raises(TransientError, match="index.lock"):
        client.get_file_content("shop", "HEAD", "a.py")


def test_missing_git_binary_is_transient(tmp_path: Path) -> None:
    client = GitClient({"shop": tmp_path}, runner=_FakeGit(error=FileNotFoundError("git")))

    with pytest.raises(TransientError, match="Unable to run git"):
        client.list_files("shop", "HEAD")
