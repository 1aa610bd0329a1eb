"""Version-control client backed by local git clones."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..logging import get_logger
from ..models import ChangeKind, ChangeSet, FileChange
from .base import NotFoundError, TransientError

CommandRunner = Callable[[Sequence[str], Path], bytes]

_NOT_FOUND_MARKERS = (
    "does not exist",
    "unknown revision",
    "bad revision",
    "not a valid object name",
    "invalid object name",
    "exists on disk, but not in",
    "not a git repository",
    "bad object",
)

_STATUS_KINDS = {
    "A": ChangeKind.ADDED,
    "C": ChangeKind.ADDED,
    "M": ChangeKind.MODIFIED,
    "T": ChangeKind.MODIFIED,
    "D": ChangeKind.DELETED,
    "R": ChangeKind.RENAMED,
}

_logger = get_logger("vcs.git")


class GitClient:
    """Serves snapshots and diffs from git clones on disk.

    Projects resolve through ``repositories`` first, then ``base_dir/<project>``.
    """

    def __init__(
        self,
        repositories: Mapping[str, Path] | None = None,
        *,
        base_dir: Path | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self._repositories: Dict[str, Path] = dict(repositories or {})
        self._base_dir = base_dir
        self._runner = runner or _default_runner

    def add_repository(self, project_id: str, path: Path) -> None:
        self._repositories[project_id] = path

    def list_files(self, project_id: str, ref: str) -> List[str]:
        output = self._git(project_id, ["ls-tree", "-r", "--name-only", "-z", ref])
        return sorted(item for item in output.decode("utf-8").split("\0") if item)

    def get_file_content(self, project_id: str, ref: str, path: str) -> bytes:
        return self._git(project_id, ["show", f"{ref}:{path}"])

    def diff(self, project_id: str, from_ref: str, to_ref: str) -> ChangeSet:
        output = self._git(project_id, ["diff", "--name-status", "-M", "-z", from_ref, to_ref])
        return ChangeSet(from_ref=from_ref, to_ref=to_ref, changes=tuple(parse_name_status(output.decode("utf-8"))))

    def resolve(self, project_id: str, ref: str) -> str:
        """Return the commit sha a symbolic ref points at."""
        output = self._git(project_id, ["rev-parse", "--verify", f"{ref}^{{commit}}"])
        return output.decode("utf-8").strip()

    # ------------------------------------------------------------------
    # Internals

    def _repository(self, project_id: str) -> Path:
        repo: Optional[Path] = self._repositories.get(project_id)
        if repo is None and self._base_dir is not None:
            repo = self._base_dir / project_id
        if repo is None or not repo.exists():
            raise NotFoundError(f"Unknown project '{project_id}'")
        return repo

    def _git(self, project_id: str, args: List[str]) -> bytes:
        repo = self._repository(project_id)
        command = ["git", *args]
        try:
            return self._runner(command, repo)
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.decode("utf-8", errors="replace") if isinstance(exc.stderr, bytes) else str(exc.stderr or "")
            message = stderr.strip() or f"git exited with {exc.returncode}"
            if any(marker in message.lower() for marker in _NOT_FOUND_MARKERS):
                raise NotFoundError(message) from exc
            raise TransientError(message) from exc
        except OSError as exc:
            raise TransientError(f"Unable to run git in {repo}: {exc}") from exc


def parse_name_status(output: str) -> List[FileChange]:
    """Parse ``git diff --name-status -z`` output into file changes."""
    tokens = [token for token in output.split("\0") if token]
    changes: List[FileChange] = []
    index = 0
    while index < len(tokens):
        status = tokens[index].strip()
        code = status[:1]
        kind = _STATUS_KINDS.get(code)
        if code in {"R", "C"}:
            old_path, new_path = tokens[index + 1], tokens[index + 2]
            index += 3
            if kind is ChangeKind.RENAMED:
                changes.append(FileChange(path=new_path, kind=kind, old_path=old_path))
            else:
                changes.append(FileChange(path=new_path, kind=ChangeKind.ADDED))
            continue
        path = tokens[index + 1]
        index += 2
        if kind is None:
            _logger.debug("Ignoring git status '%s' for %s", status, path)
            continue
        changes.append(FileChange(path=path, kind=kind))
    return changes


def _default_runner(args: Sequence[str], cwd: Path) -> bytes:
    completed = subprocess.run(list(args), cwd=str(cwd), check=True, capture_output=True)
    return completed.stdout


__all__ = ["CommandRunner", "GitClient", "parse_name_status"]
