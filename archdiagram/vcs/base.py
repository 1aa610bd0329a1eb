"""Contract for the version-control collaborator."""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from ..models import ChangeSet


class VCSError(RuntimeError):
    """Base class for version-control failures."""


class NotFoundError(VCSError):
    """The project, ref or path does not exist; retrying will not help."""


class TransientError(VCSError):
    """A temporary failure (network, lock contention); the call may be retried."""


@runtime_checkable
class VersionControlClient(Protocol):
    def list_files(self, project_id: str, ref: str) -> List[str]:
        ...

    def get_file_content(self, project_id: str, ref: str, path: str) -> bytes:
        ...

    def diff(self, project_id: str, from_ref: str, to_ref: str) -> ChangeSet:
        ...


__all__ = ["NotFoundError", "TransientError", "VCSError", "VersionControlClient"]
