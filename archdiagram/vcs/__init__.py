"""Version-control collaborators."""

from .base import NotFoundError, TransientError, VCSError, VersionControlClient
from .git import GitClient

__all__ = ["GitClient", "NotFoundError", "TransientError", "VCSError", "VersionControlClient"]
