"""Narrow version-control interface the worktree manager depends on.

Implementations own the repository mechanics (branches, worktree
directories, diffs, merges).  The manager only coordinates: it decides when
each call happens and what the resulting worktree status is.  Methods are
synchronous; the manager runs them off the event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .models import DiffResult


class VersionControlBackend(ABC):
    @abstractmethod
    def branch_exists(self, branch: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create_branch(self, branch: str, base_branch: str, path: str) -> None:
        """Create *branch* from *base_branch* checked out at *path*."""
        raise NotImplementedError

    @abstractmethod
    def commit(self, path: str, message: str, files: Optional[list[str]], author: str) -> str:
        """Commit *files* (or every change when ``None``) and return the new sha."""
        raise NotImplementedError

    @abstractmethod
    def diff(self, branch: str, base_branch: str) -> DiffResult:
        raise NotImplementedError

    @abstractmethod
    def rebase(self, path: str, branch: str, base_branch: str) -> list[str]:
        """Replay *branch* onto *base_branch*.

        Returns the conflicting paths; an empty list means the rebase applied.
        A conflicting rebase must be rolled back before returning.
        """
        raise NotImplementedError

    @abstractmethod
    def check_conflicts(self, branch: str, base_branch: str) -> list[str]:
        """Dry-run three-way merge; returns conflicting paths without touching any ref."""
        raise NotImplementedError

    @abstractmethod
    def merge(self, branch: str, base_branch: str, *, squash: bool, message: str) -> str:
        """Integrate *branch* into *base_branch* and return the resulting sha."""
        raise NotImplementedError

    @abstractmethod
    def ahead_behind(self, branch: str, base_branch: str) -> tuple[int, int]:
        """Return ``(ahead, behind)`` commit counts of *branch* relative to *base_branch*."""
        raise NotImplementedError

    @abstractmethod
    def delete_branch(self, branch: str, path: str) -> None:
        """Remove the worktree directory at *path* and delete *branch*."""
        raise NotImplementedError
