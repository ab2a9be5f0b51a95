"""Per-task isolated workspaces on top of a version-control backend."""

from .backend import VersionControlBackend
from .git_backend import GitCliBackend, parse_unified_diff
from .manager import WorktreeManager
from .models import (
    CommitInfo,
    DiffHunk,
    DiffResult,
    FileDiff,
    MergeResult,
    Worktree,
    WorktreeStatus,
    WorktreeSummary,
)

__all__ = [
    "CommitInfo",
    "DiffHunk",
    "DiffResult",
    "FileDiff",
    "GitCliBackend",
    "MergeResult",
    "VersionControlBackend",
    "Worktree",
    "WorktreeManager",
    "WorktreeStatus",
    "WorktreeSummary",
    "parse_unified_diff",
]
