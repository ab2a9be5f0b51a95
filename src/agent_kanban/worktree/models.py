"""Records describing worktrees and the results of integrating them."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal, Optional

from ..constants import DEFAULT_COMMIT_AUTHOR
from ..utils import _now_iso

FileChangeStatus = Literal["added", "modified", "deleted", "renamed"]


class WorktreeStatus(str, Enum):
    ACTIVE = "active"
    MERGED = "merged"
    DELETED = "deleted"
    CONFLICTED = "conflicted"

    @property
    def is_terminal(self) -> bool:
        return self in (WorktreeStatus.MERGED, WorktreeStatus.DELETED)


@dataclass
class CommitInfo:
    sha: str
    message: str
    author: str = DEFAULT_COMMIT_AUTHOR
    timestamp: str = field(default_factory=_now_iso)
    files_changed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommitInfo":
        return cls(
            sha=str(data.get("sha") or ""),
            message=str(data.get("message") or ""),
            author=str(data.get("author") or DEFAULT_COMMIT_AUTHOR),
            timestamp=str(data.get("timestamp") or _now_iso()),
            files_changed=[str(f) for f in data.get("files_changed") or []],
        )


@dataclass
class Worktree:
    id: str
    task_id: str
    branch: str
    path: str
    base_branch: str
    status: WorktreeStatus = WorktreeStatus.ACTIVE
    created_at: str = field(default_factory=_now_iso)
    ahead_by: int = 0
    behind_by: int = 0
    last_commit: Optional[CommitInfo] = None
    merge_commit: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == WorktreeStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "branch": self.branch,
            "path": self.path,
            "base_branch": self.base_branch,
            "status": self.status.value,
            "created_at": self.created_at,
            "ahead_by": self.ahead_by,
            "behind_by": self.behind_by,
            "last_commit": self.last_commit.to_dict() if self.last_commit else None,
            "merge_commit": self.merge_commit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Worktree":
        last = data.get("last_commit")
        try:
            status = WorktreeStatus(str(data.get("status") or "active"))
        except ValueError:
            status = WorktreeStatus.ACTIVE
        return cls(
            id=str(data.get("id") or ""),
            task_id=str(data.get("task_id") or ""),
            branch=str(data.get("branch") or ""),
            path=str(data.get("path") or ""),
            base_branch=str(data.get("base_branch") or ""),
            status=status,
            created_at=str(data.get("created_at") or _now_iso()),
            ahead_by=int(data.get("ahead_by") or 0),
            behind_by=int(data.get("behind_by") or 0),
            last_commit=CommitInfo.from_dict(last) if isinstance(last, dict) else None,
            merge_commit=data.get("merge_commit"),
        )


@dataclass
class DiffHunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    content: str = ""


@dataclass
class FileDiff:
    path: str
    status: FileChangeStatus = "modified"
    additions: int = 0
    deletions: int = 0
    old_path: Optional[str] = None
    hunks: list[DiffHunk] = field(default_factory=list)


@dataclass
class DiffResult:
    files: list[FileDiff] = field(default_factory=list)

    @property
    def additions(self) -> int:
        return sum(f.additions for f in self.files)

    @property
    def deletions(self) -> int:
        return sum(f.deletions for f in self.files)

    @property
    def changed_files(self) -> int:
        return len(self.files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [asdict(f) for f in self.files],
            "additions": self.additions,
            "deletions": self.deletions,
            "changed_files": self.changed_files,
        }


@dataclass
class MergeResult:
    success: bool
    message: str
    commit_sha: Optional[str] = None
    conflicts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WorktreeSummary:
    """Aggregate counters across registered worktrees, for dashboards."""

    active: int = 0
    ahead: int = 0
    behind: int = 0
    conflicted: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
