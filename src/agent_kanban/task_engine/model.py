"""Task and board model for the agent Kanban board.

A task's ``column`` is its position on the board and its ``status`` is its
execution state.  The two are correlated through :data:`COLUMN_STATUS_EFFECTS`
and :data:`ALLOWED_STATUSES`; :class:`~agent_kanban.task_engine.store.TaskStore`
is the only place that applies them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from ..constants import DEFAULT_TASK_TITLE
from ..utils import _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Column(str, Enum):
    """Board columns, in pipeline order."""

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class TaskStatus(str, Enum):
    """Execution state of a task."""

    PENDING = "pending"
    RUNNING = "running"
    AWAITING_REVIEW = "awaiting_review"
    COMPLETED = "completed"
    FAILED = "failed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"


BOARD_COLUMNS: tuple[Column, ...] = tuple(Column)


# ---------------------------------------------------------------------------
# Column -> status state machine
# ---------------------------------------------------------------------------

# Status forced by moving a task into a column.  Columns missing here leave
# the status untouched.
COLUMN_STATUS_EFFECTS: dict[Column, TaskStatus] = {
    Column.IN_PROGRESS: TaskStatus.RUNNING,
    Column.IN_REVIEW: TaskStatus.AWAITING_REVIEW,
    Column.DONE: TaskStatus.COMPLETED,
}

# Statuses a task may hold while sitting in a column.  A failed run keeps
# its task in in_progress so it stays actionable.
ALLOWED_STATUSES: dict[Column, frozenset[TaskStatus]] = {
    Column.BACKLOG: frozenset(TaskStatus),
    Column.TODO: frozenset(TaskStatus),
    Column.IN_PROGRESS: frozenset({TaskStatus.RUNNING, TaskStatus.FAILED}),
    Column.IN_REVIEW: frozenset({TaskStatus.AWAITING_REVIEW}),
    Column.DONE: frozenset({TaskStatus.COMPLETED}),
}


def status_for_column(column: Column, current: TaskStatus) -> TaskStatus:
    return COLUMN_STATUS_EFFECTS.get(column, current)


def _coerce(enum_cls: type[Enum], raw: Any, default: Optional[Enum]) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except (ValueError, KeyError):
        return default


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class GitCommit:
    sha: str
    message: str
    author: str
    timestamp: str = field(default_factory=_now_iso)
    files_changed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GitCommit":
        return cls(
            sha=str(data.get("sha") or ""),
            message=str(data.get("message") or ""),
            author=str(data.get("author") or "unknown"),
            timestamp=str(data.get("timestamp") or _now_iso()),
            files_changed=int(data.get("files_changed") or 0),
        )


@dataclass
class ReviewComment:
    id: str
    author: str
    content: str
    timestamp: str = field(default_factory=_now_iso)
    resolved: bool = False
    line_number: Optional[int] = None
    file_path: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewComment":
        line = data.get("line_number")
        return cls(
            id=str(data.get("id") or ""),
            author=str(data.get("author") or ""),
            content=str(data.get("content") or ""),
            timestamp=str(data.get("timestamp") or _now_iso()),
            resolved=bool(data.get("resolved", False)),
            line_number=int(line) if line is not None else None,
            file_path=data.get("file_path"),
        )


@dataclass
class Task:
    """A unit of work on the board.

    Every field is plain data so a task can be flattened with :meth:`to_dict`
    and rebuilt with :meth:`from_dict` without losing information.
    """

    # Identity
    id: str
    title: str = DEFAULT_TASK_TITLE
    description: str = ""

    # Board position and execution state
    column: Column = Column.BACKLOG
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    progress: int = 0
    output: Optional[str] = None

    # Agent assignment
    assigned_agent: Optional[str] = None
    agent_model: Optional[str] = None

    # Isolated workspace
    git_branch: Optional[str] = None
    worktree_ref: Optional[str] = None
    commits: list[GitCommit] = field(default_factory=list)

    # Code review
    review_status: Optional[ReviewStatus] = None
    review_comments: list[ReviewComment] = field(default_factory=list)

    # Timing
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    estimated_minutes: Optional[int] = None
    actual_minutes: Optional[int] = None

    # Organization
    labels: list[str] = field(default_factory=list)
    project_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            data[k] = v.value if isinstance(v, Enum) else v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        d = dict(data)
        return cls(
            id=str(d["id"]),
            title=str(d.get("title") or DEFAULT_TASK_TITLE),
            description=str(d.get("description") or ""),
            column=_coerce(Column, d.get("column"), Column.BACKLOG),
            status=_coerce(TaskStatus, d.get("status"), TaskStatus.PENDING),
            priority=_coerce(Priority, d.get("priority"), Priority.MEDIUM),
            progress=clamp_progress(d.get("progress") or 0),
            output=d.get("output"),
            assigned_agent=d.get("assigned_agent"),
            agent_model=d.get("agent_model"),
            git_branch=d.get("git_branch"),
            worktree_ref=d.get("worktree_ref"),
            commits=[GitCommit.from_dict(c) for c in d.get("commits") or [] if isinstance(c, dict)],
            review_status=_coerce(ReviewStatus, d.get("review_status"), None),
            review_comments=[
                ReviewComment.from_dict(c) for c in d.get("review_comments") or [] if isinstance(c, dict)
            ],
            created_at=str(d.get("created_at") or _now_iso()),
            updated_at=str(d.get("updated_at") or _now_iso()),
            completed_at=d.get("completed_at"),
            estimated_minutes=d.get("estimated_minutes"),
            actual_minutes=d.get("actual_minutes"),
            labels=unique_labels(d.get("labels") or []),
            project_id=d.get("project_id"),
        )

    @property
    def is_failed(self) -> bool:
        return self.status == TaskStatus.FAILED

    @property
    def open_comments(self) -> list[ReviewComment]:
        return [c for c in self.review_comments if not c.resolved]


@dataclass
class Board:
    id: str
    name: str
    description: Optional[str] = None
    columns: tuple[Column, ...] = BOARD_COLUMNS
    task_ids: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "columns": [c.value for c in self.columns],
            "task_ids": list(self.task_ids),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Board":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            description=data.get("description"),
            # The column set is fixed; stored values are informational only.
            columns=BOARD_COLUMNS,
            task_ids=[str(t) for t in data.get("task_ids") or []],
            created_at=str(data.get("created_at") or _now_iso()),
        )


def clamp_progress(value: Any) -> int:
    return max(0, min(100, int(value)))


def unique_labels(labels: Any) -> list[str]:
    seen: dict[str, None] = {}
    for label in labels or []:
        text = str(label).strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)
