"""Task/board model and the in-memory store that owns them."""

from .model import (
    BOARD_COLUMNS,
    Board,
    Column,
    GitCommit,
    Priority,
    ReviewComment,
    ReviewStatus,
    Task,
    TaskStatus,
)
from .store import TaskStore, agent_branch_name

__all__ = [
    "BOARD_COLUMNS",
    "Board",
    "Column",
    "GitCommit",
    "Priority",
    "ReviewComment",
    "ReviewStatus",
    "Task",
    "TaskStatus",
    "TaskStore",
    "agent_branch_name",
]
