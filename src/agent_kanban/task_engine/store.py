"""In-memory task store: the single source of truth for boards and tasks.

All mutations run under one re-entrant lock and complete synchronously, so
they are atomic with respect to each other whether callers are coroutines on
one event loop or plain threads.  Reads return copies; the only way to change
a record is through the store's operations, which is what keeps the
column/status correlation intact.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import fields
from typing import Any, Callable, Iterable, Optional

from ..constants import BRANCH_ID_CHARS, DEFAULT_REVIEWER, DEFAULT_TASK_TITLE, STATE_VERSION
from ..errors import InvalidTransitionError, NotFoundError
from ..utils import Clock, IdProvider, UuidIds, _minutes_between, _now_iso
from .model import (
    ALLOWED_STATUSES,
    Board,
    Column,
    GitCommit,
    Priority,
    ReviewComment,
    ReviewStatus,
    Task,
    TaskStatus,
    clamp_progress,
    status_for_column,
    unique_labels,
    _coerce,
)

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict[str, Any]], None]

# Fields callers may never patch through update_task.
_READ_ONLY_FIELDS = frozenset({"id", "created_at", "column"})
_TASK_FIELDS = frozenset(f.name for f in fields(Task))


def agent_branch_name(role: str, task_id: str) -> str:
    return f"agent/{role}/{task_id[:BRANCH_ID_CHARS]}"


class TaskStore:
    """Owns :class:`Board` and :class:`Task` records.

    Args:
        ids: Id provider called with a prefix (``"board"``, ``"task"``,
            ``"comment"``).  Defaults to bare UUID hex ids.
        clock: Callable returning an aware ``datetime``; used for every
            timestamp.
    """

    def __init__(self, *, ids: Optional[IdProvider] = None, clock: Optional[Clock] = None) -> None:
        self._ids: IdProvider = ids or UuidIds()
        self._clock = clock
        self._lock = threading.RLock()
        self._boards: list[Board] = []
        self._tasks: dict[str, Task] = {}
        self._active_board_id: Optional[str] = None
        self._listeners: list[Listener] = []

    # -- internal helpers ---------------------------------------------------

    def _now(self) -> str:
        return _now_iso(self._clock)

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def _find_board(self, board_id: str) -> Optional[Board]:
        for board in self._boards:
            if board.id == board_id:
                return board
        return None

    def _emit(self, event_type: str, **payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_type, payload)
            except Exception:
                logger.exception("Store listener failed for %s", event_type)

    def _apply(self, task: Task, changes: dict[str, Any]) -> None:
        """Merge *changes* into *task*, coercing enums and checking status."""
        for key, value in changes.items():
            if key not in _TASK_FIELDS:
                raise AttributeError(f"Task has no field '{key}'")
            if key in _READ_ONLY_FIELDS:
                hint = " (use move_task)" if key == "column" else ""
                raise InvalidTransitionError(f"Field '{key}' cannot be patched{hint}")
            if key == "status":
                value = _coerce(TaskStatus, value, None)
                if value is None:
                    raise InvalidTransitionError(f"Unknown status '{changes[key]}'")
                if value not in ALLOWED_STATUSES[task.column]:
                    raise InvalidTransitionError(
                        f"Status '{value.value}' is not allowed in column '{task.column.value}'"
                    )
            elif key == "priority":
                value = _coerce(Priority, value, Priority.MEDIUM)
            elif key == "review_status":
                value = _coerce(ReviewStatus, value, None)
            elif key == "progress":
                value = clamp_progress(value)
            elif key == "labels":
                value = unique_labels(value)
            elif key == "commits":
                value = [c if isinstance(c, GitCommit) else GitCommit.from_dict(c) for c in value]
            elif key == "review_comments":
                value = [c if isinstance(c, ReviewComment) else ReviewComment.from_dict(c) for c in value]
            setattr(task, key, value)
        task.updated_at = self._now()

    # -- observation --------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for store events; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # -- boards -------------------------------------------------------------

    def create_board(self, name: str, description: Optional[str] = None) -> Board:
        with self._lock:
            board = Board(id=self._ids("board"), name=name, description=description, created_at=self._now())
            self._boards.append(board)
            self._active_board_id = board.id
            self._emit("board.created", board_id=board.id, name=name)
        logger.info("Created board %s (%s)", board.id, name)
        return copy.deepcopy(board)

    def delete_board(self, board_id: str) -> None:
        with self._lock:
            board = self._find_board(board_id)
            if board is None:
                return
            self._boards.remove(board)
            if self._active_board_id == board_id:
                self._active_board_id = None
            self._emit("board.deleted", board_id=board_id)

    def set_active_board(self, board_id: str) -> None:
        with self._lock:
            if self._find_board(board_id) is None:
                raise NotFoundError("Board", board_id)
            self._active_board_id = board_id

    def get_board(self, board_id: str) -> Optional[Board]:
        with self._lock:
            board = self._find_board(board_id)
            return copy.deepcopy(board) if board else None

    def list_boards(self) -> list[Board]:
        with self._lock:
            return copy.deepcopy(self._boards)

    def get_active_board(self) -> Optional[Board]:
        with self._lock:
            if self._active_board_id is None:
                return None
            return self.get_board(self._active_board_id)

    # -- tasks --------------------------------------------------------------

    def create_task(self, board_id: str, **fields_: Any) -> Task:
        """Create a task on *board_id*.

        Any :class:`Task` field except ``id`` may be passed.  A ``column``
        other than backlog gets its status from the column table, exactly
        as a later :meth:`move_task` would; a passed ``status`` is ignored.
        """
        with self._lock:
            board = self._find_board(board_id)
            if board is None:
                raise NotFoundError("Board", board_id)
            unknown = (set(fields_) - _TASK_FIELDS) | ({"id"} & set(fields_))
            if unknown:
                raise AttributeError(f"Unsupported task fields: {sorted(unknown)}")

            now = self._now()
            column = _coerce(Column, fields_.pop("column", None), Column.BACKLOG)
            task = Task(id=self._ids("task"), created_at=now, updated_at=now)
            task.title = str(fields_.pop("title", None) or DEFAULT_TASK_TITLE)
            task.description = str(fields_.pop("description", None) or "")
            fields_.pop("created_at", None)
            fields_.pop("status", None)
            if fields_:
                self._apply(task, fields_)
            task.column = column
            task.status = status_for_column(column, TaskStatus.PENDING)
            if column == Column.DONE:
                task.completed_at = now
            task.updated_at = now

            self._tasks[task.id] = task
            board.task_ids.append(task.id)
            self._emit("task.created", task_id=task.id, board_id=board_id, column=task.column.value)
        logger.info("Created task %s on board %s: %s", task.id, board_id, task.title)
        return copy.deepcopy(task)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task else None

    def list_tasks(self) -> list[Task]:
        with self._lock:
            return copy.deepcopy(list(self._tasks.values()))

    def update_task(self, task_id: str, **changes: Any) -> Task:
        """Merge *changes* into the task and bump ``updated_at``.

        Raises :class:`NotFoundError` for an unknown id and
        :class:`InvalidTransitionError` for a ``column`` patch or a status the
        current column does not allow.
        """
        with self._lock:
            task = self._require_task(task_id)
            self._apply(task, changes)
            self._emit("task.updated", task_id=task_id, fields=sorted(changes))
            return copy.deepcopy(task)

    def delete_task(self, task_id: str) -> None:
        """Remove the task from the store and from every board.

        Worktrees are not touched here; see ``TaskExecutor.discard_task``.
        """
        with self._lock:
            removed = self._tasks.pop(task_id, None)
            for board in self._boards:
                if task_id in board.task_ids:
                    board.task_ids = [t for t in board.task_ids if t != task_id]
            if removed is not None:
                self._emit("task.deleted", task_id=task_id)

    def move_task(self, task_id: str, to_column: Column | str) -> Task:
        with self._lock:
            task = self._require_task(task_id)
            column = _coerce(Column, to_column, None)
            if column is None:
                raise InvalidTransitionError(f"Unknown column '{to_column}'")
            previous = task.column
            task.column = column
            task.status = status_for_column(column, task.status)
            now = self._now()
            if column == Column.DONE:
                task.completed_at = now
            task.updated_at = now
            self._emit("task.moved", task_id=task_id, from_column=previous.value, to_column=column.value)
            logger.debug("Moved task %s: %s -> %s", task_id, previous.value, column.value)
            return copy.deepcopy(task)

    # -- agent assignment ---------------------------------------------------

    def assign_agent(self, task_id: str, role: str, model: Optional[str] = None) -> Task:
        role = getattr(role, "value", role)
        return self.update_task(
            task_id,
            assigned_agent=role,
            agent_model=model,
            git_branch=agent_branch_name(role, task_id),
        )

    def unassign_agent(self, task_id: str) -> Task:
        return self.update_task(task_id, assigned_agent=None, agent_model=None)

    def start_task(self, task_id: str) -> Task:
        with self._lock:
            self.move_task(task_id, Column.IN_PROGRESS)
            return self.update_task(task_id, status=TaskStatus.RUNNING, progress=0, output=None)

    def complete_task(self, task_id: str) -> Task:
        with self._lock:
            task = self.move_task(task_id, Column.DONE)
            changes: dict[str, Any] = {"status": TaskStatus.COMPLETED, "progress": 100}
            if task.actual_minutes is None:
                changes["actual_minutes"] = _minutes_between(task.created_at, task.completed_at)
            return self.update_task(task_id, **changes)

    def append_commits(self, task_id: str, commits: Iterable[GitCommit]) -> Task:
        with self._lock:
            task = self._require_task(task_id)
            return self.update_task(task_id, commits=[*task.commits, *commits])

    # -- code review --------------------------------------------------------

    def submit_for_review(self, task_id: str) -> Task:
        with self._lock:
            self.move_task(task_id, Column.IN_REVIEW)
            return self.update_task(
                task_id, status=TaskStatus.AWAITING_REVIEW, review_status=ReviewStatus.PENDING
            )

    def approve_review(self, task_id: str) -> Task:
        return self.update_task(task_id, review_status=ReviewStatus.APPROVED)

    def request_changes(self, task_id: str, comment: str, author: str = DEFAULT_REVIEWER) -> Task:
        """Flag the task as needing changes; the caller decides whether to re-open it."""
        with self._lock:
            self.update_task(task_id, review_status=ReviewStatus.CHANGES_REQUESTED)
            self.add_review_comment(task_id, author=author, content=comment)
            return copy.deepcopy(self._require_task(task_id))

    def add_review_comment(
        self,
        task_id: str,
        author: str,
        content: str,
        line_number: Optional[int] = None,
        file_path: Optional[str] = None,
    ) -> ReviewComment:
        with self._lock:
            task = self._require_task(task_id)
            comment = ReviewComment(
                id=self._ids("comment"),
                author=author,
                content=content,
                timestamp=self._now(),
                resolved=False,
                line_number=line_number,
                file_path=file_path,
            )
            task.review_comments.append(comment)
            task.updated_at = self._now()
            self._emit("review.comment_added", task_id=task_id, comment_id=comment.id)
            return copy.deepcopy(comment)

    def resolve_review_comment(self, task_id: str, comment_id: str) -> ReviewComment:
        with self._lock:
            task = self._require_task(task_id)
            for comment in task.review_comments:
                if comment.id == comment_id:
                    comment.resolved = True
                    task.updated_at = self._now()
                    self._emit("task.updated", task_id=task_id, fields=["review_comments"])
                    return copy.deepcopy(comment)
            raise NotFoundError("Review comment", comment_id)

    # -- queries ------------------------------------------------------------

    def get_tasks_by_column(self, column: Column | str) -> list[Task]:
        wanted = _coerce(Column, column, None)
        with self._lock:
            return copy.deepcopy([t for t in self._tasks.values() if t.column == wanted])

    def get_tasks_by_agent(self, role: str) -> list[Task]:
        role = getattr(role, "value", role)
        with self._lock:
            return copy.deepcopy([t for t in self._tasks.values() if t.assigned_agent == role])

    def get_board_tasks(self, board_id: str) -> list[Task]:
        with self._lock:
            board = self._find_board(board_id)
            if board is None:
                return []
            return copy.deepcopy([self._tasks[t] for t in board.task_ids if t in self._tasks])

    # -- persistence --------------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        """Flatten the store into plain data: tasks become ``[id, record]`` pairs."""
        with self._lock:
            return {
                "version": STATE_VERSION,
                "active_board_id": self._active_board_id,
                "boards": [b.to_dict() for b in self._boards],
                "tasks": [[task_id, task.to_dict()] for task_id, task in self._tasks.items()],
            }

    @classmethod
    def from_snapshot(
        cls,
        data: dict[str, Any],
        *,
        ids: Optional[IdProvider] = None,
        clock: Optional[Clock] = None,
    ) -> "TaskStore":
        store = cls(ids=ids, clock=clock)
        store.load_snapshot(data)
        return store

    def load_snapshot(self, data: dict[str, Any]) -> None:
        """Replace the store's contents with a snapshot produced by :meth:`to_snapshot`."""
        boards = [Board.from_dict(b) for b in data.get("boards") or [] if isinstance(b, dict)]
        tasks: dict[str, Task] = {}
        for entry in data.get("tasks") or []:
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                logger.warning("Skipping malformed task entry in snapshot: %r", entry)
                continue
            task_id, record = entry
            if not isinstance(record, dict):
                continue
            tasks[str(task_id)] = Task.from_dict({**record, "id": task_id})
        active = data.get("active_board_id")
        with self._lock:
            self._boards = boards
            self._tasks = tasks
            self._active_board_id = active if any(b.id == active for b in boards) else None
