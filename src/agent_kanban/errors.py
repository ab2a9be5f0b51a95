"""Exception taxonomy for the agent Kanban core."""

from __future__ import annotations

from typing import Optional, Sequence


class KanbanError(Exception):
    """Base class for all errors raised by the core."""


class NotFoundError(KanbanError, LookupError):
    """A referenced board, task or worktree does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class UnassignedAgentError(KanbanError):
    """Execution was requested before an agent role was assigned."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} has no assigned agent")
        self.task_id = task_id


class AlreadyExistsError(KanbanError):
    """A second active worktree (or an in-use branch/path) was requested."""


class InvalidTransitionError(KanbanError, ValueError):
    """A task patch would break the column/status correlation."""


class WorktreeStateError(KanbanError):
    """The worktree's status does not allow the requested operation."""


class ConfigError(KanbanError):
    """The configuration file could not be parsed."""


class VersionControlError(KanbanError):
    """A version-control command failed unexpectedly."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = "") -> None:
        cmd = " ".join(command)
        detail = stderr.strip()
        message = f"`{cmd}` exited with {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr


class BackendExecutionError(KanbanError):
    """The agent backend raised while executing a task.

    The underlying exception is available as ``__cause__``.
    """

    def __init__(self, task_id: str, message: str, *, role: Optional[str] = None) -> None:
        super().__init__(f"Task {task_id} failed: {message}")
        self.task_id = task_id
        self.role = role


class ExecutionCancelledError(BackendExecutionError):
    """Execution was cancelled before the backend returned."""
