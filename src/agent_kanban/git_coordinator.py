"""Serialize git operations against one repository.

Worktrees isolate the working directories, but they share a single object
database, ref store and index lock, so commands that touch refs still have to
run one at a time.  Each repository gets its own coordinator instance.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class GitCoordinator:
    """Run callables under a per-repository re-entrant lock."""

    def __init__(self) -> None:
        self._git_lock = threading.RLock()

    def execute_git_operation(
        self,
        operation: Callable[[], T],
        operation_name: str = "git operation",
    ) -> T:
        """Execute a git operation with the repository lock held.

        Args:
            operation: Function that performs the git operation.
            operation_name: Name of operation for logging.

        Returns:
            Result of the operation.

        Raises:
            Any exception raised by the operation.
        """
        thread_id = threading.current_thread().name
        logger.debug("Thread {} waiting for git lock ({})", thread_id, operation_name)

        with self._git_lock:
            logger.debug("Thread {} acquired git lock ({})", thread_id, operation_name)
            try:
                return operation()
            except Exception as e:
                logger.error("Thread {} git operation failed ({}): {}", thread_id, operation_name, e)
                raise
            finally:
                logger.debug("Thread {} releasing git lock ({})", thread_id, operation_name)


def with_git_lock(func: Callable[..., T]) -> Callable[..., T]:
    """Decorator for methods of objects exposing a ``coordinator`` attribute.

    Usage::

        class Backend:
            coordinator = GitCoordinator()

            @with_git_lock
            def merge(self, ...):
                ...
    """

    def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
        coordinator: GitCoordinator = self.coordinator
        return coordinator.execute_git_operation(
            lambda: func(self, *args, **kwargs),
            operation_name=func.__name__,
        )

    wrapper.__name__ = func.__name__
    wrapper.__doc__ = func.__doc__
    return wrapper
