"""Concurrent execution of several board tasks.

Every task is scheduled at once on the running event loop; an optional
semaphore caps how many are inside the backend at the same time.  One task's
failure never affects the others.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from ..logging_utils import summarize_task
from .backend import ExecutionProgress
from .executor import TaskExecutor

TaskProgressCallback = Callable[[str, ExecutionProgress], None]

_STATUS_STYLES = {
    "pending": "dim",
    "running": "yellow",
    "completed": "green",
    "failed": "red",
}


class ParallelRunner:
    """Run tasks through a :class:`TaskExecutor` concurrently."""

    def __init__(self, executor: TaskExecutor, max_concurrency: Optional[int] = None):
        """Initialize the runner.

        Args:
            executor: Executor used for every task.
            max_concurrency: Maximum tasks executing at once; ``None`` means no cap.
        """
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.executor = executor
        self.max_concurrency = max_concurrency
        self._task_status: dict[str, str] = {}  # task_id -> status
        self._task_errors: dict[str, str] = {}  # task_id -> error

    async def run(
        self,
        task_ids: Iterable[str],
        on_progress: Optional[TaskProgressCallback] = None,
    ) -> dict[str, bool]:
        """Execute *task_ids* concurrently.

        Args:
            task_ids: Tasks to execute; duplicates run once.
            on_progress: Called with ``(task_id, progress)`` for every checkpoint.

        Returns:
            Mapping of task id to whether it reached review.
        """
        ids = list(dict.fromkeys(task_ids))
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        for task_id in ids:
            self._task_status[task_id] = "pending"
            self._task_errors.pop(task_id, None)

        logger.info("Running {} task(s) in parallel (max_concurrency={})", len(ids), self.max_concurrency)

        async def run_one(task_id: str) -> bool:
            callback = None
            if on_progress is not None:
                callback = lambda progress: on_progress(task_id, progress)  # noqa: E731
            if semaphore is None:
                return await self._execute(task_id, callback)
            async with semaphore:
                return await self._execute(task_id, callback)

        outcomes = await asyncio.gather(*(run_one(task_id) for task_id in ids))
        results = dict(zip(ids, outcomes))

        failures = [task_id for task_id, ok in results.items() if not ok]
        if failures:
            logger.warning("{} of {} task(s) failed", len(failures), len(ids))
            for task_id in failures:
                logger.warning("  - Task {} failed: {}", task_id, self._task_errors.get(task_id, "unknown"))
        return results

    async def _execute(self, task_id: str, callback: Optional[Callable[[ExecutionProgress], None]]) -> bool:
        self._task_status[task_id] = "running"
        try:
            ok = await self.executor.execute_task(task_id, callback)
        except Exception as e:
            logger.exception("Unexpected error executing task {}: {}", task_id, e)
            self._task_status[task_id] = "failed"
            self._task_errors[task_id] = str(e)
            return False

        self._task_status[task_id] = "completed" if ok else "failed"
        task = self.executor.store.get_task(task_id)
        if not ok:
            self._task_errors[task_id] = (task.output if task else None) or "Backend reported failure"
        logger.info("Task {} finished: success={} {}", task_id, ok, summarize_task(task))
        return ok

    def get_status(self) -> dict[str, str]:
        """Get current status of every task this runner has seen."""
        return dict(self._task_status)

    def get_errors(self) -> dict[str, str]:
        """Get errors for failed tasks."""
        return dict(self._task_errors)

    def render_summary(self) -> str:
        """Render the run state as a plain-text table."""
        console = Console(record=True, width=100)
        table = Table(title="Parallel Execution")
        table.add_column("Task", style="cyan")
        table.add_column("Status")
        table.add_column("Error", style="red")

        for task_id, status in self._task_status.items():
            style = _STATUS_STYLES.get(status, "")
            table.add_row(task_id, f"[{style}]{status}[/{style}]" if style else status, self._task_errors.get(task_id, ""))

        console.print(table)
        return console.export_text()
