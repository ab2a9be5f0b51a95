"""Drive a single board task through an agent backend.

Lifecycle of one execution::

    start (in_progress/running) -> [worktree] -> backend -> commits
        -> submit_for_review (in_review/awaiting_review)

A backend-reported failure leaves the task in in_progress with status
``failed`` so it can simply be executed again.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from loguru import logger

from ..agents import suggest_agent
from ..constants import DEFAULT_COMMIT_AUTHOR
from ..errors import (
    AlreadyExistsError,
    BackendExecutionError,
    ExecutionCancelledError,
    NotFoundError,
    UnassignedAgentError,
)
from ..logging_utils import summarize_progress, summarize_task
from ..task_engine import Column, GitCommit, Task, TaskStatus, TaskStore
from ..utils import _now_iso, time_suffix
from ..worktree import MergeResult, Worktree, WorktreeManager
from .backend import AgentBackend, BackendResult, ExecutionProgress, ProgressCallback


class TaskExecutor:
    """Execute tasks held in a :class:`TaskStore` through an :class:`AgentBackend`.

    When a :class:`WorktreeManager` is supplied each execution gets an isolated
    worktree and every modified file is committed to it.
    """

    def __init__(
        self,
        store: TaskStore,
        backend: AgentBackend,
        worktrees: Optional[WorktreeManager] = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.worktrees = worktrees

    # -- helpers ------------------------------------------------------------

    def _require(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    @staticmethod
    def _report(
        on_progress: Optional[ProgressCallback],
        task_id: str,
        progress: int,
        status: str,
        current_step: Optional[str] = None,
        output: Optional[str] = None,
    ) -> None:
        event = ExecutionProgress(
            task_id=task_id,
            progress=progress,
            status=status,
            current_step=current_step,
            output=output,
        )
        logger.debug("Progress {}", summarize_progress(event))
        if on_progress is None:
            return
        try:
            on_progress(event)
        except Exception:
            logger.exception("Progress callback failed for task {} at {}%", task_id, progress)

    def _mark_failed(self, task_id: str, output: str) -> None:
        task = self.store.get_task(task_id)
        if task is None:
            return
        if task.column != Column.IN_PROGRESS:
            self.store.move_task(task_id, Column.IN_PROGRESS)
        self.store.update_task(task_id, status=TaskStatus.FAILED, output=output)

    async def _acquire_worktree(self, task: Task) -> Optional[Worktree]:
        if self.worktrees is None:
            return None
        worktree = self.worktrees.get_worktree(task.id)
        if worktree is None or not worktree.is_active:
            worktree = await self._create_worktree(task)
        self.store.update_task(task.id, worktree_ref=worktree.id, git_branch=worktree.branch)
        return worktree

    async def _create_worktree(self, task: Task) -> Worktree:
        assert self.worktrees is not None
        if task.git_branch:
            try:
                return await self.worktrees.create_worktree(task.id, task.git_branch)
            except AlreadyExistsError as exc:
                logger.info("Branch {} unavailable for task {} ({}); deriving one", task.git_branch, task.id, exc)
        return await self.worktrees.create_worktree(task.id)

    async def _run_backend(self, task: Task, descriptor: Any, cancel: Optional[asyncio.Event]) -> Any:
        role = task.assigned_agent
        if cancel is not None and cancel.is_set():
            raise ExecutionCancelledError(task.id, "cancelled before start", role=role)

        call = asyncio.ensure_future(self.backend.execute_chain([descriptor]))
        if cancel is None:
            return await call

        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if call in done:
            return call.result()

        call.cancel()
        try:
            await call
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("Backend raised while being cancelled for task {}: {}", task.id, exc)
        raise ExecutionCancelledError(task.id, "cancelled", role=role)

    async def _commit_files(
        self,
        task: Task,
        worktree: Optional[Worktree],
        files: list[str],
    ) -> list[GitCommit]:
        author = task.assigned_agent or DEFAULT_COMMIT_AUTHOR
        commits: list[GitCommit] = []
        for index, path in enumerate(files):
            message = f"Agent: {task.title} - modified {path}"
            if worktree is not None and self.worktrees is not None:
                info = await self.worktrees.commit(task.id, message, [path], author=author)
                commits.append(
                    GitCommit(
                        sha=info.sha,
                        message=info.message,
                        author=info.author,
                        timestamp=info.timestamp,
                        files_changed=len(info.files_changed),
                    )
                )
            else:
                commits.append(
                    GitCommit(
                        sha=f"{time_suffix()}-{index}",
                        message=message,
                        author=author,
                        timestamp=_now_iso(),
                        files_changed=1,
                    )
                )
        return commits

    # -- execution ----------------------------------------------------------

    async def execute_task(
        self,
        task_id: str,
        on_progress: Optional[ProgressCallback] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> bool:
        """Run *task_id* through the backend and submit the result for review.

        Returns ``True`` when the task reached review and ``False`` when the
        backend reported a failure.  Exceptions raised along the way mark the
        task failed and surface as :class:`BackendExecutionError`.
        """
        task = self._require(task_id)
        if not task.assigned_agent:
            raise UnassignedAgentError(task_id)

        task = self.store.start_task(task_id)
        logger.info("Executing task {} with agent {}", task_id, task.assigned_agent)
        self._report(on_progress, task_id, 0, "Starting agent...", "initialization")

        try:
            worktree = await self._acquire_worktree(task)
            task = self._require(task_id)

            descriptor = self.backend.create_task(
                task.title,
                task.description,
                task.priority.value,
                task.assigned_agent,
            )
            self._report(on_progress, task_id, 10, "Agent assigned", "planning")

            results = await self._run_backend(task, descriptor, cancel)
            if not results:
                raise ValueError("Backend returned no result")
            raw = results[0]
            result = raw if isinstance(raw, BackendResult) else BackendResult.model_validate(raw)

            if not result.success:
                errors = ", ".join(result.errors)
                logger.warning("Task {} failed in backend: {}", task_id, errors or "no details")
                self._mark_failed(task_id, errors)
                self._report(on_progress, task_id, 0, "Failed", output=errors)
                return False

            if result.files_modified:
                commits = await self._commit_files(task, worktree, result.files_modified)
                self.store.append_commits(task_id, commits)
            self.store.update_task(task_id, output=result.output)

            self._report(on_progress, task_id, 90, "Submitting for review...", "review", result.output)
            reviewed = self.store.submit_for_review(task_id)
        except ExecutionCancelledError as exc:
            logger.warning("Execution of task {} cancelled", task_id)
            self._mark_failed(task_id, str(exc))
            self._report(on_progress, task_id, 0, "Error", output=str(exc))
            raise
        except Exception as exc:
            logger.exception("Execution of task {} raised", task_id)
            self._mark_failed(task_id, str(exc))
            self._report(on_progress, task_id, 0, "Error", output=str(exc))
            raise BackendExecutionError(task_id, str(exc), role=task.assigned_agent) from exc

        self._report(on_progress, task_id, 100, "Ready for review", "complete", result.output)
        logger.info("Task ready for review: {}", summarize_task(reviewed))
        return True

    async def assign_and_execute(
        self,
        task_id: str,
        on_progress: Optional[ProgressCallback] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> bool:
        """Suggest an agent when none is assigned yet, then execute."""
        task = self._require(task_id)
        if not task.assigned_agent:
            role = suggest_agent(task)
            self.store.assign_agent(task_id, role)
            logger.info("Auto-assigned {} agent to task {}", role.value, task_id)
        return await self.execute_task(task_id, on_progress, cancel=cancel)

    # -- integration --------------------------------------------------------

    async def merge_task(self, task_id: str, squash: bool = True) -> MergeResult:
        """Merge the task's worktree and complete the task.

        A conflicting merge leaves the task in review with a comment naming
        the conflicting files.
        """
        self._require(task_id)
        if self.worktrees is None:
            raise NotFoundError("Worktree for task", task_id)

        result = await self.worktrees.merge(task_id, squash=squash)
        if result.success:
            self.store.complete_task(task_id)
            await self.worktrees.delete_worktree(task_id)
            logger.info("Merged task {} ({})", task_id, result.commit_sha)
        else:
            self.store.add_review_comment(
                task_id,
                author="system",
                content="Merge conflicts in: " + ", ".join(result.conflicts),
            )
            logger.warning("Task {} has merge conflicts: {}", task_id, result.conflicts)
        return result

    async def discard_task(self, task_id: str) -> None:
        """Release the task's worktree, then remove the task."""
        if self.worktrees is not None:
            await self.worktrees.delete_worktree(task_id)
        self.store.delete_task(task_id)
        logger.info("Discarded task {}", task_id)
