"""Worktree manager: one isolated, branch-scoped workspace per task.

The manager owns the worktree registry and its state machine::

    active ──merge ok──────▶ merged      (terminal)
    active ──conflicts─────▶ conflicted
    conflicted ──rebase ok─▶ active
    active|conflicted ─delete─▶ deleted  (terminal)

Registry mutations are synchronous; only the version-control calls are
awaited (in a worker thread).  A task's slot is reserved *before* the backend
call in :meth:`WorktreeManager.create_worktree`, so two concurrent creates for
the same task cannot both get through.
"""

from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from ..constants import BRANCH_ID_CHARS, DEFAULT_BASE_BRANCH, DEFAULT_COMMIT_AUTHOR, DEFAULT_WORKTREES_DIR
from ..errors import AlreadyExistsError, NotFoundError, WorktreeStateError
from ..utils import Clock, IdProvider, UuidIds, _now_iso, time_suffix
from .backend import VersionControlBackend
from .models import CommitInfo, DiffResult, MergeResult, Worktree, WorktreeStatus, WorktreeSummary

Listener = Callable[[str, dict[str, Any]], None]


class WorktreeManager:
    """Coordinate task worktrees against a shared base branch.

    Args:
        backend: Version-control adapter doing the actual repository work.
        project_root: Repository root; worktrees live under
            ``project_root / worktrees_dir``.
        base_branch: Branch worktrees are created from and merged into.
    """

    def __init__(
        self,
        backend: VersionControlBackend,
        project_root: Path | str,
        *,
        base_branch: str = DEFAULT_BASE_BRANCH,
        worktrees_dir: str = DEFAULT_WORKTREES_DIR,
        ids: Optional[IdProvider] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._backend = backend
        self.project_root = Path(project_root)
        self.base_branch = base_branch
        self.worktrees_dir = worktrees_dir
        self._ids: IdProvider = ids or UuidIds()
        self._clock = clock
        self._worktrees: dict[str, Worktree] = {}
        self._history: list[Worktree] = []
        self._listeners: list[Listener] = []

    # -- helpers ------------------------------------------------------------

    def _require(self, task_id: str) -> Worktree:
        worktree = self._worktrees.get(task_id)
        if worktree is None:
            raise NotFoundError("Worktree for task", task_id)
        return worktree

    def _require_active(self, task_id: str, operation: str) -> Worktree:
        worktree = self._require(task_id)
        if not worktree.is_active:
            raise WorktreeStateError(
                f"Cannot {operation} worktree {worktree.branch}: status is {worktree.status.value}"
            )
        return worktree

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def _refresh_counters(self, worktree: Worktree) -> None:
        ahead, behind = await self._call(self._backend.ahead_behind, worktree.branch, worktree.base_branch)
        worktree.ahead_by = ahead
        worktree.behind_by = behind

    def _path_for(self, branch: str) -> str:
        return str(self.project_root / self.worktrees_dir / branch)

    def _owner_of(self, branch: str) -> Optional[str]:
        """Return the task holding *branch* (or its path) in a live worktree."""
        path = self._path_for(branch)
        for other in self._worktrees.values():
            if other.status.is_terminal:
                continue
            if other.branch == branch or other.path == path:
                return other.task_id
        return None

    def _derive_branch(self, task_id: str) -> str:
        stem = f"task/{task_id[:BRANCH_ID_CHARS]}-{time_suffix(self._clock)}"
        branch = stem
        for n in itertools.count(2):
            if self._owner_of(branch) is None:
                break
            branch = f"{stem}-{n}"
        return branch

    def _emit(self, event_type: str, worktree: Worktree) -> None:
        payload = {"task_id": worktree.task_id, "branch": worktree.branch, "status": worktree.status.value}
        for listener in list(self._listeners):
            try:
                listener(event_type, payload)
            except Exception:
                logger.exception("Worktree listener failed for {}", event_type)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for registry changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _retire(self, task_id: str) -> None:
        old = self._worktrees.pop(task_id, None)
        if old is not None:
            self._history.append(old)

    # -- lifecycle ----------------------------------------------------------

    async def create_worktree(self, task_id: str, branch_name: Optional[str] = None) -> Worktree:
        """Create and register an isolated worktree for *task_id*.

        Raises :class:`AlreadyExistsError` when the task already has an active
        worktree, or the branch or path is taken by another one.
        """
        existing = self._worktrees.get(task_id)
        if existing is not None and not existing.status.is_terminal:
            raise AlreadyExistsError(
                f"Task {task_id} already has a {existing.status.value} worktree on {existing.branch}"
            )

        if branch_name:
            branch = branch_name
            owner = self._owner_of(branch)
            if owner is not None:
                raise AlreadyExistsError(f"Branch {branch} is already used by task {owner}")
        else:
            branch = self._derive_branch(task_id)
        path = self._path_for(branch)

        worktree = Worktree(
            id=self._ids("wt"),
            task_id=task_id,
            branch=branch,
            path=path,
            base_branch=self.base_branch,
            status=WorktreeStatus.ACTIVE,
            created_at=_now_iso(self._clock),
        )
        # Reserve the slot before yielding to the event loop.
        if existing is not None:
            self._retire(task_id)
        self._worktrees[task_id] = worktree

        logger.info("Creating worktree for task {} (branch={}, path={})", task_id, branch, path)
        try:
            if await self._call(self._backend.branch_exists, branch):
                raise AlreadyExistsError(f"Branch {branch} already exists")
            await self._call(self._backend.create_branch, branch, self.base_branch, path)
        except BaseException:
            if self._worktrees.get(task_id) is worktree:
                del self._worktrees[task_id]
            raise
        self._emit("worktree.created", worktree)
        return worktree

    def get_worktree(self, task_id: str) -> Optional[Worktree]:
        return self._worktrees.get(task_id)

    def get_active_worktrees(self) -> list[Worktree]:
        return [w for w in self._worktrees.values() if w.is_active]

    def list_history(self) -> list[Worktree]:
        return list(self._history)

    async def delete_worktree(self, task_id: str) -> None:
        """Release the task's workspace; a no-op for unknown tasks."""
        worktree = self._worktrees.get(task_id)
        if worktree is None:
            return
        logger.info("Deleting worktree {} for task {}", worktree.branch, task_id)
        await self._call(self._backend.delete_branch, worktree.branch, worktree.path)
        if worktree.status != WorktreeStatus.MERGED:
            worktree.status = WorktreeStatus.DELETED
        self._retire(task_id)
        self._emit("worktree.deleted", worktree)

    # -- changes ------------------------------------------------------------

    async def commit(
        self,
        task_id: str,
        message: str,
        files: Optional[list[str]] = None,
        author: str = DEFAULT_COMMIT_AUTHOR,
    ) -> CommitInfo:
        worktree = self._require_active(task_id, "commit to")
        logger.debug("Committing to {}: {}", worktree.branch, message)
        sha = await self._call(self._backend.commit, worktree.path, message, files, author)
        commit = CommitInfo(
            sha=sha,
            message=message,
            author=author,
            timestamp=_now_iso(self._clock),
            files_changed=list(files or []),
        )
        worktree.last_commit = commit
        await self._refresh_counters(worktree)
        self._emit("worktree.committed", worktree)
        return commit

    async def get_diff(self, task_id: str) -> DiffResult:
        worktree = self._require(task_id)
        return await self._call(self._backend.diff, worktree.branch, worktree.base_branch)

    async def check_conflicts(self, task_id: str) -> list[str]:
        """Return paths that would conflict on merge; empty means mergeable."""
        worktree = self._worktrees.get(task_id)
        if worktree is None:
            return []
        return list(await self._call(self._backend.check_conflicts, worktree.branch, worktree.base_branch))

    async def rebase(self, task_id: str) -> MergeResult:
        """Replay the task branch onto the latest base branch.

        A conflicting rebase is rolled back and leaves the status unchanged;
        a clean one re-activates a conflicted worktree.
        """
        worktree = self._require(task_id)
        if worktree.status.is_terminal:
            raise WorktreeStateError(f"Cannot rebase {worktree.status.value} worktree {worktree.branch}")
        logger.info("Rebasing {} onto {}", worktree.branch, worktree.base_branch)
        conflicts = await self._call(self._backend.rebase, worktree.path, worktree.branch, worktree.base_branch)
        if conflicts:
            return MergeResult(
                success=False,
                message=f"Rebase of {worktree.branch} onto {worktree.base_branch} hit conflicts",
                conflicts=list(conflicts),
            )
        worktree.status = WorktreeStatus.ACTIVE
        await self._refresh_counters(worktree)
        self._emit("worktree.rebased", worktree)
        return MergeResult(
            success=True,
            message=f"Successfully rebased {worktree.branch} onto {worktree.base_branch}",
        )

    async def merge(self, task_id: str, squash: bool = True) -> MergeResult:
        """Merge the task branch into the base branch after a conflict check."""
        worktree = self._require(task_id)
        if worktree.status.is_terminal:
            raise WorktreeStateError(f"Cannot merge {worktree.status.value} worktree {worktree.branch}")

        conflicts = await self.check_conflicts(task_id)
        if conflicts:
            worktree.status = WorktreeStatus.CONFLICTED
            self._emit("worktree.conflicted", worktree)
            logger.warning("Merge of {} blocked by {} conflict(s)", worktree.branch, len(conflicts))
            return MergeResult(
                success=False,
                message=f"Cannot merge {worktree.branch} into {worktree.base_branch}: conflicts detected",
                conflicts=conflicts,
            )
        if worktree.status != WorktreeStatus.ACTIVE:
            raise WorktreeStateError(f"Worktree {worktree.branch} is {worktree.status.value}; rebase first")

        logger.info("Merging {} into {} (squash={})", worktree.branch, worktree.base_branch, squash)
        message = f"Merge task: {task_id}"
        sha = await self._call(
            self._backend.merge, worktree.branch, worktree.base_branch, squash=squash, message=message
        )
        worktree.status = WorktreeStatus.MERGED
        worktree.merge_commit = sha
        await self._refresh_counters(worktree)
        self._emit("worktree.merged", worktree)
        return MergeResult(
            success=True,
            commit_sha=sha,
            message=f"Successfully merged {worktree.branch} into {worktree.base_branch}",
        )

    # -- reporting ----------------------------------------------------------

    def get_status(self) -> WorktreeSummary:
        worktrees = list(self._worktrees.values())
        return WorktreeSummary(
            active=sum(1 for w in worktrees if w.status == WorktreeStatus.ACTIVE),
            ahead=sum(w.ahead_by for w in worktrees),
            behind=sum(w.behind_by for w in worktrees),
            conflicted=sum(1 for w in worktrees if w.status == WorktreeStatus.CONFLICTED),
        )

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "worktrees": [[task_id, w.to_dict()] for task_id, w in self._worktrees.items()],
            "history": [w.to_dict() for w in self._history],
            "summary": self.get_status().to_dict(),
        }

    def restore(self, data: dict[str, Any]) -> None:
        worktrees: dict[str, Worktree] = {}
        for entry in data.get("worktrees") or []:
            if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[1], dict):
                worktrees[str(entry[0])] = Worktree.from_dict(entry[1])
        self._worktrees = worktrees
        self._history = [Worktree.from_dict(w) for w in data.get("history") or [] if isinstance(w, dict)]
