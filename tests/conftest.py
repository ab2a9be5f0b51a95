"""Shared fixtures: an in-memory version-control fake and a scripted agent backend."""

from __future__ import annotations

import asyncio
import itertools
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

import pytest

from agent_kanban.errors import AlreadyExistsError
from agent_kanban.execution import AgentBackend
from agent_kanban.task_engine import TaskStore
from agent_kanban.utils import SequentialIds
from agent_kanban.worktree import DiffResult, FileDiff, VersionControlBackend, WorktreeManager


class FakeVersionControl(VersionControlBackend):
    """Branch graph kept in memory.

    The base branch is a list of commits (each a list of touched paths); a
    task branch remembers how far along the base it was created and its own
    commits.  Two sides conflict when they touched the same path since the
    branch point.
    """

    def __init__(self) -> None:
        self.base_commits: list[list[str]] = []
        self.branches: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, ...]] = []
        self._shas = itertools.count(1)
        self._lock = threading.Lock()

    def _sha(self) -> str:
        return f"{next(self._shas):040x}"

    def commit_on_base(self, files: list[str]) -> None:
        """Simulate someone else landing a change on the base branch."""
        self.base_commits.append(list(files))

    def _branch_files(self, branch: str) -> set[str]:
        return {f for commit in self.branches[branch]["commits"] for f in commit}

    def _base_files_since(self, branch: str) -> set[str]:
        since = self.branches[branch]["base_at"]
        return {f for commit in self.base_commits[since:] for f in commit}

    # -- VersionControlBackend ----------------------------------------------

    def branch_exists(self, branch: str) -> bool:
        return branch in self.branches

    def create_branch(self, branch: str, base_branch: str, path: str) -> None:
        with self._lock:
            self.calls.append(("create_branch", branch, path))
            if branch in self.branches:
                raise AlreadyExistsError(f"Branch {branch} already exists")
            self.branches[branch] = {"path": path, "base_at": len(self.base_commits), "commits": []}

    def commit(self, path: str, message: str, files: Optional[list[str]], author: str) -> str:
        with self._lock:
            self.calls.append(("commit", path, message))
            branch = next(name for name, b in self.branches.items() if b["path"] == path)
            self.branches[branch]["commits"].append(list(files or []))
            return self._sha()

    def diff(self, branch: str, base_branch: str) -> DiffResult:
        return DiffResult(
            files=[FileDiff(path=f, status="modified", additions=1) for f in sorted(self._branch_files(branch))]
        )

    def rebase(self, path: str, branch: str, base_branch: str) -> list[str]:
        self.calls.append(("rebase", branch))
        conflicts = sorted(self._branch_files(branch) & self._base_files_since(branch))
        if not conflicts:
            self.branches[branch]["base_at"] = len(self.base_commits)
        return conflicts

    def check_conflicts(self, branch: str, base_branch: str) -> list[str]:
        return sorted(self._branch_files(branch) & self._base_files_since(branch))

    def merge(self, branch: str, base_branch: str, *, squash: bool, message: str) -> str:
        self.calls.append(("merge", branch, "squash" if squash else "no-ff"))
        files = sorted(self._branch_files(branch))
        if squash:
            self.base_commits.append(files)
        else:
            self.base_commits.extend(self.branches[branch]["commits"])
        return self._sha()

    def ahead_behind(self, branch: str, base_branch: str) -> tuple[int, int]:
        info = self.branches[branch]
        return len(info["commits"]), len(self.base_commits) - info["base_at"]

    def delete_branch(self, branch: str, path: str) -> None:
        self.calls.append(("delete_branch", branch))
        self.branches.pop(branch, None)


class FakeAgentBackend(AgentBackend):
    """Agent backend whose outcome per task title is scripted up front.

    ``results`` maps a title to a result mapping; titles listed in ``raises``
    throw, titles in ``hangs`` never finish on their own.
    """

    def __init__(
        self,
        results: Optional[dict[str, Any]] = None,
        *,
        raises: Sequence[str] = (),
        hangs: Sequence[str] = (),
        delay: float = 0.0,
    ) -> None:
        self.results = dict(results or {})
        self.raises = set(raises)
        self.hangs = set(hangs)
        self.delay = delay
        self.created: list[dict[str, Any]] = []
        self.running = 0
        self.max_running = 0

    def create_task(self, title: str, description: str, priority: str, role: str) -> Any:
        descriptor = {"title": title, "description": description, "priority": priority, "role": role}
        self.created.append(descriptor)
        return descriptor

    async def execute_chain(self, descriptors: Sequence[Any]) -> list[Any]:
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            out: list[Any] = []
            for descriptor in descriptors:
                title = descriptor["title"]
                if self.delay:
                    await asyncio.sleep(self.delay)
                if title in self.hangs:
                    await asyncio.sleep(3600)
                if title in self.raises:
                    raise RuntimeError(f"backend exploded on {title}")
                out.append(self.results.get(title, {"success": True, "filesModified": [], "output": "done"}))
            return out
        finally:
            self.running -= 1


class FixedClock:
    """Clock that advances by one minute per call."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(minutes=1)
        return current


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(ids: SequentialIds, clock: FixedClock) -> TaskStore:
    return TaskStore(ids=ids, clock=clock)


@pytest.fixture
def board_id(store: TaskStore) -> str:
    return store.create_board("Main").id


@pytest.fixture
def vcs() -> FakeVersionControl:
    return FakeVersionControl()


@pytest.fixture
def worktrees(vcs: FakeVersionControl, tmp_path: Path, clock: FixedClock) -> WorktreeManager:
    return WorktreeManager(vcs, tmp_path, ids=SequentialIds(), clock=clock)

