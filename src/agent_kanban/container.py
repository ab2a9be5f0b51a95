"""Wire a board for one project directory."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import KanbanSettings, load_settings
from .constants import DEFAULT_BOARD_NAME, STATE_DIR_NAME
from .errors import KanbanError
from .execution import AgentBackend, ParallelRunner, TaskExecutor
from .logging_utils import configure_logging, pretty
from .persistence import StateRepository
from .task_engine import TaskStore
from .utils import Clock, IdProvider
from .worktree import GitCliBackend, VersionControlBackend, WorktreeManager


class KanbanContainer:
    """Own the store, worktree manager, executor and runner of a project.

    ``vcs`` defaults to the git CLI backend when *project_dir* is a git
    repository; without one, tasks execute without isolated worktrees.
    Logging is configured at the settings' level unless *setup_logging* is
    false (for embedding applications that own their sinks).
    """

    def __init__(
        self,
        project_dir: Path,
        backend: AgentBackend,
        vcs: Optional[VersionControlBackend] = None,
        *,
        settings: Optional[KanbanSettings] = None,
        ids: Optional[IdProvider] = None,
        clock: Optional[Clock] = None,
        setup_logging: bool = True,
    ) -> None:
        self.project_dir = Path(project_dir).resolve()
        self.settings = settings or load_settings(self.project_dir)
        if setup_logging:
            configure_logging(self.settings.log_level)
        self.state = StateRepository(self.project_dir / STATE_DIR_NAME)
        self._state_error: Optional[str] = None

        self.store = TaskStore(ids=ids, clock=clock)
        if vcs is None and (self.project_dir / ".git").exists():
            vcs = GitCliBackend(self.project_dir)
        self.worktrees: Optional[WorktreeManager] = None
        if vcs is not None:
            self.worktrees = WorktreeManager(
                vcs,
                self.project_dir,
                base_branch=self.settings.base_branch,
                worktrees_dir=self.settings.worktrees_dir,
                ids=ids,
                clock=clock,
            )
        self.executor = TaskExecutor(self.store, backend, self.worktrees)
        self.runner = ParallelRunner(self.executor, self.settings.max_concurrency)

        if self.settings.autosave:
            self.store.subscribe(self._autosave)
            if self.worktrees is not None:
                self.worktrees.subscribe(self._autosave)

    @property
    def project_id(self) -> str:
        return self.project_dir.name

    def _autosave(self, event_type: str, payload: dict[str, Any]) -> None:
        self.save()

    def snapshot(self) -> dict[str, Any]:
        data = self.store.to_snapshot()
        if self.worktrees is not None:
            data["worktrees"] = self.worktrees.to_snapshot()
        return data

    def load(self) -> bool:
        """Restore saved state; returns ``False`` when there was nothing to load.

        A board named "Main" is created when the store ends up empty.
        """
        data, err = self.state.load()
        self._state_error = err
        if err:
            logger.error("Cannot load board state: {}", err)
        loaded = bool(data) and not err
        if loaded:
            self.store.load_snapshot(data)
            worktrees = data.get("worktrees")
            if self.worktrees is not None and isinstance(worktrees, dict):
                self.worktrees.restore(worktrees)
                logger.debug("Worktree summary:\n{}", pretty(self.worktrees.get_status().to_dict()))
            logger.info("Loaded {} task(s) from {}", len(self.store.list_tasks()), self.state.path)
        if not self.store.list_boards():
            self.store.create_board(DEFAULT_BOARD_NAME)
        return loaded

    def save(self) -> None:
        if self._state_error:
            raise KanbanError(f"Refusing to overwrite unreadable state file: {self._state_error}")
        self.state.save(self.snapshot())
