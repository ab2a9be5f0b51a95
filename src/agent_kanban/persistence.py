"""Durable board state in ``.agent_kanban/state.yaml``.

Snapshots are written to a temporary file and swapped in with
``os.replace`` while holding an inter-process file lock, so a reader never
sees a half-written document.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from filelock import FileLock
from loguru import logger

from .constants import STATE_FILE, STATE_LOCK_FILE, STATE_VERSION


class StateRepository:
    """Load and save the combined store/worktree snapshot."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / STATE_FILE
        self.lock_path = self.state_dir / STATE_LOCK_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> tuple[dict[str, Any], str | None]:
        """Return ``(state, error_message)``; a missing file is ``({}, None)``.

        Parse failures are reported instead of raised so callers can refuse to
        overwrite a corrupted file.
        """
        if not self.path.exists():
            return {}, None
        self.state_dir.mkdir(parents=True, exist_ok=True)
        try:
            with FileLock(str(self.lock_path)):
                raw = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            return {}, f"{self.path.name}: {exc.__class__.__name__}: {exc}"
        except yaml.YAMLError as exc:
            return {}, f"{self.path.name}: YAMLError: {exc}"
        if raw is None:
            return {}, None
        if not isinstance(raw, dict):
            return {}, f"{self.path.name}: expected object, got {type(raw).__name__}"
        version = raw.get("version")
        if version not in (None, STATE_VERSION):
            logger.warning("State file {} has version {}, expected {}", self.path, version, STATE_VERSION)
        return raw, None

    def save(self, state: dict[str, Any]) -> None:
        payload = {**state, "version": STATE_VERSION}
        self.state_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(f"{self.path.suffix}.tmp")
        with FileLock(str(self.lock_path)):
            with tmp_path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(
                    payload,
                    handle,
                    sort_keys=False,
                    default_flow_style=False,
                    allow_unicode=True,
                )
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        logger.debug("Saved board state to {}", self.path)
