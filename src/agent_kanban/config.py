"""Load optional board configuration from `.agent_kanban/config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .constants import (
    CONFIG_FILE,
    DEFAULT_BASE_BRANCH,
    DEFAULT_LOG_LEVEL,
    DEFAULT_WORKTREES_DIR,
    ENV_BASE_BRANCH,
    ENV_LOG_LEVEL,
    STATE_DIR_NAME,
)
from .errors import ConfigError

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class KanbanSettings:
    base_branch: str = DEFAULT_BASE_BRANCH
    worktrees_dir: str = DEFAULT_WORKTREES_DIR
    max_concurrency: Optional[int] = None
    log_level: str = DEFAULT_LOG_LEVEL
    autosave: bool = True


def load_kanban_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        project_dir: Repository root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = Path(project_dir).resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        return {}, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except yaml.YAMLError as exc:
        return {}, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return {}, f"{path.name}: expected object, got {type(data).__name__}"
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_worktrees_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `worktrees` block, or an empty dict if not present."""
    raw = _get_nested(config, "worktrees")
    return raw if isinstance(raw, dict) else {}


def get_max_concurrency(config: dict[str, Any]) -> Optional[int]:
    """Return `parallel.max_concurrency` when it is a positive integer."""
    raw = _get_nested(config, "parallel", "max_concurrency")
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        return None
    return raw


def get_log_level(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.upper() in VALID_LOG_LEVELS:
        return raw.upper()
    return DEFAULT_LOG_LEVEL


def get_autosave(config: dict[str, Any]) -> bool:
    raw = _get_nested(config, "state", "autosave")
    return raw if isinstance(raw, bool) else True


def build_settings(config: dict[str, Any], env: Optional[Mapping[str, str]] = None) -> KanbanSettings:
    """Resolve typed settings from a config mapping plus environment overrides."""
    env = os.environ if env is None else env
    worktrees = get_worktrees_config(config)

    base_branch = worktrees.get("base_branch")
    if not isinstance(base_branch, str) or not base_branch:
        base_branch = DEFAULT_BASE_BRANCH
    worktrees_dir = worktrees.get("dir")
    if not isinstance(worktrees_dir, str) or not worktrees_dir:
        worktrees_dir = DEFAULT_WORKTREES_DIR
    log_level = get_log_level(config)

    env_branch = env.get(ENV_BASE_BRANCH)
    if env_branch:
        base_branch = env_branch
    env_level = env.get(ENV_LOG_LEVEL)
    if env_level and env_level.upper() in VALID_LOG_LEVELS:
        log_level = env_level.upper()

    return KanbanSettings(
        base_branch=base_branch,
        worktrees_dir=worktrees_dir,
        max_concurrency=get_max_concurrency(config),
        log_level=log_level,
        autosave=get_autosave(config),
    )


def load_settings(
    project_dir: Path,
    *,
    strict: bool = False,
    env: Optional[Mapping[str, str]] = None,
) -> KanbanSettings:
    """Load settings for *project_dir*.

    A malformed config file falls back to defaults, or raises
    :class:`ConfigError` when *strict* is set.
    """
    config, err = load_kanban_config(project_dir)
    if err and strict:
        raise ConfigError(err)
    return build_settings(config, env)
