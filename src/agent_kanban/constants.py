"""Shared constants for the agent Kanban core."""

from __future__ import annotations

STATE_DIR_NAME = ".agent_kanban"
CONFIG_FILE = "config.yaml"
STATE_FILE = "state.yaml"
STATE_LOCK_FILE = "state.lock"
STATE_VERSION = 1

DEFAULT_BASE_BRANCH = "main"
DEFAULT_WORKTREES_DIR = ".worktrees"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_BOARD_NAME = "Main"
DEFAULT_TASK_TITLE = "New Task"

# Author recorded on worktree commits when the caller does not name one.
DEFAULT_COMMIT_AUTHOR = "AI Agent"
# Author recorded on review comments added through request_changes.
DEFAULT_REVIEWER = "You"

BRANCH_ID_CHARS = 8

ENV_LOG_LEVEL = "AGENT_KANBAN_LOG_LEVEL"
ENV_BASE_BRANCH = "AGENT_KANBAN_BASE_BRANCH"
