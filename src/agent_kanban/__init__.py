"""Provide the public `agent_kanban` package exports."""

from __future__ import annotations

from .agents import AgentRole, auto_assign_agents, suggest_agent
from .container import KanbanContainer
from .execution import AgentBackend, BackendResult, ExecutionProgress, ParallelRunner, TaskExecutor
from .task_engine import Column, Priority, Task, TaskStatus, TaskStore
from .worktree import GitCliBackend, VersionControlBackend, WorktreeManager

__all__ = [
    "AgentBackend",
    "AgentRole",
    "BackendResult",
    "Column",
    "ExecutionProgress",
    "GitCliBackend",
    "KanbanContainer",
    "ParallelRunner",
    "Priority",
    "Task",
    "TaskExecutor",
    "TaskStatus",
    "TaskStore",
    "VersionControlBackend",
    "WorktreeManager",
    "auto_assign_agents",
    "suggest_agent",
]
