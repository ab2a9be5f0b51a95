"""Agent execution: single tasks and concurrent batches."""

from .backend import AgentBackend, BackendResult, ExecutionProgress, ProgressCallback
from .executor import TaskExecutor
from .parallel import ParallelRunner, TaskProgressCallback

__all__ = [
    "AgentBackend",
    "BackendResult",
    "ExecutionProgress",
    "ParallelRunner",
    "ProgressCallback",
    "TaskExecutor",
    "TaskProgressCallback",
]
