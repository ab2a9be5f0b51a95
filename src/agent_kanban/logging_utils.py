"""Configure logging and summarize board objects for log lines."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from loguru import logger

from .constants import DEFAULT_LOG_LEVEL

_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)


class InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Send loguru (and stdlib ``agent_kanban.*`` loggers) to stderr at *level*."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_LOG_FORMAT)

    stdlib = logging.getLogger("agent_kanban")
    stdlib.handlers = [InterceptHandler()]
    stdlib.setLevel(level.upper())
    stdlib.propagate = False


def summarize_task(task: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly view of a task for logging.

    Args:
        task: Task record (or None).

    Returns:
        A dictionary with the fields worth seeing in a log line.
    """
    if task is None:
        return {"task": None}

    d: dict[str, Any] = {"task": getattr(task, "id", None)}
    for name in ("column", "status", "priority"):
        value = getattr(task, name, None)
        if value is not None:
            d[name] = getattr(value, "value", str(value))
    d["progress"] = getattr(task, "progress", 0)

    agent = getattr(task, "assigned_agent", None)
    if agent:
        d["agent"] = agent
    branch = getattr(task, "git_branch", None)
    if branch:
        d["branch"] = branch
    d["commits_n"] = len(getattr(task, "commits", []) or [])

    open_comments = [c for c in getattr(task, "review_comments", []) or [] if not getattr(c, "resolved", False)]
    if open_comments:
        d["open_comments_n"] = len(open_comments)

    output = str(getattr(task, "output", "") or "")
    if output:
        d["output"] = (output[:240] + "…") if len(output) > 240 else output
    return d


def summarize_progress(progress: Any) -> dict[str, Any]:
    """Render an execution progress checkpoint for logging."""
    if progress is None:
        return {"progress": None}
    d: dict[str, Any] = {
        "task": getattr(progress, "task_id", None),
        "progress": getattr(progress, "progress", None),
        "status": getattr(progress, "status", None),
    }
    step = getattr(progress, "current_step", None)
    if step:
        d["step"] = step
    output = str(getattr(progress, "output", "") or "")
    if output:
        d["output"] = (output[:240] + "…") if len(output) > 240 else output
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except Exception:
        return str(obj)
