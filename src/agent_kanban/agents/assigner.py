"""Keyword routing from a task's text to an agent role.

Routing is a pure function of the text: the description (or the title when
the description is empty) is lower-cased and matched by substring against an
ordered rule list.  The first rule with any matching keyword wins, so rule
order is the tie-break when a text mentions several kinds of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from ..task_engine.model import TaskStatus
from ..task_engine.store import TaskStore

logger = logging.getLogger(__name__)


class AgentRole(str, Enum):
    COMMUNICATIONS = "communications"
    RESEARCH = "research"
    DEVELOPMENT = "development"
    BROWSER = "browser"
    CREATIVE = "creative"
    PERSONAL = "personal"


@dataclass(frozen=True)
class RoutingRule:
    keywords: tuple[str, ...]
    role: AgentRole

    def matches(self, text: str) -> bool:
        return any(k in text for k in self.keywords)


ROUTING_RULES: tuple[RoutingRule, ...] = (
    RoutingRule(("email", "message", "slack", "communicate", "meeting"), AgentRole.COMMUNICATIONS),
    RoutingRule(("research", "search", "find", "investigate", "analyze"), AgentRole.RESEARCH),
    RoutingRule(("code", "implement", "fix", "bug", "feature", "refactor", "test"), AgentRole.DEVELOPMENT),
    RoutingRule(("browse", "website", "scrape", "screenshot", "click"), AgentRole.BROWSER),
    RoutingRule(("write", "document", "blog", "content", "presentation"), AgentRole.CREATIVE),
    RoutingRule(("calendar", "schedule", "remind", "plan", "organize"), AgentRole.PERSONAL),
)

DEFAULT_ROLE = AgentRole.DEVELOPMENT


def _routing_text(task: Union[str, Any]) -> str:
    if isinstance(task, str):
        return task.lower()
    if isinstance(task, dict):
        description, title = task.get("description"), task.get("title")
    else:
        description = getattr(task, "description", None)
        title = getattr(task, "title", None)
    return str(description or title or "").lower()


def suggest_agent(task: Union[str, Any]) -> AgentRole:
    """Suggest an agent role for *task*.

    *task* may be raw text, a mapping with ``title``/``description`` keys, or
    any object exposing those attributes (such as a ``Task``).
    """
    text = _routing_text(task)
    for rule in ROUTING_RULES:
        if rule.matches(text):
            return rule.role
    return DEFAULT_ROLE


def auto_assign_agents(store: TaskStore) -> int:
    """Assign a suggested role to every pending task that has none.

    Returns the number of tasks assigned.
    """
    assigned = 0
    for task in store.list_tasks():
        if task.assigned_agent or task.status != TaskStatus.PENDING:
            continue
        role = suggest_agent(task)
        store.assign_agent(task.id, role.value)
        assigned += 1
    if assigned:
        logger.info("Auto-assigned agents to %d task(s)", assigned)
    return assigned
