"""Agent role routing."""

from .assigner import (
    DEFAULT_ROLE,
    ROUTING_RULES,
    AgentRole,
    RoutingRule,
    auto_assign_agents,
    suggest_agent,
)

__all__ = [
    "DEFAULT_ROLE",
    "ROUTING_RULES",
    "AgentRole",
    "RoutingRule",
    "auto_assign_agents",
    "suggest_agent",
]
