"""In-process agents and their tools."""

from .base import Agent, AgentRegistry, Tool, ToolContext, ToolHandler, find_tool_owner
from .command import CommandAgent


def default_agent_registry() -> AgentRegistry:
    registry = AgentRegistry()
    registry.register(CommandAgent())
    return registry


__all__ = [
    "Agent",
    "AgentRegistry",
    "CommandAgent",
    "Tool",
    "ToolContext",
    "ToolHandler",
    "default_agent_registry",
    "find_tool_owner",
]
