"""In-process agents that own tools.

When an agent is active for a request, its tools are advertised to the
model. Calls to those tools in the response stream are executed locally
by the stream rewriter and their results fed back to the model.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import ProxyConfig
from ..routing.types import ProxyRequest

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Passed to tool handlers alongside the parsed arguments."""

    request: ProxyRequest
    config: ProxyConfig | None = None


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass
class Tool:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler

    def definition(self) -> dict[str, Any]:
        """Anthropic tool definition advertised to the model."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class Agent(ABC):
    """Base class for agents.

    Subclasses set ``name``, populate ``tools`` and implement
    ``should_handle``. ``req_handler`` may mutate the request before it is
    forwarded.
    """

    name: str = ""

    def __init__(self):
        self.tools: dict[str, Tool] = {}

    def add_tool(self, tool: Tool) -> None:
        self.tools[tool.name] = tool

    @abstractmethod
    def should_handle(self, request: ProxyRequest, config: ProxyConfig | None) -> bool:
        pass

    def req_handler(self, request: ProxyRequest, config: ProxyConfig | None) -> None:
        return None

    def tool_definitions(self) -> list[dict[str, Any]]:
        return [tool.definition() for tool in self.tools.values()]


@dataclass
class AgentRegistry:
    agents: dict[str, Agent] = field(default_factory=dict)

    def register(self, agent: Agent) -> None:
        if agent.name in self.agents:
            logger.warning("Agent %s already registered. Replacing.", agent.name)
        self.agents[agent.name] = agent

    def get(self, name: str) -> Agent | None:
        return self.agents.get(name)

    def all(self) -> list[Agent]:
        return list(self.agents.values())

    def active_for(self, request: ProxyRequest, config: ProxyConfig | None) -> list[Agent]:
        return [a for a in self.agents.values() if a.should_handle(request, config)]

    def find_tool_owner(self, tool_name: str) -> Agent | None:
        return find_tool_owner(self.all(), tool_name)

    def activate(self, request: ProxyRequest, config: ProxyConfig | None) -> list[Agent]:
        """Select agents for this request, run their request handlers, advertise their tools.

        Tools are prepended to ``body["tools"]`` in agent registration order.
        """
        active = self.active_for(request, config)
        injected: list[dict[str, Any]] = []
        for agent in active:
            agent.req_handler(request, config)
            injected.extend(agent.tool_definitions())

        if injected:
            existing = request.body.get("tools")
            request.body["tools"] = injected + (existing if isinstance(existing, list) else [])
        return active


def find_tool_owner(agents: list[Agent], tool_name: str) -> Agent | None:
    for agent in agents:
        if tool_name in agent.tools:
            return agent
    return None
