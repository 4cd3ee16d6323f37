"""Built-in route matchers.

Each matcher is a pure predicate over (request, context) configured by a
``condition`` dict fixed at construction:

    command          {"commands": ["/compact"]}
    token_count      {"threshold": 60000, "operator": "gt"}
    message_pattern  {"patterns": [...], "matchMode": "any", "caseSensitive": false}
    model            {"models": [...], "matchMode": "exact" | "prefix" | "contains"}
    tool             {"toolTypes": [...], "matchMode": "any" | "all"}
    thinking         {}
    always           {}
"""

from __future__ import annotations

import logging
import operator
from typing import Any

from ..messages import last_message_text
from .types import Matcher, ProxyRequest, RouteContext

logger = logging.getLogger(__name__)

_OPERATORS = {
    "gt": operator.gt,
    "lt": operator.lt,
    "gte": operator.ge,
    "lte": operator.le,
    "eq": operator.eq,
}


class CommandMatcher(Matcher):
    """Matches detected slash commands, or their raw form in the last message."""

    type = "command"

    def __init__(self, condition: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(condition, description)
        self.commands: list[str] = list(self.condition.get("commands", []))

    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        if context.detected_commands and any(
            cmd in self.commands for cmd in context.detected_commands
        ):
            return True

        content = last_message_text(request.body)
        if not content:
            return False

        stripped = content.strip()
        for cmd in self.commands:
            bare = cmd[1:] if cmd.startswith("/") else cmd
            if (
                f"<command-name>/{bare}</command-name>" in content
                or f"<command-name>{cmd}</command-name>" in content
                or stripped.startswith(cmd)
            ):
                return True
        return False


class TokenCountMatcher(Matcher):
    type = "token_count"

    def __init__(self, condition: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(condition, description)
        self.threshold = self.condition.get("threshold", 60000)
        self.operator = self.condition.get("operator", "gt")
        if self.operator not in _OPERATORS:
            # Unknown operators never match
            logger.warning("token_count matcher has unknown operator %r", self.operator)

    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        compare = _OPERATORS.get(self.operator)
        if compare is None:
            return False
        return compare(context.token_count or 0, self.threshold)


class MessagePatternMatcher(Matcher):
    """Matches context pattern tags if any are set, else last-message substrings."""

    type = "message_pattern"

    def __init__(self, condition: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(condition, description)
        self.patterns: list[str] = list(self.condition.get("patterns", []))
        self.match_mode = self.condition.get("matchMode", "any")
        self.case_sensitive = bool(self.condition.get("caseSensitive", False))

    def _norm(self, text: str) -> str:
        return text if self.case_sensitive else text.lower()

    def _combine(self, hits) -> bool:
        return any(hits) if self.match_mode == "any" else all(hits)

    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        if context.patterns:
            tags = {self._norm(p) for p in context.patterns}
            return self._combine(self._norm(p) in tags for p in self.patterns)

        content = last_message_text(request.body)
        if content is None:
            return False
        content = self._norm(content)
        return self._combine(self._norm(p) in content for p in self.patterns)


class ModelMatcher(Matcher):
    type = "model"

    def __init__(self, condition: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(condition, description)
        self.models: list[str] = list(self.condition.get("models", []))
        self.match_mode = self.condition.get("matchMode", "exact")

    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        requested = request.body.get("model")
        if not requested or not isinstance(requested, str):
            return False
        if self.match_mode == "exact":
            return requested in self.models
        if self.match_mode == "prefix":
            return any(requested.startswith(m) for m in self.models)
        if self.match_mode == "contains":
            return any(m in requested for m in self.models)
        return False


class ToolMatcher(Matcher):
    """Matches tool definitions whose ``type`` or ``name`` starts with a listed prefix."""

    type = "tool"

    def __init__(self, condition: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(condition, description)
        self.tool_types: list[str] = list(self.condition.get("toolTypes", []))
        self.match_mode = self.condition.get("matchMode", "any")

    @staticmethod
    def _tool_has_prefix(tool: Any, prefix: str) -> bool:
        if not isinstance(tool, dict):
            return False
        for key in ("type", "name"):
            value = tool.get(key)
            if isinstance(value, str) and value.startswith(prefix):
                return True
        return False

    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        tools = request.body.get("tools")
        if not isinstance(tools, list) or not tools:
            return False
        if self.match_mode == "any":
            return any(
                self._tool_has_prefix(tool, prefix) for tool in tools for prefix in self.tool_types
            )
        return all(
            any(self._tool_has_prefix(tool, prefix) for tool in tools) for prefix in self.tool_types
        )


class ThinkingMatcher(Matcher):
    type = "thinking"

    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        body = request.body
        return bool(body.get("thinking") or body.get("reasoning") or body.get("reasoning_effort"))


class AlwaysMatcher(Matcher):
    type = "always"

    def evaluate(self, request: ProxyRequest, context: RouteContext) -> bool:
        return True


BUILTIN_MATCHERS: dict[str, type[Matcher]] = {
    cls.type: cls
    for cls in (
        CommandMatcher,
        TokenCountMatcher,
        MessagePatternMatcher,
        ModelMatcher,
        ToolMatcher,
        ThinkingMatcher,
        AlwaysMatcher,
    )
}
