"""Built-in route transformations.

Transformations mutate the outbound request body in place once their
route is selected. They run in declared order and a later one may undo
an earlier one; declaration order is the only conflict resolution.
"""

from __future__ import annotations

from typing import Any

from ..compact import (
    COMPACT_MAX_TOKENS,
    DEFAULT_COMPACT_INSTRUCTION,
    apply_compact,
    build_instruction,
    ensure_system_blocks,
    extract_command_args,
)
from ..messages import text_block
from .types import ProxyRequest, RouteContext, Transformation


class MessageTransformation(Transformation):
    """Replace, append to, or prepend to one message.

    Config:
        operation: "replace" | "append" | "prepend" (default "replace")
        content: text to write
        targetIndex: message index, negative counts from the end (default -1)
    """

    type = "message"

    def __init__(self, config: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(config, description)
        self.operation = self.config.get("operation", "replace")
        self.content = self.config.get("content", "")
        self.role = self.config.get("role", "user")
        self.target_index = self.config.get("targetIndex", -1)

    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        messages = request.body.get("messages")
        if not isinstance(messages, list):
            return

        index = self.target_index
        if index < 0:
            index += len(messages)
        if index < 0 or index >= len(messages):
            return

        target = messages[index]
        current = target.get("content")
        if self.operation == "replace":
            target["content"] = self.content
        elif self.operation == "append":
            if isinstance(current, str):
                target["content"] = f"{current}\n\n{self.content}"
            elif isinstance(current, list):
                current.append(text_block(self.content))
        elif self.operation == "prepend":
            if isinstance(current, str):
                target["content"] = f"{self.content}\n\n{current}"
            elif isinstance(current, list):
                current.insert(0, text_block(self.content))


class SystemPromptTransformation(Transformation):
    type = "system_prompt"

    def __init__(self, config: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(config, description)
        self.operation = self.config.get("operation", "add")
        self.text = self.config.get("text", "")
        self.cache_control = self.config.get("cacheControl")

    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        block = text_block(self.text)
        if self.cache_control:
            block["cache_control"] = self.cache_control

        system = ensure_system_blocks(request.body)
        if self.operation in ("add", "append"):
            system.append(block)
        elif self.operation == "prepend":
            system.insert(0, block)
        elif self.operation == "replace":
            request.body["system"] = [block]


class ParamsTransformation(Transformation):
    """Shallow-merge the config mapping into the request body."""

    type = "params"

    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        request.body.update(self.config)


class CompactTransformation(Transformation):
    type = "compact"

    def __init__(self, config: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(config, description)
        self.template = self.config.get("instructionTemplate") or DEFAULT_COMPACT_INSTRUCTION
        self.max_tokens = self.config.get("maxTokens") or COMPACT_MAX_TOKENS
        self.add_system_prompt = self.config.get("addSystemPrompt") is not False

    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        instruction = build_instruction(self.template, extract_command_args(request.body))
        apply_compact(
            request.body,
            instruction,
            max_tokens=self.max_tokens,
            add_system_prompt=self.add_system_prompt,
        )


class ThinkingTransformation(Transformation):
    type = "thinking"

    def __init__(self, config: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(config, description)
        self.reasoning_effort = self.config.get("reasoning_effort") or "high"
        self.verbosity = self.config.get("verbosity", 2)
        self.reasoning = self.config.get("reasoning") is not False

    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        if self.reasoning:
            request.body["reasoning"] = True
        request.body["reasoning_effort"] = self.reasoning_effort
        if self.verbosity is not None:
            request.body["verbosity"] = self.verbosity


class CleanupTransformation(Transformation):
    """Delete top-level fields. ``cache_control`` is also stripped from system blocks."""

    type = "cleanup"

    def __init__(self, config: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(config, description)
        self.fields: list[str] = list(self.config.get("fields", []))

    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        body = request.body
        for name in self.fields:
            body.pop(name, None)

        system = body.get("system")
        if "cache_control" in self.fields and isinstance(system, list):
            for block in system:
                if isinstance(block, dict):
                    block.pop("cache_control", None)


class ModelOverrideTransformation(Transformation):
    type = "model_override"

    def __init__(self, config: dict[str, Any] | None = None, description: str | None = None):
        super().__init__(config, description)
        self.model = self.config.get("model", "")

    def apply(self, request: ProxyRequest, context: RouteContext) -> None:
        request.body["model"] = self.model


BUILTIN_TRANSFORMATIONS: dict[str, type[Transformation]] = {
    cls.type: cls
    for cls in (
        MessageTransformation,
        SystemPromptTransformation,
        ParamsTransformation,
        CompactTransformation,
        ThinkingTransformation,
        CleanupTransformation,
        ModelOverrideTransformation,
    )
}
