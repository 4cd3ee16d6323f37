"""Typed views over Anthropic-style message content.

Request bodies stay plain dicts so transformations can mutate them in
place and forward them unchanged. Code that needs to *inspect* content
parses it into the block dataclasses below and dispatches on type, so
unfamiliar block kinds surface as UnknownBlock instead of being probed
field by field.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: Any
    type: str = "tool_use"


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: Any
    is_error: bool = False
    type: str = "tool_result"


@dataclass(frozen=True)
class ImageBlock:
    source: dict[str, Any] = field(default_factory=dict)
    type: str = "image"


@dataclass(frozen=True)
class UnknownBlock:
    type: str
    raw: dict[str, Any] = field(default_factory=dict)


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, ImageBlock, UnknownBlock]


def parse_block(raw: Any) -> ContentBlock:
    """Parse one raw content block dict."""
    if isinstance(raw, str):
        return TextBlock(text=raw)
    if not isinstance(raw, dict):
        return UnknownBlock(type=type(raw).__name__)

    block_type = raw.get("type")
    if block_type == "text":
        return TextBlock(text=str(raw.get("text", "")))
    if block_type == "tool_use":
        return ToolUseBlock(
            id=str(raw.get("id", "")), name=str(raw.get("name", "")), input=raw.get("input")
        )
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=str(raw.get("tool_use_id", "")),
            content=raw.get("content"),
            is_error=bool(raw.get("is_error", False)),
        )
    if block_type == "image":
        return ImageBlock(source=raw.get("source") or {})
    return UnknownBlock(type=str(block_type), raw=raw)


def parse_content(content: Any) -> list[ContentBlock]:
    """Parse message content in either string or block-list form."""
    if content is None:
        return []
    if isinstance(content, str):
        return [TextBlock(text=content)]
    if isinstance(content, list):
        return [parse_block(item) for item in content]
    return [parse_block(content)]


def first_text(message: dict[str, Any] | None) -> str | None:
    """Return the string content, or the text of the first text block."""
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content
    for block in parse_content(content):
        if isinstance(block, TextBlock):
            return block.text
    return None


def last_message(body: dict[str, Any]) -> dict[str, Any] | None:
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        return None
    return messages[-1]


def last_message_text(body: dict[str, Any]) -> str | None:
    """Text of the last message in the request body, if any."""
    return first_text(last_message(body))


def block_text_segments(block: ContentBlock) -> list[str]:
    """Text segments used for token counting of a single block."""
    if isinstance(block, TextBlock):
        return [block.text]
    if isinstance(block, ToolUseBlock):
        return [json.dumps(block.input)]
    if isinstance(block, ToolResultBlock):
        if isinstance(block.content, str):
            return [block.content]
        return [json.dumps(block.content)]
    return []


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}
