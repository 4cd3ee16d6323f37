"""Token counting for routing decisions.

Counts are approximate: every provider tokenizes differently, so Detour
uses tiktoken's cl100k_base encoding as a stable yardstick. Counts only
need to be deterministic for the same input and comparable against
route thresholds such as long-context cutoffs.
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Protocol, runtime_checkable

from .messages import block_text_segments, parse_content

DEFAULT_ENCODING = "cl100k_base"


@runtime_checkable
class TokenCounter(Protocol):
    """Anything that can count tokens in a string."""

    def count_text(self, text: str) -> int:
        ...


@lru_cache(maxsize=4)
def _get_encoding(encoding_name: str):
    """Get tiktoken encoding, cached for performance."""
    import tiktoken

    return tiktoken.get_encoding(encoding_name)


class TiktokenCounter:
    """Token counter backed by tiktoken.

    Example:
        counter = TiktokenCounter()
        tokens = counter.count_text("Hello, world!")
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        self.encoding_name = encoding_name
        self._encoding = None  # Lazy load

    @property
    def encoding(self):
        """Lazy-load the encoding."""
        if self._encoding is None:
            self._encoding = _get_encoding(self.encoding_name)
        return self._encoding

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        # Special tokens in user content are counted as plain text
        return len(self.encoding.encode(text, disallowed_special=()))


class EstimatingTokenCounter:
    """Character-based estimate (about 4 characters per token).

    Used in tests and anywhere the tiktoken encoding files are unavailable.
    """

    def __init__(self, chars_per_token: float = 4.0):
        self.chars_per_token = chars_per_token

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        return max(1, int(len(text) / self.chars_per_token + 0.5))


def _system_segments(system: Any) -> list[str]:
    if isinstance(system, str):
        return [system]
    segments: list[str] = []
    if isinstance(system, list):
        for item in system:
            if not isinstance(item, dict) or item.get("type") != "text":
                continue
            text = item.get("text")
            if isinstance(text, str):
                segments.append(text)
            elif isinstance(text, list):
                segments.extend(part or "" for part in text)
    return segments


def count_request_tokens(body: dict[str, Any], counter: TokenCounter) -> int:
    """Count tokens across messages, system prompt and tool definitions.

    Each segment is counted on its own and the counts are summed.

    Args:
        body: Request body in Anthropic messages format.
        counter: Token counter to use.

    Returns:
        Total token count.
    """
    total = 0

    messages = body.get("messages") or []
    if isinstance(messages, list):
        for message in messages:
            if not isinstance(message, dict):
                continue
            for block in parse_content(message.get("content")):
                for segment in block_text_segments(block):
                    total += counter.count_text(segment)

    for segment in _system_segments(body.get("system")):
        total += counter.count_text(segment)

    tools = body.get("tools") or []
    if isinstance(tools, list):
        for tool in tools:
            total += counter.count_text(json.dumps(tool))

    return total
