"""Conversation compaction rewrite.

Shared by the /compact pre-processor and the ``compact`` route
transformation: the last message is replaced by an exhaustive
summarization instruction, a summarizer system directive is appended
with ephemeral cache control, and the output ceiling is raised.
"""

from __future__ import annotations

import re
from typing import Any

from .messages import last_message_text, text_block

COMPACT_MAX_TOKENS = 65536

DEFAULT_COMPACT_INSTRUCTION = """IMPORTANT: You MUST use deterministic context and provide TOO MUCH context rather than too little. It is ALWAYS better to include excessive detail to ensure nothing is forgotten.

Please provide a SEQUENTIAL and COMPREHENSIVE summary of this conversation. DO NOT be concise - include ALL important details, code snippets, file paths, errors, solutions, and context.

REQUIREMENTS:
1. Use DETERMINISTIC CONTEXT - be explicit and exact about everything
2. Include TOO MUCH CONTEXT - it's better to have excessive detail than to miss anything
3. Process everything SEQUENTIALLY - maintain the chronological order of events
4. Include ALL file paths, function names, variable names, and code snippets
5. Document ALL errors and their solutions
6. Preserve ALL technical details and implementation specifics
7. Keep ALL todo items and tasks with their full context
8. Maintain ALL user requirements and instructions exactly as stated"""

COMPACT_SYSTEM_PROMPT = (
    "You are a conversation summarizer that MUST provide EXCESSIVE detail and context. "
    "NEVER be concise. Always include TOO MUCH information rather than too little. "
    "Process everything SEQUENTIALLY and maintain DETERMINISTIC CONTEXT. "
    "Include ALL technical details, code snippets, file paths, errors, solutions, and "
    "implementation specifics. It is CRITICAL that you preserve everything with excessive "
    "detail to ensure nothing is forgotten."
)

_COMMAND_ARGS_RE = re.compile(r"<command-args>([^<]*)</command-args>")


def extract_command_args(body: dict[str, Any]) -> str:
    """Return the ``<command-args>`` payload of the last message, or ""."""
    content = last_message_text(body) or ""
    match = _COMMAND_ARGS_RE.search(content)
    return match.group(1) if match else ""


def build_instruction(
    template: str = DEFAULT_COMPACT_INSTRUCTION, args: str = "", prefix: str = ""
) -> str:
    if not args:
        return template
    return f"{template}\n\n{prefix}{args}"


def ensure_system_blocks(body: dict[str, Any]) -> list[Any]:
    """Normalize ``body["system"]`` to block-list form and return it."""
    system = body.get("system")
    if not system:
        system = []
    elif isinstance(system, str):
        system = [text_block(system)]
    elif not isinstance(system, list):
        system = [system]
    body["system"] = system
    return system


def apply_compact(
    body: dict[str, Any],
    instruction: str,
    max_tokens: int = COMPACT_MAX_TOKENS,
    add_system_prompt: bool = True,
) -> None:
    """Rewrite a request body in place for conversation compaction."""
    messages = body.get("messages")
    if isinstance(messages, list) and messages:
        messages[-1] = {"role": "user", "content": instruction}

    if add_system_prompt:
        ensure_system_blocks(body).append(
            {
                "type": "text",
                "text": COMPACT_SYSTEM_PROMPT,
                "cache_control": {"type": "ephemeral"},
            }
        )

    body["max_tokens"] = max_tokens
