"""Agent for Claude Code local slash commands."""

from __future__ import annotations

import logging
import re
from typing import Any

from ..config import ProxyConfig
from ..messages import first_text, last_message
from ..preprocessing.audit import write_command_log
from ..preprocessing.block import project_folder
from ..preprocessing.context_enricher import extract_session_id
from ..routing.types import ProxyRequest
from .base import Agent, Tool, ToolContext

logger = logging.getLogger(__name__)

_XML_COMMAND_RE = re.compile(r"<command-name>/([^<]+)</command-name>")

COMPACT_DONE = (
    "Conversation compacted successfully. "
    "Context preserved with ephemeral linearly dependent sub agents."
)


async def handle_compact_command(args: dict[str, Any], context: ToolContext) -> str:
    if args.get("command") == "/compact":
        return COMPACT_DONE
    return "Unknown command"


async def generate_context_summary(args: dict[str, Any], context: ToolContext) -> str:
    return (
        f"Context summary generated for session {args.get('sessionId')} "
        "using ephemeral linearly dependent sub agents."
    )


class CommandAgent(Agent):
    """Active when the user's last message is a slash command.

    Offers the model tools for acting on local commands and logs each
    intercepted command to the logs directory.
    """

    name = "command"

    def __init__(self):
        super().__init__()
        self.add_tool(
            Tool(
                name="handleCompactCommand",
                description="Handle Claude Code local /compact command for conversation summary",
                input_schema={
                    "type": "object",
                    "properties": {
                        "command": {
                            "type": "string",
                            "description": "The command to handle (e.g., /compact)",
                        },
                        "arguments": {
                            "type": "string",
                            "description": "Arguments for the command",
                        },
                    },
                    "required": ["command"],
                },
                handler=handle_compact_command,
            )
        )
        self.add_tool(
            Tool(
                name="generateContextSummary",
                description="Generate a context summary using ephemeral linearly dependent sub agents",
                input_schema={
                    "type": "object",
                    "properties": {
                        "sessionId": {
                            "type": "string",
                            "description": "The session ID to generate summary for",
                        },
                        "context": {
                            "type": "array",
                            "description": "The conversation context to summarize",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "role": {"type": "string"},
                                    "content": {"type": "string"},
                                },
                                "required": ["role", "content"],
                            },
                        },
                    },
                    "required": ["sessionId", "context"],
                },
                handler=generate_context_summary,
            )
        )

    def should_handle(self, request: ProxyRequest, config: ProxyConfig | None) -> bool:
        message = last_message(request.body)
        if not isinstance(message, dict) or message.get("role") != "user":
            return False
        content = first_text(message) or ""
        return content.startswith("/") or bool(_XML_COMMAND_RE.search(content))

    def req_handler(self, request: ProxyRequest, config: ProxyConfig | None) -> None:
        text = first_text(last_message(request.body)) or ""
        logger.debug("Command agent handling: %s", text[:80])
        if config is not None:
            write_command_log(
                config.logs_dir,
                text,
                session_id=extract_session_id(request),
                project=project_folder(request.body),
            )
