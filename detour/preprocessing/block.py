"""Blocking of configured slash commands.

A blocked request never reaches a provider. The caller receives a
synthetic but complete assistant message instead, so client code needs
no special handling.
"""

from __future__ import annotations

import re
import time
from pathlib import PurePosixPath
from typing import Any

from ..messages import last_message_text
from ..routing.types import ProxyRequest, RouteContext
from .audit import write_command_log
from .base import PreProcessor, ProcessResult
from .context_enricher import extract_session_id

BLOCKED_MODEL = "detour-interceptor"

_XML_NAME_RE = re.compile(r"<command-name>(/[^<]+)</command-name>")
_XML_ARGS_RE = re.compile(r"<command-args>([^<]*)</command-args>")


def build_blocked_response(text: str) -> dict[str, Any]:
    """A complete non-streamed Anthropic message explaining the interception."""
    return {
        "id": f"msg_blocked_{int(time.time() * 1000)}",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "model": BLOCKED_MODEL,
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 0, "output_tokens": 0},
    }


def project_folder(body: dict[str, Any]) -> str | None:
    """Best-effort project name from request metadata or a path in the last message."""
    metadata = body.get("metadata")
    if isinstance(metadata, dict):
        project_dir = metadata.get("project_dir")
        if not project_dir and isinstance(metadata.get("workspace"), dict):
            project_dir = metadata["workspace"].get("project_dir")
        if isinstance(project_dir, str) and project_dir:
            return PurePosixPath(project_dir).name or None

    for line in (last_message_text(body) or "").splitlines():
        line = line.strip()
        if line.startswith("/"):
            for part in line.split("/"):
                if part and " " not in part:
                    return part
    return None


class BlockCommandProcessor(PreProcessor):
    """Blocks requests whose last message invokes one of ``commands``.

    Only explicit invocations count: an XML ``<command-name>`` element or a
    slash command at the very start of the message.
    """

    name = "command-blocker"
    priority = 950
    description = "Intercepts configured slash commands and answers them locally"

    def __init__(
        self,
        commands: list[str],
        logs_dir: str | None = None,
        priority: int | None = None,
        enabled: bool = True,
    ):
        super().__init__(priority=priority, enabled=enabled)
        self.commands = [c.lower() for c in commands]
        self.logs_dir = logs_dir

    def _invoked(self, text: str) -> tuple[str, str] | None:
        match = _XML_NAME_RE.search(text)
        if match and match.group(1).strip().lower() in self.commands:
            args = _XML_ARGS_RE.search(text)
            return match.group(1).strip(), args.group(1) if args else ""

        stripped = text.strip()
        if stripped.startswith("/"):
            head, _, rest = stripped.partition(" ")
            if head.lower() in self.commands:
                return head, rest.strip()
        return None

    async def should_process(self, request: ProxyRequest, context: RouteContext) -> bool:
        text = last_message_text(request.body)
        return bool(self.commands and text and self._invoked(text))

    async def process(self, request: ProxyRequest, context: RouteContext) -> ProcessResult:
        text = last_message_text(request.body) or ""
        command, args = self._invoked(text) or ("", "")

        write_command_log(
            self.logs_dir,
            text,
            session_id=context.session_id or extract_session_id(request),
            project=project_folder(request.body),
        )

        message = f"{command} command has been intercepted and blocked by Detour."
        if args:
            message += f"\n\nOriginal command args: {args}"
        message += (
            "\n\nThis command was prevented from reaching any LLM provider "
            "and will not consume any API tokens."
        )
        return ProcessResult(
            modified=False,
            block=True,
            block_response=build_blocked_response(message),
            message=f"{command} blocked",
            metadata={"blockedCommand": command},
        )
