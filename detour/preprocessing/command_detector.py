"""Slash-command detection.

Recognizes three shapes of command in the conversation:

1. XML-wrapped, as sent by the Claude Code client:
   ``<command-name>/compact</command-name><command-args>focus on tests</command-args>``
2. A direct slash command at the start of the last message: ``/compact focus on tests``
3. Plain substring containment anywhere in the first text of any message.

The third shape is deliberately loose and can fire on a command name that
merely appears in quoted text or pasted logs.
"""

from __future__ import annotations

import re

from ..messages import first_text
from ..routing.types import ProxyRequest, RouteContext
from .base import PreProcessor, ProcessResult

DEFAULT_COMMANDS = ["/compact", "/model", "/think", "/ultrathink"]

_XML_COMMAND_RE = re.compile(
    r"<command-name>([^<]+)</command-name>(?:<command-args>([^<]*)</command-args>)?"
)
_DIRECT_COMMAND_RE = re.compile(r"^(/\w+)(?:\s+(.*))?")


class CommandDetector(PreProcessor):
    """Populates ``context.detected_commands`` and ``metadata["commandArgs"]``."""

    name = "command-detector"
    priority = 1000
    description = "Detects slash commands in messages and enriches context"

    def __init__(
        self,
        commands: list[str] | None = None,
        case_sensitive: bool = False,
        priority: int | None = None,
        enabled: bool = True,
    ):
        super().__init__(priority=priority, enabled=enabled)
        self.commands = list(commands or DEFAULT_COMMANDS)
        self.case_sensitive = case_sensitive

    def _norm(self, text: str) -> str:
        return text if self.case_sensitive else text.lower()

    def find_command(self, candidate: str) -> str | None:
        """Return the configured spelling of ``candidate``, if it is a known command."""
        needle = self._norm(candidate.strip())
        for command in self.commands:
            if self._norm(command) == needle:
                return command
        return None

    async def should_process(self, request: ProxyRequest, context: RouteContext) -> bool:
        messages = request.body.get("messages")
        return isinstance(messages, list) and len(messages) > 0

    async def process(self, request: ProxyRequest, context: RouteContext) -> ProcessResult:
        messages = request.body["messages"]
        detected: list[str] = list(context.detected_commands or [])
        command_args: dict[str, str] = dict(context.metadata.get("commandArgs") or {})

        def record(command: str | None, args: str | None) -> None:
            if command is None:
                return
            if command not in detected:
                detected.append(command)
            if args:
                command_args.setdefault(command, args)

        content = first_text(messages[-1])
        if not content:
            return ProcessResult(modified=False)

        xml_match = _XML_COMMAND_RE.search(content)
        if xml_match:
            record(self.find_command(xml_match.group(1)), xml_match.group(2))

        direct_match = _DIRECT_COMMAND_RE.match(content)
        if direct_match:
            record(self.find_command(direct_match.group(1)), direct_match.group(2))

        for message in messages:
            haystack = self._norm(first_text(message) or "")
            if not haystack:
                continue
            for command in self.commands:
                if self._norm(command) in haystack:
                    record(command, None)

        if not detected:
            return ProcessResult(modified=False)

        context.detected_commands = detected
        context.metadata["commandArgs"] = command_args
        return ProcessResult(
            modified=True,
            metadata={"detectedCommands": list(detected), "commandArgs": dict(command_args)},
        )
