"""Handler for the /compact command."""

from __future__ import annotations

from ..compact import DEFAULT_COMPACT_INSTRUCTION, apply_compact, build_instruction
from ..config import RouterConfig
from ..routing.types import ProxyRequest, RouteContext
from .audit import write_audit_record
from .base import PreProcessor, ProcessResult

COMPACT_COMMAND = "/compact"


class CompactCommandProcessor(PreProcessor):
    """Rewrites a /compact request into an exhaustive summarization request.

    The last message becomes the summarization instruction (plus any
    command arguments), a summarizer system block is appended, the output
    ceiling is raised, and the destination is overridden to
    ``router.compact``.
    """

    name = "compact-command"
    priority = 800
    description = "Handles /compact command for conversation summarization"

    def __init__(
        self,
        router: RouterConfig,
        logs_dir: str | None = None,
        instruction: str = DEFAULT_COMPACT_INSTRUCTION,
        priority: int | None = None,
        enabled: bool = True,
    ):
        super().__init__(priority=priority, enabled=enabled)
        self.router = router
        self.logs_dir = logs_dir
        self.instruction = instruction

    async def should_process(self, request: ProxyRequest, context: RouteContext) -> bool:
        return context.has_command(COMPACT_COMMAND)

    async def process(self, request: ProxyRequest, context: RouteContext) -> ProcessResult:
        destination = self.router.compact
        if not destination:
            return ProcessResult(
                modified=False, message="No compact route configured in Router.compact"
            )

        body = request.body
        args = (context.metadata.get("commandArgs") or {}).get(COMPACT_COMMAND, "")
        instruction = build_instruction(self.instruction, args, prefix="Additional instructions: ")
        apply_compact(body, instruction)

        original_model = body.get("model")
        body["model"] = destination

        write_audit_record(
            self.logs_dir,
            "ROUTED",
            reason="/compact command detected",
            routed_to=destination,
            original_model=original_model,
            session_id=context.session_id,
        )

        return ProcessResult(
            modified=True,
            provider_model_override=destination,
            message=f"/compact command processed, routed to {destination}",
            metadata={
                "compactCommand": True,
                "originalModel": original_model,
                "routedTo": destination,
            },
        )
