"""Handler for think/ultrathink keywords."""

from __future__ import annotations

from ..config import RouterConfig
from ..messages import first_text
from ..routing.types import ProxyRequest, RouteContext
from .audit import write_audit_record
from .base import PreProcessor, ProcessResult

DEFAULT_KEYWORDS = ["think", "ultrathink", "reasoning", "reason"]


class ThinkCommandProcessor(PreProcessor):
    """Routes requests mentioning a thinking keyword to ``router.ultrathink``.

    Only the destination changes; message content is left alone.
    """

    name = "think-command"
    priority = 750
    description = "Handles think/ultrathink command for routing to thinking models"

    def __init__(
        self,
        router: RouterConfig,
        logs_dir: str | None = None,
        keywords: list[str] | None = None,
        priority: int | None = None,
        enabled: bool = True,
    ):
        super().__init__(priority=priority, enabled=enabled)
        self.router = router
        self.logs_dir = logs_dir
        self.keywords = [k.lower() for k in (keywords or DEFAULT_KEYWORDS)]

    async def should_process(self, request: ProxyRequest, context: RouteContext) -> bool:
        messages = request.body.get("messages")
        if not isinstance(messages, list):
            return False
        for message in messages:
            content = (first_text(message) or "").lower()
            if any(keyword in content for keyword in self.keywords):
                return True
        return False

    async def process(self, request: ProxyRequest, context: RouteContext) -> ProcessResult:
        destination = self.router.ultrathink
        if not destination:
            return ProcessResult(
                modified=False, message="No ultrathink route configured in Router.ultrathink"
            )

        original_model = request.body.get("model")
        request.body["model"] = destination

        write_audit_record(
            self.logs_dir,
            "THINK-ROUTED",
            reason="/think command detected",
            routed_to=destination,
            original_model=original_model,
            session_id=context.session_id,
        )

        return ProcessResult(
            modified=True,
            provider_model_override=destination,
            message=f"/think command processed, routed to {destination}",
            metadata={
                "thinkCommand": True,
                "originalModel": original_model,
                "routedTo": destination,
            },
        )
