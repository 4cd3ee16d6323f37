"""Context enrichment: token count, session id, last usage, request facts."""

from __future__ import annotations

from ..routing.types import ProxyRequest, RouteContext
from ..session_cache import SessionUsageCache
from ..tokens import TiktokenCounter, TokenCounter, count_request_tokens
from .base import PreProcessor, ProcessResult

SESSION_HEADERS = ("x-session-id", "x-claude-session-id")


def extract_session_id(request: ProxyRequest) -> str | None:
    """Session id from headers, else from ``metadata.user_id`` (``..._session_<id>``)."""
    for header in SESSION_HEADERS:
        value = request.headers.get(header)
        if value:
            return value

    metadata = request.body.get("metadata")
    if isinstance(metadata, dict):
        user_id = metadata.get("user_id")
        if isinstance(user_id, str) and "_session_" in user_id:
            return user_id.split("_session_", 1)[1] or None
    return None


class ContextEnricher(PreProcessor):
    """Sets ``token_count``, ``session_id`` and ``last_usage`` on the context.

    Always runs and always reports ``modified=True``.
    """

    name = "context-enricher"
    priority = 900
    description = "Enriches context with token counts, session info, and usage data"

    def __init__(
        self,
        session_cache: SessionUsageCache | None = None,
        token_counter: TokenCounter | None = None,
        priority: int | None = None,
        enabled: bool = True,
    ):
        super().__init__(priority=priority, enabled=enabled)
        self.session_cache = session_cache
        self.token_counter = token_counter or TiktokenCounter()

    async def process(self, request: ProxyRequest, context: RouteContext) -> ProcessResult:
        body = request.body
        metadata: dict = {}

        token_count = count_request_tokens(body, self.token_counter)
        context.token_count = token_count
        metadata["tokenCount"] = token_count

        session_id = extract_session_id(request)
        if session_id:
            context.session_id = session_id
            metadata["sessionId"] = session_id
            if self.session_cache is not None:
                last_usage = self.session_cache.get(session_id)
                if last_usage is not None:
                    context.last_usage = last_usage
                    metadata["lastUsage"] = last_usage.to_dict()

        if body.get("model"):
            metadata["requestedModel"] = body["model"]

        tools = body.get("tools")
        if isinstance(tools, list) and tools:
            metadata["hasTools"] = True
            metadata["toolCount"] = len(tools)
            metadata["toolTypes"] = [
                (t.get("type") or t.get("name")) if isinstance(t, dict) else None for t in tools
            ]

        if body.get("thinking") or body.get("reasoning") or body.get("reasoning_effort"):
            metadata["hasThinking"] = True
            if body.get("thinking"):
                metadata["thinking"] = body["thinking"]
            if body.get("reasoning"):
                metadata["reasoning"] = body["reasoning"]
            if body.get("reasoning_effort"):
                metadata["reasoningEffort"] = body["reasoning_effort"]

        messages = body.get("messages")
        if isinstance(messages, list):
            metadata["messageCount"] = len(messages)

        return ProcessResult(modified=True, metadata=metadata)
