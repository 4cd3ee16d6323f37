"""Agent tool-call interception for streamed responses.

When the model calls a tool owned by an active agent, the tool's events are
held back from the client, the tool runs in-process, and its result is
appended to the conversation. At the ``message_delta`` that ends the
segment the completed conversation is sent back to the proxy and the
continuation stream is relayed to the client in place of the suppressed
events.

Continuations are fed through the same interceptor, so a continuation that
calls another agent tool starts a further round. Rounds are capped by
``max_rounds``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
import json5

from ..agents.base import Agent, ToolContext, find_tool_owner
from ..config import ProxyConfig
from ..exceptions import StreamAbortedError, ToolLoopLimitError
from ..routing.types import ProxyRequest
from .sse import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    ErrorEvent,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamEvent,
    UnknownEvent,
    encode_event,
    iter_events,
)

logger = logging.getLogger(__name__)

CONTINUATION_HEADER = "x-detour-continuation"

# Errors that mean one side of the stream went away. They end the stream
# quietly and trip the shared abort signal; anything else propagates.
BENIGN_STREAM_ERRORS: tuple[type[BaseException], ...] = (
    StreamAbortedError,
    httpx.StreamClosed,
    httpx.RemoteProtocolError,
    httpx.ReadError,
)

Continuation = Callable[[dict[str, Any]], AsyncIterator[bytes]]


class StreamState(str, Enum):
    IDLE = "idle"
    COLLECTING_TOOL_ARGS = "collecting_tool_args"


@dataclass
class PendingToolCall:
    index: int
    tool_id: str
    name: str
    agent: Agent
    fragments: list[str] = field(default_factory=list)

    @property
    def raw_arguments(self) -> str:
        return "".join(self.fragments)


@dataclass
class RewriterStats:
    tool_calls: int = 0
    tool_failures: int = 0
    rounds: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "tool_calls": self.tool_calls,
            "tool_failures": self.tool_failures,
            "rounds": self.rounds,
        }


def http_continuation(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str] | None = None,
) -> Continuation:
    """Continuation that POSTs the conversation back to the proxy.

    ``headers`` typically carries the caller's credentials. A non-OK
    response yields nothing.
    """

    async def continuation(body: dict[str, Any]) -> AsyncIterator[bytes]:
        request_headers = {**(headers or {}), "content-type": "application/json"}
        request_headers[CONTINUATION_HEADER] = "1"
        async with client.stream("POST", url, json=body, headers=request_headers) as response:
            if not response.is_success:
                await response.aread()
                logger.warning(
                    "Continuation request failed with status %d", response.status_code
                )
                return
            async for chunk in response.aiter_bytes():
                yield chunk

    return continuation


class StreamRewriter:
    """Rewrites one streamed response for a request with active agents.

    One tool call is tracked at a time. Events are handled strictly in
    arrival order, and a continuation is only issued after the segment up
    to its ``message_delta`` has been consumed.

    Args:
        agents: Agents active for this request.
        request: The request being answered. Its body is extended with the
            tool exchange before each continuation.
        continuation: Callable producing the byte stream for a follow-up body.
        config: Passed through to tool handlers.
        max_rounds: Maximum number of continuations per response.
        abort: Shared cancellation signal. Created if not given.
        is_disconnected: Optional async check for client disconnection.
    """

    def __init__(
        self,
        agents: list[Agent],
        request: ProxyRequest,
        continuation: Continuation,
        config: ProxyConfig | None = None,
        max_rounds: int = 10,
        abort: asyncio.Event | None = None,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ):
        self.agents = agents
        self.request = request
        self.continuation = continuation
        self.config = config
        self.max_rounds = max_rounds
        self.abort = abort if abort is not None else asyncio.Event()
        self.is_disconnected = is_disconnected

        self.state = StreamState.IDLE
        self.stats = RewriterStats()
        self._pending: PendingToolCall | None = None
        self._tool_uses: list[dict[str, Any]] = []
        self._tool_results: list[dict[str, Any]] = []
        self._next_index = 0

    @property
    def tool_results(self) -> list[dict[str, Any]]:
        """Tool results queued for the next continuation."""
        return list(self._tool_results)

    async def rewrite(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Rewrite an upstream byte stream into the client byte stream."""
        try:
            async for event in self.events(chunks):
                yield encode_event(event)
        except ToolLoopLimitError as e:
            logger.error("%s", e, extra={"event": "tool.loop_limit"})
            # The held-back message_delta is never sent; the error event terminates the stream
            yield encode_event(
                ErrorEvent(
                    data={"type": "error", "error": {"type": "api_error", "message": e.message}}
                )
            )
        except BENIGN_STREAM_ERRORS as e:
            self.abort.set()
            logger.info("Stream closed early: %s", e)

    async def events(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
        """Typed form of ``rewrite``. Loop-limit and stream errors propagate."""
        async for event in self._process(chunks):
            yield event

    async def _check_abort(self) -> None:
        if not self.abort.is_set() and self.is_disconnected is not None:
            if await self.is_disconnected():
                self.abort.set()
        if self.abort.is_set():
            raise StreamAbortedError("Stream aborted")

    async def _process(
        self, chunks: AsyncIterator[bytes], offset: int | None = None
    ) -> AsyncIterator[StreamEvent]:
        async with aclosing(iter_events(chunks)) as events:
            async for event in events:
                await self._check_abort()

                if offset is not None:
                    if isinstance(event, (MessageStart, MessageStop)):
                        continue
                    self._shift_index(event, offset)

                if isinstance(event, MessageDelta) and self._tool_results:
                    async for follow_up in self._continue():
                        yield follow_up
                    continue

                if await self._intercept(event):
                    continue

                self._track_index(event)
                yield event

    def _shift_index(self, event: StreamEvent, offset: int) -> None:
        # Continuation blocks are numbered from zero; keep client indices unique
        if isinstance(event, (ContentBlockStart, ContentBlockDelta, ContentBlockStop)):
            event.data["index"] = event.index + offset

    def _track_index(self, event: StreamEvent) -> None:
        if isinstance(event, ContentBlockStart):
            self._next_index = max(self._next_index, event.index + 1)

    async def _intercept(self, event: StreamEvent) -> bool:
        """Advance the tool-call state machine. True means suppress the event."""
        if isinstance(event, UnknownEvent):
            return False

        if isinstance(event, ContentBlockStart) and self.state is StreamState.IDLE:
            block = event.content_block
            name = block.get("name")
            if not name:
                return False
            agent = find_tool_owner(self.agents, name)
            if agent is None:
                return False
            self._pending = PendingToolCall(
                index=event.index, tool_id=block.get("id", ""), name=name, agent=agent
            )
            self.state = StreamState.COLLECTING_TOOL_ARGS
            return True

        pending = self._pending
        if self.state is not StreamState.COLLECTING_TOOL_ARGS or pending is None:
            return False

        if isinstance(event, ContentBlockDelta) and event.index == pending.index:
            fragment = event.partial_json
            if fragment is None:
                return False
            pending.fragments.append(fragment)
            return True

        if isinstance(event, ContentBlockStop) and event.index == pending.index:
            self._pending = None
            self.state = StreamState.IDLE
            await self._invoke(pending)
            return True

        return False

    async def _invoke(self, call: PendingToolCall) -> None:
        self.stats.tool_calls += 1
        raw = call.raw_arguments
        try:
            args = json5.loads(raw) if raw.strip() else {}
        except ValueError as e:
            self.stats.tool_failures += 1
            logger.warning(
                "Dropping call to %s: malformed arguments: %s",
                call.name,
                e,
                extra={"event": "tool.failed", "tool": call.name},
            )
            return
        if not isinstance(args, dict):
            self.stats.tool_failures += 1
            logger.warning(
                "Dropping call to %s: arguments are not an object",
                call.name,
                extra={"event": "tool.failed", "tool": call.name},
            )
            return

        tool = call.agent.tools[call.name]
        context = ToolContext(request=self.request, config=self.config)
        try:
            output = await tool.handler(args, context)
            content = output if isinstance(output, str) else json.dumps(output)
        except Exception as e:
            self.stats.tool_failures += 1
            logger.error(
                "Tool %s failed: %s",
                call.name,
                e,
                exc_info=True,
                extra={"event": "tool.failed", "tool": call.name},
            )
            return

        self._tool_uses.append(
            {"type": "tool_use", "id": call.tool_id, "name": call.name, "input": args}
        )
        self._tool_results.append(
            {
                "type": "tool_result",
                "tool_use_id": call.tool_id,
                "content": content,
            }
        )
        logger.info(
            "Agent %s ran tool %s",
            call.agent.name,
            call.name,
            extra={"event": "tool.invoked", "agent": call.agent.name, "tool": call.name},
        )

    async def _continue(self) -> AsyncIterator[StreamEvent]:
        if self.stats.rounds >= self.max_rounds:
            raise ToolLoopLimitError(
                f"Tool loop exceeded {self.max_rounds} rounds",
                details={"max_rounds": self.max_rounds},
            )
        self.stats.rounds += 1

        messages = self.request.body.setdefault("messages", [])
        messages.append({"role": "assistant", "content": self._tool_uses})
        messages.append({"role": "user", "content": self._tool_results})
        self._tool_uses = []
        self._tool_results = []

        logger.debug("Starting continuation round %d", self.stats.rounds)
        async with aclosing(self.continuation(self.request.body)) as chunks:
            async for event in self._process(chunks, offset=self._next_index):
                yield event
