"""Tests for agent tool interception in streamed responses."""

import asyncio
import json

import httpx
import pytest

from detour.agents import Agent, Tool
from detour.exceptions import ToolLoopLimitError
from detour.routing.types import ProxyRequest
from detour.streaming import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    ErrorEvent,
    MessageDelta,
    MessageStart,
    MessageStop,
    SSEDecoder,
    StreamRewriter,
    StreamState,
    parse_event,
)


class LookupAgent(Agent):
    """Agent owning a single ``lookup`` tool."""

    name = "lookup"

    def __init__(self, handler):
        super().__init__()
        self.add_tool(
            Tool(
                name="lookup",
                description="Look something up",
                input_schema={"type": "object"},
                handler=handler,
            )
        )

    def should_handle(self, request, config):
        return True


class Recorder:
    """Tool handler that remembers its calls."""

    def __init__(self, result="found it", error=None):
        self.calls = []
        self.result = result
        self.error = error

    async def __call__(self, args, context):
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def text_block(sse):
    def _block(index, text):
        return [
            sse("content_block_start", index=index, content_block={"type": "text", "text": ""}),
            sse("content_block_delta", index=index, delta={"type": "text_delta", "text": text}),
            sse("content_block_stop", index=index),
        ]

    return _block


@pytest.fixture
def tool_block(sse):
    def _block(index, name, fragments, tool_id="toolu_1"):
        events = [
            sse(
                "content_block_start",
                index=index,
                content_block={"type": "tool_use", "id": tool_id, "name": name, "input": {}},
            )
        ]
        for fragment in fragments:
            events.append(
                sse(
                    "content_block_delta",
                    index=index,
                    delta={"type": "input_json_delta", "partial_json": fragment},
                )
            )
        events.append(sse("content_block_stop", index=index))
        return events

    return _block


@pytest.fixture
def message(sse):
    """Wrap content block events in message_start ... message_stop."""

    def _message(blocks, stop_reason="end_turn"):
        events = [sse("message_start", message={"id": "msg_1", "usage": {"input_tokens": 10}})]
        events.extend(blocks)
        events.append(
            sse("message_delta", delta={"stop_reason": stop_reason}, usage={"output_tokens": 5})
        )
        events.append(sse("message_stop"))
        return events

    return _message


@pytest.fixture
def tool_request():
    return ProxyRequest(body={"model": "m", "messages": [{"role": "user", "content": "go"}]})


def decode(data):
    decoder = SSEDecoder()
    return [parse_event(m) for m in decoder.feed(data) + decoder.flush()]


async def collect(rewriter, chunks):
    return b"".join([chunk async for chunk in rewriter.rewrite(chunks)])


def never_called():
    async def continuation(body):
        raise AssertionError("continuation should not run")
        yield b""  # pragma: no cover

    return continuation


class TestToolInterception:
    @pytest.mark.asyncio
    async def test_tool_call_runs_and_continues(
        self, aiter_chunks, message, text_block, tool_block, tool_request
    ):
        handler = Recorder(result={"answer": 42})
        bodies = []

        async def continuation(body):
            bodies.append(json.loads(json.dumps(body)))
            for chunk in message(text_block(0, "the answer is 42")):
                yield chunk

        upstream = message(
            text_block(0, "let me check") + tool_block(1, "lookup", ['{"a":1', "}"]),
            stop_reason="tool_use",
        )
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, continuation)

        events = decode(await collect(rewriter, aiter_chunks(upstream)))

        assert handler.calls == [{"a": 1}]
        assert [type(e) for e in events] == [
            MessageStart,
            ContentBlockStart,
            ContentBlockDelta,
            ContentBlockStop,
            ContentBlockStart,
            ContentBlockDelta,
            ContentBlockStop,
            MessageDelta,
            MessageStop,
        ]
        # The continuation's block follows the text block instead of reusing index 0
        assert [e.index for e in events if isinstance(e, ContentBlockStart)] == [0, 1]
        assert events[5].delta["text"] == "the answer is 42"
        assert events[7].data["delta"]["stop_reason"] == "end_turn"

        messages = bodies[0]["messages"]
        assert messages[1] == {
            "role": "assistant",
            "content": [{"type": "tool_use", "id": "toolu_1", "name": "lookup", "input": {"a": 1}}],
        }
        assert messages[2] == {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": '{"answer": 42}'}
            ],
        }
        assert rewriter.stats.to_dict() == {"tool_calls": 1, "tool_failures": 0, "rounds": 1}

    @pytest.mark.asyncio
    async def test_one_result_queued_before_message_delta(
        self, aiter_chunks, tool_block, sse, tool_request
    ):
        handler = Recorder()
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())
        chunks = [sse("message_start", message={})] + tool_block(0, "lookup", ['{"a":1', "}"])

        events = [e async for e in rewriter.events(aiter_chunks(chunks))]

        assert [type(e) for e in events] == [MessageStart]
        assert handler.calls == [{"a": 1}]
        assert rewriter.tool_results == [
            {"type": "tool_result", "tool_use_id": "toolu_1", "content": "found it"}
        ]
        assert rewriter.state is StreamState.IDLE

    @pytest.mark.asyncio
    async def test_lenient_arguments(self, aiter_chunks, tool_block, tool_request):
        handler = Recorder()
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())

        async for _ in rewriter.events(aiter_chunks(tool_block(0, "lookup", ["{a: 'x',}"]))):
            pass

        assert handler.calls == [{"a": "x"}]

    @pytest.mark.asyncio
    async def test_empty_arguments(self, aiter_chunks, tool_block, tool_request):
        handler = Recorder()
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())

        async for _ in rewriter.events(aiter_chunks(tool_block(0, "lookup", []))):
            pass

        assert handler.calls == [{}]

    @pytest.mark.asyncio
    async def test_unowned_tool_passes_through(
        self, aiter_chunks, message, tool_block, tool_request
    ):
        handler = Recorder()
        upstream = message(tool_block(0, "bash", ['{"cmd":"ls"}']), stop_reason="tool_use")
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())

        output = await collect(rewriter, aiter_chunks(upstream))

        assert handler.calls == []
        events = decode(output)
        assert len(events) == len(upstream)
        assert events[1].content_block["name"] == "bash"
        assert events[2].partial_json == '{"cmd":"ls"}'


class TestToolFailures:
    @pytest.mark.asyncio
    async def test_malformed_arguments_drop_the_call(
        self, aiter_chunks, message, tool_block, tool_request
    ):
        handler = Recorder()
        upstream = message(tool_block(0, "lookup", ["{not json"]), stop_reason="tool_use")
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())

        events = decode(await collect(rewriter, aiter_chunks(upstream)))

        assert handler.calls == []
        assert [type(e) for e in events] == [MessageStart, MessageDelta, MessageStop]
        assert rewriter.stats.tool_failures == 1
        assert len(tool_request.body["messages"]) == 1

    @pytest.mark.asyncio
    async def test_non_object_arguments_drop_the_call(self, aiter_chunks, tool_block, tool_request):
        handler = Recorder()
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())

        async for _ in rewriter.events(aiter_chunks(tool_block(0, "lookup", ["[1, 2]"]))):
            pass

        assert handler.calls == []
        assert rewriter.tool_results == []

    @pytest.mark.asyncio
    async def test_handler_exception_drops_the_call(
        self, aiter_chunks, message, tool_block, tool_request
    ):
        handler = Recorder(error=RuntimeError("backend down"))
        upstream = message(tool_block(0, "lookup", ["{}"]), stop_reason="tool_use")
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())

        events = decode(await collect(rewriter, aiter_chunks(upstream)))

        assert len(handler.calls) == 1
        assert [type(e) for e in events] == [MessageStart, MessageDelta, MessageStop]
        assert rewriter.stats.to_dict() == {"tool_calls": 1, "tool_failures": 1, "rounds": 0}

    @pytest.mark.asyncio
    async def test_unserializable_result_drops_the_call(
        self, aiter_chunks, message, tool_block, tool_request
    ):
        handler = Recorder(result={"ids": {1, 2}})
        upstream = message(tool_block(0, "lookup", ["{}"]), stop_reason="tool_use")
        rewriter = StreamRewriter([LookupAgent(handler)], tool_request, never_called())

        events = decode(await collect(rewriter, aiter_chunks(upstream)))

        assert len(handler.calls) == 1
        assert [type(e) for e in events] == [MessageStart, MessageDelta, MessageStop]
        assert rewriter.stats.tool_failures == 1
        assert rewriter.tool_results == []


class TestTermination:
    @pytest.mark.asyncio
    async def test_loop_limit(self, aiter_chunks, message, tool_block, tool_request):
        handler = Recorder()

        async def continuation(body):
            for chunk in message(tool_block(0, "lookup", ["{}"], tool_id="toolu_again")):
                yield chunk

        upstream = message(tool_block(0, "lookup", ["{}"]), stop_reason="tool_use")
        rewriter = StreamRewriter(
            [LookupAgent(handler)], tool_request, continuation, max_rounds=2
        )

        with pytest.raises(ToolLoopLimitError):
            async for _ in rewriter.events(aiter_chunks(upstream)):
                pass

        assert rewriter.stats.rounds == 2
        assert len(handler.calls) == 3

    @pytest.mark.asyncio
    async def test_loop_limit_ends_byte_stream_with_error_event(
        self, aiter_chunks, message, tool_block, tool_request
    ):
        upstream = message(tool_block(0, "lookup", ["{}"]), stop_reason="tool_use")
        rewriter = StreamRewriter(
            [LookupAgent(Recorder())], tool_request, never_called(), max_rounds=0
        )

        events = decode(await collect(rewriter, aiter_chunks(upstream)))

        assert [type(e) for e in events] == [MessageStart, ErrorEvent]
        assert events[1].data["error"]["type"] == "api_error"
        assert "exceeded 0 rounds" in events[1].data["error"]["message"]

    @pytest.mark.asyncio
    async def test_upstream_read_error_sets_abort(self, sse, tool_request):
        async def broken():
            yield sse("message_start", message={})
            raise httpx.ReadError("connection reset")

        rewriter = StreamRewriter([], tool_request, never_called())

        events = decode(await collect(rewriter, broken()))

        assert [type(e) for e in events] == [MessageStart]
        assert rewriter.abort.is_set()

    @pytest.mark.asyncio
    async def test_preset_abort_yields_nothing(self, aiter_chunks, message, text_block, tool_request):
        abort = asyncio.Event()
        abort.set()
        rewriter = StreamRewriter([], tool_request, never_called(), abort=abort)

        output = await collect(rewriter, aiter_chunks(message(text_block(0, "hi"))))

        assert output == b""

    @pytest.mark.asyncio
    async def test_client_disconnect_aborts(self, aiter_chunks, message, text_block, tool_request):
        async def disconnected():
            return True

        rewriter = StreamRewriter(
            [], tool_request, never_called(), is_disconnected=disconnected
        )

        output = await collect(rewriter, aiter_chunks(message(text_block(0, "hi"))))

        assert output == b""
        assert rewriter.abort.is_set()
