"""Tests for the built-in route transformations."""

from detour.compact import COMPACT_MAX_TOKENS
from detour.routing.transformations import (
    CleanupTransformation,
    CompactTransformation,
    MessageTransformation,
    ModelOverrideTransformation,
    ParamsTransformation,
    SystemPromptTransformation,
    ThinkingTransformation,
)


class TestMessageTransformation:
    def test_replace_last_message(self, make_request, context):
        request = make_request("original")

        MessageTransformation({"content": "new"}).apply(request, context)

        assert request.body["messages"][-1]["content"] == "new"

    def test_append_and_prepend_string_content(self, make_request, context):
        request = make_request("middle")

        MessageTransformation({"operation": "append", "content": "end"}).apply(request, context)
        MessageTransformation({"operation": "prepend", "content": "start"}).apply(
            request, context
        )

        assert request.body["messages"][-1]["content"] == "start\n\nmiddle\n\nend"

    def test_append_to_block_content(self, make_request, context):
        request = make_request([{"type": "text", "text": "a"}])

        MessageTransformation({"operation": "append", "content": "b"}).apply(request, context)

        assert request.body["messages"][-1]["content"] == [
            {"type": "text", "text": "a"},
            {"type": "text", "text": "b"},
        ]

    def test_target_index(self, make_request, context):
        request = make_request("last", history=[{"role": "user", "content": "first"}])

        MessageTransformation({"content": "changed", "targetIndex": 0}).apply(request, context)

        assert request.body["messages"][0]["content"] == "changed"
        assert request.body["messages"][1]["content"] == "last"

    def test_out_of_range_index_is_ignored(self, make_request, context):
        request = make_request("only")

        MessageTransformation({"content": "x", "targetIndex": 5}).apply(request, context)

        assert request.body["messages"][-1]["content"] == "only"


class TestSystemPromptTransformation:
    def test_add_converts_string_system(self, make_request, context):
        request = make_request(system="base")

        SystemPromptTransformation(
            {"text": "extra", "cacheControl": {"type": "ephemeral"}}
        ).apply(request, context)

        assert request.body["system"] == [
            {"type": "text", "text": "base"},
            {"type": "text", "text": "extra", "cache_control": {"type": "ephemeral"}},
        ]

    def test_prepend_and_replace(self, make_request, context):
        request = make_request(system=[{"type": "text", "text": "base"}])

        SystemPromptTransformation({"operation": "prepend", "text": "first"}).apply(
            request, context
        )
        assert request.body["system"][0]["text"] == "first"

        SystemPromptTransformation({"operation": "replace", "text": "only"}).apply(
            request, context
        )
        assert request.body["system"] == [{"type": "text", "text": "only"}]

    def test_missing_system_becomes_list(self, make_request, context):
        request = make_request()

        SystemPromptTransformation({"text": "hi"}).apply(request, context)

        assert request.body["system"] == [{"type": "text", "text": "hi"}]


class TestCompactTransformation:
    def test_defaults(self, make_request, context):
        request = make_request(
            "<command-name>/compact</command-name><command-args>keep tests</command-args>"
        )

        CompactTransformation().apply(request, context)

        body = request.body
        assert body["max_tokens"] == COMPACT_MAX_TOKENS
        assert body["messages"][-1]["content"].endswith("keep tests")
        assert "SEQUENTIAL" in body["messages"][-1]["content"]
        assert body["system"][-1]["cache_control"] == {"type": "ephemeral"}

    def test_custom_template_without_system_prompt(self, make_request, context):
        request = make_request("/compact")

        CompactTransformation(
            {"instructionTemplate": "Summarize.", "maxTokens": 4096, "addSystemPrompt": False}
        ).apply(request, context)

        assert request.body["messages"][-1] == {"role": "user", "content": "Summarize."}
        assert request.body["max_tokens"] == 4096
        assert "system" not in request.body


class TestSimpleTransformations:
    def test_params_shallow_merge(self, make_request, context):
        request = make_request(temperature=1.0)

        ParamsTransformation({"temperature": 0.2, "top_p": 0.9}).apply(request, context)

        assert request.body["temperature"] == 0.2
        assert request.body["top_p"] == 0.9
        assert request.body["max_tokens"] == 1024

    def test_thinking_defaults(self, make_request, context):
        request = make_request()

        ThinkingTransformation().apply(request, context)

        assert request.body["reasoning"] is True
        assert request.body["reasoning_effort"] == "high"
        assert request.body["verbosity"] == 2

    def test_thinking_without_reasoning_flag(self, make_request, context):
        request = make_request()

        ThinkingTransformation({"reasoning": False, "reasoning_effort": "low"}).apply(
            request, context
        )

        assert "reasoning" not in request.body
        assert request.body["reasoning_effort"] == "low"

    def test_cleanup_fields_and_system_cache_control(self, make_request, context):
        request = make_request(
            temperature=1.0,
            system=[{"type": "text", "text": "s", "cache_control": {"type": "ephemeral"}}],
        )

        CleanupTransformation({"fields": ["temperature", "cache_control"]}).apply(
            request, context
        )

        assert "temperature" not in request.body
        assert request.body["system"] == [{"type": "text", "text": "s"}]

    def test_model_override(self, make_request, context):
        request = make_request()

        ModelOverrideTransformation({"model": "gpt-5"}).apply(request, context)

        assert request.body["model"] == "gpt-5"

    def test_declared_order_decides_conflicts(self, make_request, context):
        request = make_request()

        for transformation in (
            ModelOverrideTransformation({"model": "first"}),
            ModelOverrideTransformation({"model": "second"}),
        ):
            transformation.apply(request, context)

        assert request.body["model"] == "second"
