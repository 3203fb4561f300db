import json

import httpx

from lume.providers import catalog
from lume.providers.anthropic import AnthropicProvider, to_anthropic_messages
from lume.providers.base import (
    Finish,
    ModelMessage,
    ProviderRequest,
    ReasoningBlock,
    ReasoningDelta,
    TextBlock,
    TextDelta,
    ToolCall,
    ToolCallBlock,
    ToolInputDelta,
    ToolInputStart,
    ToolResultBlock,
    ToolSpec,
    Usage,
    complete,
    friendly_error,
)
from lume.providers.gemini import GeminiProvider, to_gemini_schema
from lume.providers.openai import OpenAIProvider


def sse_response(*events):
    body = "".join(f"data: {json.dumps(e) if not isinstance(e, str) else e}\n\n" for e in events)
    return httpx.Response(200, content=body.encode())


async def collect(iterator):
    return [event async for event in iterator]


def request(model="claude-3-7-sonnet-20250219", **kwargs):
    messages = kwargs.pop("messages", [ModelMessage("user", [TextBlock("Hi")])])
    return ProviderRequest(model=model, messages=messages, **kwargs)


def test_catalog_pricing_and_lookup():
    model = catalog.get_model("gpt-4o-mini")
    assert model.provider == "openai"
    assert catalog.get_model("unknown") is None
    assert catalog.calculate_cost("gpt-4o-mini", 1000, 1000) > 0
    assert catalog.calculate_cost("unknown", 1000, 1000) == 0


def test_anthropic_payload_with_thinking_drops_temperature():
    payload = AnthropicProvider().build_payload(request(system="Be nice", thinking_budget=2048, max_output_tokens=1000))
    assert payload["thinking"] == {"type": "enabled", "budget_tokens": 2048}
    assert payload["max_tokens"] == 2048 + 1024
    assert "temperature" not in payload
    assert payload["system"] == "Be nice"

    plain = AnthropicProvider().build_payload(request(temperature=0.3))
    assert plain["temperature"] == 0.3
    assert "thinking" not in plain


def test_anthropic_messages_replay_signed_thinking_and_merge_tool_results():
    messages, system = to_anthropic_messages([
        ModelMessage("system", [TextBlock("sys")]),
        ModelMessage("user", [TextBlock("go")]),
        ModelMessage("assistant", [
            ReasoningBlock("unsigned"),
            ReasoningBlock("signed", "sig"),
            ToolCallBlock("t1", "webSearch", {"query": "q"}),
        ]),
        ModelMessage("tool", [ToolResultBlock("t1", "webSearch", {"results": []})]),
        ModelMessage("user", [TextBlock("and?")]),
    ])
    assert system == ["sys"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[1]["content"][0] == {"type": "thinking", "thinking": "signed", "signature": "sig"}
    assert [c["type"] for c in messages[2]["content"]] == ["tool_result", "text"]


async def test_anthropic_parse_text_thinking_and_tool_use():
    resp = sse_response(
        {"type": "message_start", "message": {"usage": {"input_tokens": 12, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "Looking"}},
        {"type": "content_block_start", "index": 2, "content_block": {"type": "tool_use", "id": "tu1", "name": "webSearch"}},
        {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": '{"query":'}},
        {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": ' "cats"}'}},
        {"type": "content_block_stop", "index": 2},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 30}},
        {"type": "message_stop"},
    )

    events = await collect(AnthropicProvider()._parse(resp))

    assert events == [
        ReasoningDelta("hmm"),
        ReasoningDelta("", signature="sig"),
        TextDelta("Looking"),
        ToolInputStart("tu1", "webSearch"),
        ToolInputDelta("tu1", '{"query":'),
        ToolInputDelta("tu1", ' "cats"}'),
        ToolCall("tu1", "webSearch", {"query": "cats"}),
        Usage(12, 30),
        Finish("tool-calls"),
    ]


async def test_anthropic_parse_error_event():
    resp = sse_response({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
    events = await collect(AnthropicProvider()._parse(resp))
    assert events[-1] == Finish("error")
    assert events[0].message == "[Anthropic] Overloaded"


def test_openai_payload_for_reasoning_models():
    payload = OpenAIProvider().build_payload(request(model="o1", system="Rules", temperature=0.5))
    assert payload["messages"][0] == {"role": "developer", "content": "Rules"}
    assert "temperature" not in payload

    tools = [ToolSpec("webSearch", "Search", {"type": "object", "properties": {"query": {"type": "string"}}})]
    payload = OpenAIProvider().build_payload(request(model="gpt-4o", system="Rules", tools=tools))
    assert payload["messages"][0]["role"] == "system"
    assert payload["temperature"] == 0.7
    assert payload["tools"][0]["function"]["name"] == "webSearch"


async def test_openai_parse_tool_call_chunks():
    resp = sse_response(
        {"choices": [{"delta": {"content": "Let me check"}}]},
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "call_1", "function": {"name": "webSearch", "arguments": '{"que'}},
        ]}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": 'ry": "x"}'}}]},
                      "finish_reason": "tool_calls"}]},
        {"choices": [], "usage": {"prompt_tokens": 7, "completion_tokens": 9}},
        "[DONE]",
    )

    events = await collect(OpenAIProvider()._parse(resp))

    assert events == [
        TextDelta("Let me check"),
        ToolInputStart("call_1", "webSearch"),
        ToolInputDelta("call_1", '{"que'),
        ToolInputDelta("call_1", 'ry": "x"}'),
        ToolCall("call_1", "webSearch", {"query": "x"}),
        Usage(7, 9),
        Finish("tool-calls"),
    ]


def test_gemini_schema_is_sanitized():
    schema = {
        "type": "object",
        "title": "Input",
        "additionalProperties": False,
        "properties": {
            "query": {"type": "string", "title": "Query", "minLength": 1},
            "limit": {"anyOf": [{"type": "integer", "maximum": 10}, {"type": "null"}], "default": None},
            "kind": {"const": "news"},
            "tags": {"type": "array", "items": {"type": "string", "examples": ["a"]}},
        },
        "required": ["query"],
    }

    out = to_gemini_schema(schema)

    assert out == {
        "type": "object",
        "properties": {
            "query": {"type": "string"},
            "limit": {"type": "integer", "maximum": 10, "nullable": True},
            "kind": {"type": "string", "enum": ["news"]},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["query"],
    }
    assert to_gemini_schema({"type": "object", "properties": {}}) == {}


def test_gemini_events_from_function_call_and_usage():
    events = GeminiProvider()._events({
        "candidates": [{"content": {"parts": [
            {"text": "pondering", "thought": True},
            {"text": "Sure"},
            {"functionCall": {"name": "webSearch", "args": {"query": "q"}}},
        ]}, "finishReason": "STOP"}],
        "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 6},
    })

    assert events[0] == ReasoningDelta("pondering")
    assert events[1] == TextDelta("Sure")
    call = events[4]
    assert isinstance(call, ToolCall) and call.input == {"query": "q"}
    assert events[2].id == call.id
    assert events[-2:] == [Usage(4, 6), Finish("tool-calls")]


def test_gemini_blocked_prompt():
    events = GeminiProvider()._events({"promptFeedback": {"blockReason": "SAFETY"}})
    assert events[0].message == "[Gemini] Prompt blocked: SAFETY"
    assert events[1] == Finish("error")


async def test_mock_stream_without_key():
    result = await complete(OpenAIProvider(), request(model="gpt-4o"))
    assert result.text == "[openai-mock] You said: 'Hi'"
    assert result.error is None


def test_friendly_error_messages():
    req = httpx.Request("POST", "https://api.example.com")
    too_many = httpx.HTTPStatusError("x", request=req, response=httpx.Response(429, request=req))
    assert "rate limit" in friendly_error("OpenAI", too_many, 3)
    denied = httpx.HTTPStatusError("x", request=req, response=httpx.Response(401, request=req))
    assert friendly_error("Anthropic", denied, 1).startswith("[Anthropic] Authentication")
