"""Tests for model stream providers (no network)."""

import json

import httpx
import pytest
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)

from diagram_chat.config import ModelProvider
from diagram_chat.errors import StreamError
from diagram_chat.models import Message, TextChunk, ToolCallChunk, ToolCallRequest, ToolCallResult, ToolSpec
from diagram_chat.providers import AgentModelStream, GroqModelStream, get_model_stream
from diagram_chat.providers.agent import to_model_messages, to_tool_definitions
from diagram_chat.providers.groq import to_openai_messages, to_openai_tools


CALL = ToolCallRequest(call_id="call_1", name="read_file", arguments={"path": "a.py"})

CONVERSATION = [
    Message.system("be helpful"),
    Message.user("draw the app"),
    Message.assistant("Looking.", [CALL]),
    Message.tool_result(ToolCallResult(call_id="call_1", tool_name="read_file", content="a.py (1 lines)")),
    Message.user("Use the tool results above to continue with my request."),
]

READ_FILE_SPEC = ToolSpec(
    name="read_file",
    description="Read a file.",
    parameters={"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
)


# ============================================================================
# pydantic-ai message conversion
# ============================================================================

class TestToModelMessages:
    def test_grouping(self):
        converted = to_model_messages(CONVERSATION)

        assert [type(m) for m in converted] == [ModelRequest, ModelResponse, ModelRequest]
        assert [type(p) for p in converted[0].parts] == [SystemPromptPart, UserPromptPart]
        assert [type(p) for p in converted[1].parts] == [TextPart, ToolCallPart]
        assert [type(p) for p in converted[2].parts] == [ToolReturnPart, UserPromptPart]

    def test_tool_call_ids_carried(self):
        converted = to_model_messages(CONVERSATION)
        call_part = converted[1].parts[1]
        return_part = converted[2].parts[0]
        assert call_part.tool_call_id == "call_1"
        assert call_part.args == {"path": "a.py"}
        assert return_part.tool_call_id == "call_1"
        assert return_part.tool_name == "read_file"

    def test_assistant_without_text(self):
        converted = to_model_messages([Message.user("x"), Message.assistant("", [CALL])])
        assert [type(p) for p in converted[1].parts] == [ToolCallPart]

    def test_tool_definitions(self):
        definition = to_tool_definitions([READ_FILE_SPEC])[0]
        assert definition.name == "read_file"
        assert definition.parameters_json_schema["required"] == ["path"]


# ============================================================================
# OpenAI-shaped conversion
# ============================================================================

class TestToOpenAIMessages:
    def test_shapes(self):
        converted = to_openai_messages(CONVERSATION)

        assert [m["role"] for m in converted] == ["system", "user", "assistant", "tool", "user"]
        assistant = converted[2]
        assert assistant["content"] == "Looking."
        assert assistant["tool_calls"][0]["id"] == "call_1"
        assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"path": "a.py"}
        assert converted[3] == {"role": "tool", "tool_call_id": "call_1", "content": "a.py (1 lines)"}

    def test_raw_string_arguments_passed_through(self):
        call = ToolCallRequest(call_id="c", name="read_file", arguments='{"path": "b.py"}')
        converted = to_openai_messages([Message.assistant("", [call])])
        assert converted[0]["content"] is None
        assert converted[0]["tool_calls"][0]["function"]["arguments"] == '{"path": "b.py"}'

    def test_tools(self):
        tools = to_openai_tools([READ_FILE_SPEC])
        assert tools[0]["type"] == "function"
        assert tools[0]["function"]["name"] == "read_file"


# ============================================================================
# Groq streaming through the OpenAI SDK
# ============================================================================

def sse_body(*payloads) -> bytes:
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def delta(**fields):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "llama-test",
        "choices": [{"index": 0, "delta": fields, "finish_reason": None}],
    }


def event_stream(*payloads):
    return httpx.Response(200, content=sse_body(*payloads), headers={"content-type": "text/event-stream"})


def groq_stream(handler, api_key="gsk-test"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GroqModelStream(
        api_key=api_key, model="llama-test", base_url="https://groq.test/v1", http_client=http_client,
    )


async def collect(stream, messages=CONVERSATION, tools=(READ_FILE_SPEC,)):
    return [chunk async for chunk in stream.stream(messages, list(tools))]


class TestGroqModelStream:
    async def test_text_and_tool_calls(self):
        requests = []

        def handler(request):
            requests.append(request)
            return event_stream(
                delta(role="assistant", content=""),
                delta(content="Reading "),
                delta(content="the file."),
                delta(tool_calls=[{"index": 0, "id": "call_9", "type": "function",
                                   "function": {"name": "read_file", "arguments": '{"pa'}}]),
                delta(tool_calls=[{"index": 0, "function": {"arguments": 'th": "a.py"}'}}]),
            )

        chunks = await collect(groq_stream(handler))

        assert chunks[:2] == [TextChunk(text="Reading "), TextChunk(text="the file.")]
        assert chunks[2] == ToolCallChunk(call=ToolCallRequest(
            call_id="call_9", name="read_file", arguments={"path": "a.py"},
        ))

        request = requests[0]
        assert str(request.url) == "https://groq.test/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer gsk-test"
        body = json.loads(request.content)
        assert body["model"] == "llama-test"
        assert body["stream"] is True
        assert body["tools"][0]["function"]["name"] == "read_file"
        assert body["messages"][0] == {"role": "system", "content": "be helpful"}

    async def test_no_tools_omits_tool_choice(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return event_stream(delta(content="hi"))

        await collect(groq_stream(handler), tools=())
        assert "tools" not in bodies[0]
        assert "tool_choice" not in bodies[0]

    async def test_http_error_status_is_not_retried(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(500, json={"error": {"message": "upstream exploded"}})

        with pytest.raises(StreamError, match="500"):
            await collect(groq_stream(handler))
        assert len(requests) == 1

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(StreamError, match="Connection error"):
            await collect(groq_stream(handler))

    async def test_error_payload(self):
        stream = groq_stream(lambda request: event_stream({"error": {"message": "rate limited"}}))
        with pytest.raises(StreamError, match="rate limited"):
            await collect(stream)

    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        stream = GroqModelStream(model="llama-test", base_url="https://groq.test/v1")
        with pytest.raises(StreamError, match="GROQ_API_KEY"):
            await collect(stream)


# ============================================================================
# Provider selection
# ============================================================================

class TestGetModelStream:
    def test_groq(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
        assert isinstance(get_model_stream(ModelProvider.GROQ), GroqModelStream)

    def test_openai(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
        stream = get_model_stream(ModelProvider.OPENAI)
        assert isinstance(stream, AgentModelStream)
        assert stream.model == "openai:gpt-4o-mini"
