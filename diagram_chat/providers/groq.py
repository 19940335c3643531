"""Alternate model stream: Groq's OpenAI-compatible chat completions."""

import json
import logging
from typing import Any, AsyncIterator, Optional, Sequence

import httpx
import openai

from ..config import ModelProvider, get_groq_api_key, get_groq_base_url, get_model_config
from ..errors import StreamError
from ..models import Message, Role, StreamChunk, ToolSpec
from ..streaming import DeltaChunkAdapter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


def to_openai_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Render the conversation in OpenAI chat-completions message shape."""
    converted = []
    for message in messages:
        if message.role == Role.TOOL_RESULT:
            converted.append({
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content,
            })
        elif message.role == Role.ASSISTANT and message.tool_calls:
            converted.append({
                "role": "assistant",
                "content": message.content or None,
                "tool_calls": [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": call.arguments if isinstance(call.arguments, str)
                            else json.dumps(call.arguments),
                        },
                    }
                    for call in message.tool_calls
                ],
            })
        else:
            converted.append({"role": message.role.value, "content": message.content})
    return converted


def to_openai_tools(tools: Sequence[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in tools
    ]


class GroqModelStream:
    """Streams from Groq and adapts its delta chunks to TextChunk / ToolCallChunk."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        temperature: float = 1.0,
        max_tokens: int = 4096,
    ):
        self.api_key = api_key or get_groq_api_key()
        self.model = model or get_model_config(ModelProvider.GROQ).model
        self.base_url = (base_url or get_groq_base_url()).rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._http_client = http_client
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            # Stream errors are not retried, so the SDK must not retry either
            self._client = openai.AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=DEFAULT_TIMEOUT,
                max_retries=0,
                http_client=self._http_client,
            )
        return self._client

    def _request(self, messages: Sequence[Message], tools: Sequence[ToolSpec]) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if tools:
            request["tools"] = to_openai_tools(tools)
            request["tool_choice"] = "auto"
        return request

    async def stream(self, messages: Sequence[Message], tools: Sequence[ToolSpec]) -> AsyncIterator[StreamChunk]:
        if not self.api_key:
            raise StreamError("GROQ_API_KEY environment variable is not set")

        adapter = DeltaChunkAdapter()
        logger.debug("Requesting groq/%s with %d messages", self.model, len(messages))
        try:
            response = await self.client.chat.completions.create(**self._request(messages, tools))
            async with response:
                async for chunk in response:
                    for adapted in adapter.adapt(chunk.model_dump()):
                        yield adapted
        except openai.APIError as e:
            raise StreamError(f"Groq request failed: {e}") from e

        for adapted in adapter.finish():
            yield adapted
