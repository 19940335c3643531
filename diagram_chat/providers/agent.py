"""Primary model stream built on pydantic-ai's direct model requests."""

import logging
from typing import AsyncIterator, Optional, Sequence

from pydantic_ai.direct import model_request_stream
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import ModelRequestParameters
from pydantic_ai.tools import ToolDefinition

from ..config import ModelProvider, get_model_name
from ..errors import StreamError
from ..models import Message, Role, StreamChunk, TextChunk, ToolCallChunk, ToolCallRequest, ToolSpec

logger = logging.getLogger(__name__)


def to_model_messages(messages: Sequence[Message]) -> list[ModelMessage]:
    """Convert conversation messages to pydantic-ai requests and responses.

    Consecutive system, user and tool-result messages share one ModelRequest.
    """
    result: list[ModelMessage] = []
    request_parts = []

    def flush():
        if request_parts:
            result.append(ModelRequest(parts=list(request_parts)))
            request_parts.clear()

    for message in messages:
        if message.role == Role.SYSTEM:
            request_parts.append(SystemPromptPart(content=message.content))
        elif message.role == Role.USER:
            request_parts.append(UserPromptPart(content=message.content))
        elif message.role == Role.TOOL_RESULT:
            request_parts.append(ToolReturnPart(
                tool_name=message.tool_name or "",
                content=message.content,
                tool_call_id=message.tool_call_id,
            ))
        else:
            flush()
            parts = []
            if message.content:
                parts.append(TextPart(content=message.content))
            for call in message.tool_calls:
                parts.append(ToolCallPart(tool_name=call.name, args=call.arguments, tool_call_id=call.call_id))
            result.append(ModelResponse(parts=parts))
    flush()
    return result


def to_tool_definitions(tools: Sequence[ToolSpec]) -> list[ToolDefinition]:
    return [
        ToolDefinition(name=t.name, description=t.description, parameters_json_schema=t.parameters)
        for t in tools
    ]


class AgentModelStream:
    """Streams responses from any model pydantic-ai can address (openai:..., ollama:...)."""

    def __init__(self, model: Optional[str] = None, provider: Optional[ModelProvider] = None):
        self.model = model or get_model_name(provider)

    async def stream(self, messages: Sequence[Message], tools: Sequence[ToolSpec]) -> AsyncIterator[StreamChunk]:
        params = ModelRequestParameters(function_tools=to_tool_definitions(tools))
        logger.debug("Requesting %s with %d messages, %d tools", self.model, len(messages), len(tools))
        try:
            async with model_request_stream(self.model, to_model_messages(messages),
                                            model_request_parameters=params) as response:
                async for event in response:
                    if isinstance(event, PartStartEvent) and isinstance(event.part, TextPart):
                        if event.part.content:
                            yield TextChunk(text=event.part.content)
                    elif isinstance(event, PartDeltaEvent) and isinstance(event.delta, TextPartDelta):
                        if event.delta.content_delta:
                            yield TextChunk(text=event.delta.content_delta)
                final = response.get()
        except StreamError:
            raise
        except Exception as e:
            raise StreamError(f"{self.model} request failed: {e}") from e

        # Tool calls are emitted whole once the response is complete
        for part in final.parts:
            if isinstance(part, ToolCallPart):
                yield ToolCallChunk(call=ToolCallRequest(
                    call_id=part.tool_call_id,
                    name=part.tool_name,
                    arguments=part.args if part.args is not None else {},
                ))
