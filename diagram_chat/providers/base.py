"""Model stream collaborator interface."""

from typing import AsyncIterator, Protocol, Sequence

from ..models import Message, StreamChunk, ToolSpec


class ModelStream(Protocol):
    """Streams one model response as TextChunk / ToolCallChunk items.

    Implementations raise StreamError for any provider failure.
    """

    def stream(self, messages: Sequence[Message], tools: Sequence[ToolSpec]) -> AsyncIterator[StreamChunk]:
        ...
