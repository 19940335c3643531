"""Streaming response parsing.

A model response arrives as a sequence of chunks. Prose is forwarded to the
user as it arrives until the first fence marker shows up; from that chunk on
everything is captured as the diagram block. Tool-call chunks are collected
separately and never change the capture state.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable, Optional

from .diagram import FENCE_OPEN_RE
from .models import StreamChunk, TextChunk, ToolCallChunk, ToolCallRequest

logger = logging.getLogger(__name__)

TextSink = Callable[[str], None]


class ParserState(str, Enum):
    PROSE = "prose"
    CAPTURING_DIAGRAM = "capturing_diagram"


@dataclass
class ParsedResponse:
    """Everything one model response produced."""
    prose: str = ""
    diagram: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    @property
    def has_diagram(self) -> bool:
        return bool(self.diagram.strip())


class StreamingResponseParser:
    """Two-state classifier over one response stream."""

    def __init__(
        self,
        on_text: Optional[TextSink] = None,
        on_capture_start: Optional[Callable[[], None]] = None,
    ):
        self.state = ParserState.PROSE
        self._on_text = on_text
        self._on_capture_start = on_capture_start
        self._prose: list[str] = []
        self._diagram: list[str] = []
        self._tool_calls: list[ToolCallRequest] = []

    def feed(self, chunk: StreamChunk):
        if isinstance(chunk, ToolCallChunk):
            self._tool_calls.append(chunk.call)
            return

        text = chunk.text
        if self.state is ParserState.PROSE and FENCE_OPEN_RE.search(text):
            self.state = ParserState.CAPTURING_DIAGRAM
            logger.debug("Fence detected, capturing diagram")
            if self._on_capture_start:
                self._on_capture_start()

        if self.state is ParserState.CAPTURING_DIAGRAM:
            self._diagram.append(text)
        else:
            self._prose.append(text)
            if self._on_text:
                self._on_text(text)

    async def consume(self, chunks: AsyncIterable[StreamChunk]) -> ParsedResponse:
        """Feed every chunk of a stream and return the accumulated result."""
        async for chunk in chunks:
            self.feed(chunk)
        return self.result()

    def result(self) -> ParsedResponse:
        return ParsedResponse(
            prose="".join(self._prose),
            diagram="".join(self._diagram),
            tool_calls=list(self._tool_calls),
        )


# ============================================================================
# Delta-style chunk adaptation (OpenAI-compatible providers such as Groq)
# ============================================================================

def adapt_delta_chunk(payload: dict[str, Any]) -> tuple[list[TextChunk], list[dict[str, Any]]]:
    """Split one delta-style chunk into text chunks and raw tool-call fragments."""
    texts: list[TextChunk] = []
    fragments: list[dict[str, Any]] = []
    for choice in payload.get("choices") or []:
        delta = choice.get("delta") or {}
        content = delta.get("content")
        if content:
            texts.append(TextChunk(text=content))
        fragments.extend(delta.get("tool_calls") or [])
    return texts, fragments


def _decode_arguments(raw: str):
    if not raw.strip():
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    return decoded if isinstance(decoded, dict) else raw


class DeltaChunkAdapter:
    """Maps delta-style chunks onto TextChunk / ToolCallChunk.

    Tool-call fragments share an index; their argument strings are joined and
    the finished calls are emitted once the stream ends.
    """

    def __init__(self):
        self._pending: dict[int, dict[str, Any]] = {}

    def adapt(self, payload: dict[str, Any]) -> list[StreamChunk]:
        texts, fragments = adapt_delta_chunk(payload)
        for fragment in fragments:
            index = fragment.get("index", len(self._pending))
            pending = self._pending.setdefault(index, {"id": None, "name": "", "arguments": []})
            if fragment.get("id"):
                pending["id"] = fragment["id"]
            function = fragment.get("function") or {}
            if function.get("name"):
                pending["name"] = function["name"]
            if function.get("arguments"):
                pending["arguments"].append(function["arguments"])
        return list(texts)

    def finish(self) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        for index in sorted(self._pending):
            pending = self._pending[index]
            call = ToolCallRequest(
                call_id=pending["id"] or f"call_{uuid.uuid4().hex[:12]}",
                name=pending["name"],
                arguments=_decode_arguments("".join(pending["arguments"])),
            )
            chunks.append(ToolCallChunk(call=call))
        self._pending.clear()
        return chunks


async def adapt_delta_stream(payloads: AsyncIterable[dict[str, Any]]) -> AsyncIterator[StreamChunk]:
    """Adapt a whole delta-style stream."""
    adapter = DeltaChunkAdapter()
    async for payload in payloads:
        for chunk in adapter.adapt(payload):
            yield chunk
    for chunk in adapter.finish():
        yield chunk
