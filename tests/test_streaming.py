"""Tests for streaming response parsing and delta-chunk adaptation."""

import pytest

from diagram_chat.models import TextChunk, ToolCallChunk, ToolCallRequest
from diagram_chat.streaming import (
    DeltaChunkAdapter,
    ParserState,
    StreamingResponseParser,
    adapt_delta_chunk,
    adapt_delta_stream,
)


async def as_stream(items):
    for item in items:
        yield item


def text_chunks(*texts):
    return [TextChunk(text=t) for t in texts]


# ============================================================================
# StreamingResponseParser
# ============================================================================

class TestStreamingResponseParser:
    async def test_prose_only(self):
        forwarded = []
        parser = StreamingResponseParser(on_text=forwarded.append)

        result = await parser.consume(as_stream(text_chunks("Hello ", "there, ", "no diagram today.")))

        assert result.prose == "Hello there, no diagram today."
        assert result.diagram == ""
        assert not result.has_diagram
        assert forwarded == ["Hello ", "there, ", "no diagram today."]
        assert parser.state == ParserState.PROSE

    @pytest.mark.parametrize("fence_at", [0, 1, 3])
    async def test_capture_starts_at_first_fence_chunk(self, fence_at):
        chunks = ["a ", "b ", "c ", "d "]
        chunks.insert(fence_at, "```mermaid\n")
        chunks.append("```")
        forwarded = []
        parser = StreamingResponseParser(on_text=forwarded.append)

        result = await parser.consume(as_stream(text_chunks(*chunks)))

        assert forwarded == chunks[:fence_at]
        assert result.prose == "".join(chunks[:fence_at])
        assert result.diagram == "".join(chunks[fence_at:])
        assert parser.state == ParserState.CAPTURING_DIAGRAM

    async def test_fence_mid_chunk_keeps_whole_chunk_in_diagram(self):
        parser = StreamingResponseParser()
        result = await parser.consume(as_stream(text_chunks("Sure:\n```mer", "maid\npie\n```")))
        assert result.prose == ""
        assert result.diagram == "Sure:\n```mermaid\npie\n```"

    async def test_two_backticks_start_capture(self):
        parser = StreamingResponseParser()
        result = await parser.consume(as_stream(text_chunks("Here:\n", "``", "`mermaid\npie\n```")))
        assert result.prose == "Here:\n"
        assert result.diagram == "```mermaid\npie\n```"

    async def test_capture_start_callback_fires_once(self):
        starts = []
        parser = StreamingResponseParser(on_capture_start=lambda: starts.append(True))
        await parser.consume(as_stream(text_chunks("```mermaid\n", "graph TD\n", "```")))
        assert starts == [True]

    async def test_tool_calls_collected_separately(self):
        call = ToolCallRequest(call_id="c1", name="read_file", arguments={"path": "a.py"})
        parser = StreamingResponseParser()

        result = await parser.consume(as_stream([
            TextChunk(text="Looking it up. "),
            ToolCallChunk(call=call),
            TextChunk(text="Done."),
        ]))

        assert result.prose == "Looking it up. Done."
        assert result.tool_calls == [call]
        assert parser.state == ParserState.PROSE

    def test_feed_without_stream(self):
        parser = StreamingResponseParser()
        parser.feed(TextChunk(text="x"))
        parser.feed(TextChunk(text="```y```"))
        result = parser.result()
        assert result.prose == "x"
        assert result.diagram == "```y```"


# ============================================================================
# Delta-style chunks
# ============================================================================

def delta(**fields):
    return {"choices": [{"index": 0, "delta": fields}]}


def tool_fragment(index, arguments="", id=None, name=None):
    function = {"arguments": arguments}
    if name:
        function["name"] = name
    fragment = {"index": index, "function": function}
    if id:
        fragment["id"] = id
    return fragment


class TestAdaptDeltaChunk:
    def test_text(self):
        texts, fragments = adapt_delta_chunk(delta(content="Hi"))
        assert texts == [TextChunk(text="Hi")]
        assert fragments == []

    def test_empty_content_dropped(self):
        texts, fragments = adapt_delta_chunk(delta(role="assistant", content=""))
        assert texts == []
        assert fragments == []

    def test_no_choices(self):
        assert adapt_delta_chunk({"choices": []}) == ([], [])
        assert adapt_delta_chunk({}) == ([], [])

    def test_tool_fragments_passed_through(self):
        fragment = tool_fragment(0, '{"pa', id="call_1", name="read_file")
        texts, fragments = adapt_delta_chunk(delta(tool_calls=[fragment]))
        assert texts == []
        assert fragments == [fragment]


class TestDeltaChunkAdapter:
    def test_joins_argument_fragments(self):
        adapter = DeltaChunkAdapter()
        adapter.adapt(delta(tool_calls=[tool_fragment(0, '{"path": ', id="call_1", name="read_file")]))
        adapter.adapt(delta(tool_calls=[tool_fragment(0, '"a.py"}')]))

        chunks = adapter.finish()

        assert chunks == [ToolCallChunk(call=ToolCallRequest(
            call_id="call_1", name="read_file", arguments={"path": "a.py"},
        ))]

    def test_parallel_calls_ordered_by_index(self):
        adapter = DeltaChunkAdapter()
        adapter.adapt(delta(tool_calls=[
            tool_fragment(1, "{}", id="b", name="list_files"),
            tool_fragment(0, "{}", id="a", name="read_file"),
        ]))
        calls = [c.call for c in adapter.finish()]
        assert [c.call_id for c in calls] == ["a", "b"]

    def test_missing_id_gets_generated(self):
        adapter = DeltaChunkAdapter()
        adapter.adapt(delta(tool_calls=[tool_fragment(0, "", name="list_files")]))
        call = adapter.finish()[0].call
        assert call.call_id.startswith("call_")
        assert call.arguments == {}

    def test_undecodable_arguments_kept_as_text(self):
        adapter = DeltaChunkAdapter()
        adapter.adapt(delta(tool_calls=[tool_fragment(0, "{not json", id="c", name="read_file")]))
        assert adapter.finish()[0].call.arguments == "{not json"

    def test_finish_resets(self):
        adapter = DeltaChunkAdapter()
        adapter.adapt(delta(tool_calls=[tool_fragment(0, "{}", id="c", name="read_file")]))
        adapter.finish()
        assert adapter.finish() == []

    async def test_stream_emits_text_then_calls(self):
        payloads = [
            delta(content="Let me check."),
            delta(tool_calls=[tool_fragment(0, '{"pattern": "*.py"}', id="c1", name="list_files")]),
        ]

        chunks = [c async for c in adapt_delta_stream(as_stream(payloads))]

        assert chunks[0] == TextChunk(text="Let me check.")
        assert chunks[1].call.arguments == {"pattern": "*.py"}
        assert len(chunks) == 2
