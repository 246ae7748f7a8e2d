from __future__ import annotations

from ab.models.messages import TextBlock, ToolUseBlock
from ab.models.streaming import (
    BlockStart,
    BlockStop,
    StreamAccumulator,
    TextDelta,
    ToolArgumentDelta,
    accumulate,
    parse_stream_event,
)


def _tool_stream(fragments):
    events = [
        {"type": "message_start", "message": {"usage": {"input_tokens": 12, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Reading "}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "the file."}},
        {"type": "content_block_stop", "index": 0},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "either-view", "input": {}},
        },
    ]
    for fragment in fragments:
        events.append(
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": fragment}}
        )
    events.append({"type": "content_block_stop", "index": 1})
    events.append({"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 30}})
    events.append({"type": "message_stop"})
    return events


def test_accumulate_reassembles_blocks_in_order() -> None:
    response = accumulate(_tool_stream(['{"path": ', '"src/App.tsx"}']))

    assert response.content[0] == TextBlock(text="Reading the file.")
    assert response.content[1] == ToolUseBlock(id="toolu_1", name="either-view", input={"path": "src/App.tsx"})
    assert response.stop_reason == "tool_use"
    assert response.usage.input_tokens == 12
    assert response.usage.output_tokens == 30


def test_invalid_tool_arguments_fall_back_to_empty_input() -> None:
    response = accumulate(_tool_stream(['{"path": "src/App', "tsx"]))

    assert response.tool_uses[0].input == {}


def test_blocks_are_only_emitted_on_stop() -> None:
    accumulator = StreamAccumulator()

    assert accumulator.feed(BlockStart(index=0, block={"type": "tool_use", "id": "t", "name": "either-view"})) is None
    assert accumulator.feed(ToolArgumentDelta(index=0, partial_json='{"path": "a.ts"}')) is None
    block = accumulator.feed(BlockStop(index=0))

    assert block == ToolUseBlock(id="t", name="either-view", input={"path": "a.ts"})


def test_unterminated_blocks_are_discarded() -> None:
    accumulator = StreamAccumulator()
    accumulator.feed(BlockStart(index=0, block={"type": "text"}))
    accumulator.feed(TextDelta(index=0, text="partial"))

    assert accumulator.response().content == []


def test_delta_callback_receives_fragments() -> None:
    seen = []

    accumulate(_tool_stream(['{"path": "a.ts"}']), on_delta=seen.append)

    assert [event.text for event in seen if isinstance(event, TextDelta)] == ["Reading ", "the file."]
    assert [event.partial_json for event in seen if isinstance(event, ToolArgumentDelta)] == ['{"path": "a.ts"}']


def test_server_tool_blocks_survive_reassembly() -> None:
    events = [
        {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "server_tool_use", "id": "srv_1", "name": "web_search", "input": {}},
        },
        {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": '{"query": "vite"}'}},
        {"type": "content_block_stop", "index": 0},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "web_search_tool_result", "tool_use_id": "srv_1", "content": []},
        },
        {"type": "content_block_stop", "index": 1},
    ]

    response = accumulate(events)

    assert [block.type for block in response.content] == ["server_tool_use", "web_search_tool_result"]
    assert response.content[0].input == {"query": "vite"}


def test_unknown_events_are_ignored() -> None:
    assert parse_stream_event({"type": "ping"}) is None
    assert parse_stream_event({"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta"}}) is None
