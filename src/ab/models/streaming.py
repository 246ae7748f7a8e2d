"""Reassembly of streamed model output into complete content blocks.

The model service streams a sequence of events per turn. Text and tool
argument fragments arrive as typed deltas. :class:`StreamAccumulator` owns
the partial state for one in-flight turn and only yields a content block once
its ``content_block_stop`` event arrives. Tool arguments are parsed exactly
once per block and fall back to an empty mapping when the JSON is unusable.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .messages import (
    ContentBlock,
    ModelResponse,
    ServerToolUseBlock,
    TextBlock,
    ToolUseBlock,
    Usage,
    WebSearchResultBlock,
)

__all__ = [
    "BlockStart",
    "BlockStop",
    "DeltaCallback",
    "MessageDelta",
    "MessageStart",
    "StreamAccumulator",
    "StreamEvent",
    "TextDelta",
    "ToolArgumentDelta",
    "accumulate",
    "parse_stream_event",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TextDelta:
    index: int
    text: str


@dataclass(slots=True, frozen=True)
class ToolArgumentDelta:
    index: int
    partial_json: str


@dataclass(slots=True, frozen=True)
class BlockStart:
    index: int
    block: Mapping[str, Any]


@dataclass(slots=True, frozen=True)
class BlockStop:
    index: int


@dataclass(slots=True, frozen=True)
class MessageStart:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True, frozen=True)
class MessageDelta:
    stop_reason: Optional[str] = None
    output_tokens: Optional[int] = None


StreamEvent = Union[TextDelta, ToolArgumentDelta, BlockStart, BlockStop, MessageStart, MessageDelta]
DeltaCallback = Callable[[Union[TextDelta, ToolArgumentDelta]], None]


def parse_stream_event(raw: Mapping[str, Any]) -> Optional[StreamEvent]:
    """Translate a raw server-sent event payload into a typed stream event."""
    event_type = raw.get("type")
    if event_type == "message_start":
        usage = (raw.get("message") or {}).get("usage") or {}
        return MessageStart(
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        )
    if event_type == "content_block_start":
        return BlockStart(index=int(raw.get("index", 0)), block=dict(raw.get("content_block") or {}))
    if event_type == "content_block_delta":
        index = int(raw.get("index", 0))
        delta = raw.get("delta") or {}
        if delta.get("type") == "text_delta":
            return TextDelta(index=index, text=str(delta.get("text") or ""))
        if delta.get("type") == "input_json_delta":
            return ToolArgumentDelta(index=index, partial_json=str(delta.get("partial_json") or ""))
        return None
    if event_type == "content_block_stop":
        return BlockStop(index=int(raw.get("index", 0)))
    if event_type == "message_delta":
        delta = raw.get("delta") or {}
        usage = raw.get("usage") or {}
        output_tokens = usage.get("output_tokens")
        return MessageDelta(
            stop_reason=delta.get("stop_reason"),
            output_tokens=int(output_tokens) if output_tokens is not None else None,
        )
    # message_stop, ping and unknown events carry nothing we keep
    return None


@dataclass(slots=True)
class _PartialBlock:
    kind: str
    start: Dict[str, Any]
    text: List[str] = field(default_factory=list)
    arguments: List[str] = field(default_factory=list)


class StreamAccumulator:
    """Collect typed stream events for a single turn."""

    def __init__(self, on_delta: Optional[DeltaCallback] = None) -> None:
        self._on_delta = on_delta
        self._partial: Dict[int, _PartialBlock] = {}
        self._completed: Dict[int, ContentBlock] = {}
        self.stop_reason: Optional[str] = None
        self.usage = Usage()

    def feed(self, event: StreamEvent) -> Optional[ContentBlock]:
        """Apply ``event``; return a block when the event completes one."""
        if isinstance(event, MessageStart):
            self.usage = Usage(input_tokens=event.input_tokens, output_tokens=event.output_tokens)
            return None
        if isinstance(event, MessageDelta):
            if event.stop_reason is not None:
                self.stop_reason = event.stop_reason
            if event.output_tokens is not None:
                self.usage.output_tokens = event.output_tokens
            return None
        if isinstance(event, BlockStart):
            start = dict(event.block)
            self._partial[event.index] = _PartialBlock(kind=str(start.get("type")), start=start)
            if start.get("type") == "text" and start.get("text"):
                self._partial[event.index].text.append(str(start["text"]))
            return None
        if isinstance(event, TextDelta):
            partial = self._partial.get(event.index)
            if partial is not None:
                partial.text.append(event.text)
            if self._on_delta is not None:
                self._on_delta(event)
            return None
        if isinstance(event, ToolArgumentDelta):
            partial = self._partial.get(event.index)
            if partial is not None:
                partial.arguments.append(event.partial_json)
            if self._on_delta is not None:
                self._on_delta(event)
            return None
        if isinstance(event, BlockStop):
            partial = self._partial.pop(event.index, None)
            if partial is None:
                return None
            block = _finish(partial)
            if block is not None:
                self._completed[event.index] = block
            return block
        return None

    def consume(self, events: Iterable[StreamEvent]) -> Iterator[ContentBlock]:
        """Feed every event, yielding blocks as they complete."""
        for event in events:
            block = self.feed(event)
            if block is not None:
                yield block

    def response(self) -> ModelResponse:
        """Return the completed blocks in stream index order."""
        if self._partial:
            LOGGER.warning("Discarding %d unterminated content block(s)", len(self._partial))
            self._partial.clear()
        blocks = [self._completed[index] for index in sorted(self._completed)]
        return ModelResponse(content=blocks, stop_reason=self.stop_reason, usage=self.usage)


def _parse_arguments(fragments: List[str], fallback: Any) -> Dict[str, Any]:
    raw = "".join(fragments).strip()
    if not raw:
        return dict(fallback) if isinstance(fallback, Mapping) else {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Tool arguments were not valid JSON; using empty input")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _finish(partial: _PartialBlock) -> Optional[ContentBlock]:
    start = partial.start
    if partial.kind == "text":
        return TextBlock(text="".join(partial.text))
    if partial.kind == "tool_use":
        return ToolUseBlock(
            id=str(start.get("id")),
            name=str(start.get("name")),
            input=_parse_arguments(partial.arguments, start.get("input")),
        )
    if partial.kind == "server_tool_use":
        return ServerToolUseBlock(
            id=str(start.get("id")),
            name=str(start.get("name")),
            input=_parse_arguments(partial.arguments, start.get("input")),
        )
    if partial.kind == "web_search_tool_result":
        return WebSearchResultBlock(tool_use_id=str(start.get("tool_use_id")), content=start.get("content"))
    LOGGER.debug("Ignoring unsupported content block type %s", partial.kind)
    return None


def accumulate(
    raw_events: Iterable[Mapping[str, Any]],
    on_delta: Optional[DeltaCallback] = None,
) -> ModelResponse:
    """Reassemble a full response from raw event payloads."""
    accumulator = StreamAccumulator(on_delta)
    for raw in raw_events:
        event = parse_stream_event(raw)
        if event is not None:
            accumulator.feed(event)
    return accumulator.response()
