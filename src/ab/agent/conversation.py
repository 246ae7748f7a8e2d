"""Session-scoped conversation state and the pre-send integrity checks."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Set

from ..models.messages import (
    ContentBlock,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    message_from_dict,
)
from ..tools.definitions import READ_TOOL

__all__ = ["ConversationIntegrityError", "ConversationState", "validate_conversation"]

LOGGER = logging.getLogger(__name__)


class ConversationIntegrityError(RuntimeError):
    """Raised when the message history would be rejected by the model service."""

    def __init__(self, message: str, *, index: Optional[int] = None) -> None:
        super().__init__(message)
        self.index = index


def _block_type(block: Any) -> Optional[str]:
    if isinstance(block, Mapping):
        value = block.get("type")
        return value if isinstance(value, str) else None
    return getattr(block, "type", None)


def _block_attr(block: Any, name: str) -> Any:
    if isinstance(block, Mapping):
        return block.get(name)
    return getattr(block, name, None)


def validate_conversation(messages: Sequence[Message]) -> None:
    """Raise :class:`ConversationIntegrityError` for the first malformed message.

    Every message must carry a list of blocks. Only a trailing assistant
    message may be empty. Each ``server_tool_use`` block in an assistant
    message needs a ``web_search_tool_result`` with the same id.
    """
    last = len(messages) - 1
    for index, message in enumerate(messages):
        content = message.content
        if not isinstance(content, list):
            LOGGER.error("Message %d (role %s) has non-list content", index, message.role)
            raise ConversationIntegrityError(
                f"Conversation history validation failed: Message {index} has invalid content format "
                f"(expected list, got {type(content).__name__}).",
                index=index,
            )
        if not content:
            if index == last and message.role == "assistant":
                continue
            LOGGER.error("Message %d (role %s) has empty content", index, message.role)
            raise ConversationIntegrityError(
                f"Conversation history validation failed: Message {index} has empty content.",
                index=index,
            )
        if message.role != "assistant":
            continue
        result_ids = {
            _block_attr(block, "tool_use_id") for block in content if _block_type(block) == "web_search_tool_result"
        }
        for block in content:
            if _block_type(block) != "server_tool_use":
                continue
            block_id = _block_attr(block, "id")
            if block_id in result_ids:
                continue
            layout = ", ".join(str(_block_type(item)) for item in content)
            LOGGER.error("Message %d has orphaned server_tool_use %s; blocks: %s", index, block_id, layout)
            raise ConversationIntegrityError(
                f"Conversation history validation failed: Message {index} has server_tool_use "
                f'"{_block_attr(block, "name")}" ({block_id}) without corresponding web_search_tool_result.',
                index=index,
            )


@dataclass
class ConversationState:
    """Message history and observed reads owned by one agent session."""

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: List[Message] = field(default_factory=list)
    seen_reads: Set[str] = field(default_factory=set)

    def append_user_text(self, text: str) -> Message:
        message = Message(role="user", content=[TextBlock(text=text)])
        self.messages.append(message)
        return message

    def append_assistant(self, blocks: Sequence[ContentBlock]) -> Message:
        content: List[Any] = list(blocks)
        if not content:
            LOGGER.warning("Assistant response had no content blocks; adding placeholder")
            content = [TextBlock(text="...")]
        message = Message(role="assistant", content=content)
        self.messages.append(message)
        return message

    def append_tool_results(self, results: Sequence[ToolResultBlock]) -> Message:
        message = Message(role="user", content=list(results))
        self.messages.append(message)
        return message

    def record_reads(self, paths: Iterable[str]) -> None:
        self.seen_reads.update(paths)

    def validate(self) -> None:
        validate_conversation(self.messages)

    def load(self, messages: Iterable[Message | Mapping[str, Any]]) -> None:
        """Replace the history, accepting typed messages or wire-format mappings."""
        loaded: List[Message] = []
        for item in messages:
            loaded.append(item if isinstance(item, Message) else message_from_dict(item))
        self.messages = loaded
        self.seen_reads = {
            str(block.input["path"])
            for message in loaded
            if message.role == "assistant" and isinstance(message.content, list)
            for block in message.content
            if isinstance(block, ToolUseBlock) and block.name == READ_TOOL and block.input.get("path")
        }

    def snapshot(self) -> List[Message]:
        return list(self.messages)

    def reset(self) -> None:
        self.messages = []
        self.seen_reads = set()

    def to_dicts(self) -> List[dict[str, Any]]:
        return [message.to_dict() for message in self.messages]

