"""Conversation message and content block types exchanged with the model service."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

__all__ = [
    "ContentBlock",
    "Message",
    "ModelResponse",
    "ServerToolUseBlock",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
    "WebSearchResultBlock",
    "block_from_dict",
    "message_from_dict",
]


@dataclass(slots=True)
class TextBlock:
    text: str
    type: Literal["text"] = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolUseBlock:
    """A client-side tool invocation requested by the model."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_use"] = "tool_use"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(slots=True)
class ServerToolUseBlock:
    """A tool the model service runs itself, such as web search."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    type: Literal["server_tool_use"] = "server_tool_use"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(slots=True)
class WebSearchResultBlock:
    """Result paired with a :class:`ServerToolUseBlock` through ``tool_use_id``."""

    tool_use_id: str
    content: Any = None
    type: Literal["web_search_tool_result"] = "web_search_tool_result"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "tool_use_id": self.tool_use_id, "content": self.content}


@dataclass(slots=True)
class ToolResultBlock:
    """Outcome of a client-side tool call.

    ``metadata`` stays local to the runtime and is never sent to the model.
    """

    tool_use_id: str
    content: str
    is_error: bool = False
    metadata: Optional[Dict[str, Any]] = None
    type: Literal["tool_result"] = "tool_result"

    @property
    def path(self) -> Optional[str]:
        if not self.metadata:
            return None
        value = self.metadata.get("path")
        return value if isinstance(value, str) and value else None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "tool_use_id": self.tool_use_id, "content": self.content}
        if self.is_error:
            payload["is_error"] = True
        return payload


ContentBlock = Union[TextBlock, ToolUseBlock, ServerToolUseBlock, WebSearchResultBlock, ToolResultBlock]


def block_from_dict(data: Mapping[str, Any]) -> ContentBlock:
    """Convert a wire-format content block into its typed representation."""
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=str(data.get("text") or ""))
    if block_type == "tool_use":
        return ToolUseBlock(id=str(data.get("id")), name=str(data.get("name")), input=dict(data.get("input") or {}))
    if block_type == "server_tool_use":
        return ServerToolUseBlock(
            id=str(data.get("id")), name=str(data.get("name")), input=dict(data.get("input") or {})
        )
    if block_type == "web_search_tool_result":
        return WebSearchResultBlock(tool_use_id=str(data.get("tool_use_id")), content=data.get("content"))
    if block_type == "tool_result":
        content = data.get("content")
        return ToolResultBlock(
            tool_use_id=str(data.get("tool_use_id")),
            content=content if isinstance(content, str) else str(content or ""),
            is_error=bool(data.get("is_error", False)),
        )
    raise ValueError(f"Unsupported content block type: {block_type!r}")


@dataclass(slots=True)
class Message:
    """A conversation turn.

    ``content`` is normally a list of blocks. It is typed loosely because
    histories restored from storage may be malformed, and the orchestrator
    must detect that rather than fail to load them.
    """

    role: Literal["user", "assistant"]
    content: Any

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, list):
            blocks = [block.to_dict() if hasattr(block, "to_dict") else block for block in self.content]
            return {"role": self.role, "content": blocks}
        return {"role": self.role, "content": self.content}


def message_from_dict(data: Mapping[str, Any]) -> Message:
    content = data.get("content")
    if isinstance(content, list):
        content = [block_from_dict(item) if isinstance(item, Mapping) else item for item in content]
    role = data.get("role")
    if role not in ("user", "assistant"):
        raise ValueError(f"Unsupported message role: {role!r}")
    return Message(role=role, content=content)


@dataclass(slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class ModelResponse:
    """Completed model turn."""

    content: List[ContentBlock] = field(default_factory=list)
    stop_reason: Optional[str] = None
    usage: Usage = field(default_factory=Usage)

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> List[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]
