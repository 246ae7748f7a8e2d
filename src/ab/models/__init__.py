"""Convenience exports for model service clients."""

from .anthropic import AnthropicClient
from .client import (
    ModelClient,
    ModelClientError,
    ModelResponseFormatError,
    ModelRetryError,
    ModelTransportError,
    WebSearchOptions,
)
from .messages import (
    ContentBlock,
    Message,
    ModelResponse,
    ServerToolUseBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    WebSearchResultBlock,
)

__all__ = [
    "AnthropicClient",
    "ContentBlock",
    "Message",
    "ModelClient",
    "ModelClientError",
    "ModelResponse",
    "ModelResponseFormatError",
    "ModelRetryError",
    "ModelTransportError",
    "ServerToolUseBlock",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
    "WebSearchOptions",
    "WebSearchResultBlock",
]
