"""Client base class for the conversational model service."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .messages import Message, ModelResponse, Usage, block_from_dict
from .streaming import DeltaCallback, accumulate

__all__ = [
    "ModelClient",
    "ModelClientError",
    "ModelResponseFormatError",
    "ModelRetryError",
    "ModelTransportError",
    "WebSearchOptions",
]

LOGGER = logging.getLogger(__name__)

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"


class ModelClientError(RuntimeError):
    """Base error raised for model client failures."""


class ModelTransportError(ModelClientError):
    """Raised when the underlying transport fails to return a response."""


class ModelResponseFormatError(ModelClientError):
    """Raised when the service returns a payload that cannot be interpreted."""


class ModelRetryError(ModelClientError):
    """Raised after exhausting retries due to repeated transport failures."""


@dataclass(slots=True)
class WebSearchOptions:
    """Server-side web search configuration attached to a request."""

    enabled: bool = True
    max_uses: Optional[int] = None
    allowed_domains: List[str] = field(default_factory=list)
    blocked_domains: List[str] = field(default_factory=list)

    def to_tool(self) -> Dict[str, Any]:
        tool: Dict[str, Any] = {"type": WEB_SEARCH_TOOL_TYPE, "name": "web_search"}
        if self.max_uses is not None:
            tool["max_uses"] = self.max_uses
        if self.allowed_domains:
            tool["allowed_domains"] = list(self.allowed_domains)
        elif self.blocked_domains:
            tool["blocked_domains"] = list(self.blocked_domains)
        return tool


class ModelClient:
    """Send conversations to the model service and return complete turns.

    Subclasses implement :meth:`_stream` (raw event payloads) and
    :meth:`_complete` (a single response body).
    """

    def __init__(
        self,
        model: str,
        *,
        max_tokens: int = 8192,
        temperature: Optional[float] = 0.2,
        top_p: Optional[float] = None,
        streaming: bool = True,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._top_p = top_p
        self._streaming = streaming
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def build_payload(
        self,
        messages: Sequence[Message],
        system: str,
        tools: Sequence[Mapping[str, Any]],
        *,
        web_search: Optional[WebSearchOptions] = None,
    ) -> Dict[str, Any]:
        """Render a transport-ready Messages API payload."""
        tool_definitions = [dict(tool) for tool in tools]
        if web_search is not None and web_search.enabled:
            tool_definitions.append(web_search.to_tool())

        payload: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system,
            "messages": [message.to_dict() for message in messages],
        }
        if tool_definitions:
            payload["tools"] = tool_definitions
        # the service rejects requests that set both sampling parameters
        if self._top_p is not None:
            payload["top_p"] = self._top_p
        elif self._temperature is not None:
            payload["temperature"] = self._temperature
        if self._streaming:
            payload["stream"] = True
        return payload

    def send_message(
        self,
        messages: Sequence[Message],
        system: str,
        tools: Sequence[Mapping[str, Any]],
        *,
        on_delta: Optional[DeltaCallback] = None,
        web_search: Optional[WebSearchOptions] = None,
    ) -> ModelResponse:
        """Send the conversation and return the assembled model turn."""
        payload = self.build_payload(messages, system, tools, web_search=web_search)
        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                if self._streaming:
                    return accumulate(self._stream(payload), on_delta)
                return self._parse_response(self._complete(payload))
            except ModelTransportError as error:
                last_error = error
                LOGGER.warning("Model request attempt %d/%d failed: %s", attempt, self._max_attempts, error)
                if attempt >= self._max_attempts:
                    break
                time.sleep(self._retry_delay)

        raise ModelRetryError(
            f"Model request failed after {self._max_attempts} attempt(s) for model {self._model}"
        ) from last_error

    def _stream(self, payload: Dict[str, Any]) -> Iterable[Mapping[str, Any]]:
        """Yield raw stream event payloads. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _stream().")

    def _complete(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        """Return a complete response body. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _complete().")

    @staticmethod
    def _parse_response(body: Mapping[str, Any]) -> ModelResponse:
        content = body.get("content")
        if not isinstance(content, list):
            raise ModelResponseFormatError("Model response did not contain a content list.")
        blocks = []
        for item in content:
            if not isinstance(item, Mapping):
                raise ModelResponseFormatError(f"Unexpected content block: {item!r}")
            try:
                blocks.append(block_from_dict(item))
            except ValueError:
                LOGGER.debug("Skipping unsupported content block %s", item.get("type"))
        usage = body.get("usage") or {}
        return ModelResponse(
            content=blocks,
            stop_reason=body.get("stop_reason"),
            usage=Usage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            ),
        )
