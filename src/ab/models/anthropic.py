"""Production client that speaks the Anthropic Messages API."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Callable, Dict, Optional

from .client import ModelClient, ModelResponseFormatError, ModelTransportError

__all__ = ["AnthropicClient", "Transport", "iter_sse_events"]

API_VERSION = "2023-06-01"

# Receives the request payload and yields the response body line by line.
Transport = Callable[[Dict[str, Any]], Iterable[str]]


def iter_sse_events(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """Decode server-sent event ``data:`` lines into JSON payloads."""
    for raw_line in lines:
        line = raw_line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:") :].strip()
        if not data or data == "[DONE]":
            continue
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as error:
            raise ModelResponseFormatError(f"Malformed stream event: {data[:200]}") from error
        if isinstance(payload, dict):
            if payload.get("type") == "error":
                detail = (payload.get("error") or {}).get("message") or "unknown error"
                raise ModelTransportError(f"Stream error: {detail}")
            yield payload


class AnthropicClient(ModelClient):
    """Thin adapter around the Messages API with an injectable transport."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.anthropic.com/v1/messages",
        model: str = "claude-sonnet-4-5-20250929",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_tokens: int = 8192,
        temperature: Optional[float] = 0.2,
        top_p: Optional[float] = None,
        streaming: bool = True,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(
            model,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
            streaming=streaming,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
        )
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _stream(self, payload: Dict[str, Any]) -> Iterable[Mapping[str, Any]]:
        return iter_sse_events(self._send(payload))

    def _complete(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        body = "".join(self._send(payload))
        try:
            data = json.loads(body)
        except json.JSONDecodeError as error:
            raise ModelResponseFormatError(f"Model returned invalid JSON: {body[:200]}") from error
        if not isinstance(data, dict):
            raise ModelResponseFormatError("Model response must be a JSON object.")
        if data.get("type") == "error":
            detail = (data.get("error") or {}).get("message") or "unknown error"
            raise ModelTransportError(f"Model service error: {detail}")
        return data

    def _send(self, payload: Dict[str, Any]) -> Iterator[str]:
        try:
            yield from self._transport(payload)
        except (ModelTransportError, ModelResponseFormatError):
            raise
        except OSError as error:
            raise ModelTransportError(f"Transport rejected the request: {error}") from error

    def _http_transport(self, payload: Dict[str, Any]) -> Iterator[str]:
        """Default HTTP transport that targets the Messages API."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "x-api-key": str(self._api_key),
                "anthropic-version": API_VERSION,
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:  # noqa: S310
                status = getattr(response, "status", 200)
                if status >= 400:
                    raise ModelTransportError(f"Unexpected HTTP status {status}")
                for raw_line in response:
                    yield raw_line.decode("utf-8")
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise ModelTransportError("Model response timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise ModelTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise ModelTransportError(f"Failed to reach model endpoint: {error.reason}") from error
