"""Structured telemetry events and logging setup for the app builder runtime."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

__all__ = ["TELEMETRY_LOGGER", "configure_logging", "emit_event", "serialise_event_value"]

TELEMETRY_LOGGER = logging.getLogger("ab.telemetry")
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return serialise_event_value(value.value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return serialise_event_value(asdict(value))
    if isinstance(value, (list, tuple, set, frozenset)):
        return [serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event as a single JSON line."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload: dict[str, Any] = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = serialise_event_value(value)
    message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)


def configure_logging(level: str = "info", log_file: Optional[Path | str] = None) -> None:
    """Configure root logging for CLI invocations."""
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    logging.basicConfig(level=numeric, format=_LOG_FORMAT, handlers=handlers, force=True)
