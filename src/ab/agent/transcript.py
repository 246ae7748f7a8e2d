"""JSON transcripts of agent requests."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..telemetry import serialise_event_value

__all__ = ["Transcript", "TranscriptEntry", "TranscriptRecorder"]

LOGGER = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class TranscriptEntry:
    role: str
    content: Any
    metadata: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=_now)


@dataclass(slots=True)
class Transcript:
    id: str
    request: str
    start_time: str = field(default_factory=_now)
    end_time: Optional[str] = None
    result: Optional[str] = None
    entries: List[TranscriptEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request": self.request,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "result": self.result,
            "entries": [
                {
                    "timestamp": entry.timestamp,
                    "role": entry.role,
                    "content": serialise_event_value(entry.content),
                    **({"metadata": serialise_event_value(entry.metadata)} if entry.metadata else {}),
                }
                for entry in self.entries
            ],
        }


class TranscriptRecorder:
    """Collect one transcript per request and write it to ``directory`` on demand."""

    def __init__(self, directory: Path | str, *, enabled: bool = True) -> None:
        self.directory = Path(directory)
        self.enabled = enabled
        self._current: Optional[Transcript] = None

    @property
    def current(self) -> Optional[Transcript]:
        return self._current

    def start(self, request: str) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        transcript_id = f"{stamp}-{uuid.uuid4().hex[:7]}"
        self._current = Transcript(id=transcript_id, request=request)
        LOGGER.info("Started transcript %s", transcript_id)
        return transcript_id

    def add_entry(self, role: str, content: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        if self._current is None:
            LOGGER.warning("Attempted to add a transcript entry without an active transcript")
            return
        self._current.entries.append(TranscriptEntry(role=role, content=content, metadata=metadata))

    def end(self, transcript_id: str, result: Optional[str] = None) -> None:
        if self._current is None or self._current.id != transcript_id:
            LOGGER.warning("Transcript %s not found or not active", transcript_id)
            return
        self._current.end_time = _now()
        self._current.result = result
        LOGGER.info("Ended transcript %s", transcript_id)

    def save(self) -> Optional[Path]:
        """Write the active transcript; returns ``None`` when nothing was written."""
        if self._current is None or not self.enabled:
            return None
        path = self.directory / f"transcript-{self._current.id}.json"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(self._current.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as error:
            LOGGER.error("Failed to save transcript %s: %s", self._current.id, error)
            return None
        LOGGER.info("Saved transcript to %s", path)
        return path
