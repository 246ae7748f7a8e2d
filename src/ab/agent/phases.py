"""Streaming phase state machine for one agent request.

Text that arrives before the model commits to tool calls is buffered as
``thinking`` and replayed as ``reasoning`` once tool calls show up. Text from
the closing turn after tools ran is replayed as ``building``. Replay is paced
in small word chunks.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..config import REASONING_STREAM_CHUNK_SIZE, REASONING_STREAM_DELAY_MS
from ..telemetry import emit_event

__all__ = ["AgentPhase", "PhaseEvent", "PhaseTracker", "chunk_words"]

LOGGER = logging.getLogger(__name__)

_WORD = re.compile(r"\S+\s*|\s+")


class AgentPhase(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    REASONING = "reasoning"
    CODE_WRITING = "code-writing"
    BUILDING = "building"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class PhaseEvent:
    """A phase change (``text`` is ``None``) or a replayed text chunk."""

    phase: AgentPhase
    text: Optional[str] = None


PhaseCallback = Callable[[PhaseEvent], None]


def chunk_words(text: str, size: int) -> List[str]:
    """Split ``text`` into chunks of ``size`` words, keeping the whitespace."""
    words = _WORD.findall(text)
    return ["".join(words[start : start + size]) for start in range(0, len(words), max(1, size))]


class PhaseTracker:
    def __init__(
        self,
        on_event: Optional[PhaseCallback] = None,
        *,
        chunk_size: int = REASONING_STREAM_CHUNK_SIZE,
        delay_ms: int = REASONING_STREAM_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._on_event = on_event
        self._chunk_size = chunk_size
        self._delay = delay_ms / 1000.0
        self._sleep = sleep
        self._phase = AgentPhase.IDLE
        self._buffer: List[str] = []
        self._tools_this_turn = False
        self.transitions: List[AgentPhase] = []

    @property
    def phase(self) -> AgentPhase:
        return self._phase

    @property
    def buffered_text(self) -> str:
        return "".join(self._buffer)

    def begin_request(self) -> None:
        self._buffer.clear()
        self._tools_this_turn = False
        self.transitions = []
        self._phase = AgentPhase.IDLE

    def begin_turn(self) -> None:
        self._buffer.clear()
        self._tools_this_turn = False

    def observe_text(self, text: str) -> None:
        """Buffer a streamed text fragment without showing it."""
        if not text:
            return
        if not self._buffer and not self._tools_this_turn and self._phase is AgentPhase.IDLE:
            self._enter(AgentPhase.THINKING)
        self._buffer.append(text)

    def tools_requested(self) -> None:
        """Replay buffered text as reasoning, then move to code writing."""
        self._tools_this_turn = True
        if self._buffer:
            self._replay(AgentPhase.REASONING)
        self._enter(AgentPhase.CODE_WRITING)

    def finish(self, tools_ran: bool) -> None:
        """Close a request whose last turn requested no tools."""
        if tools_ran and self._buffer:
            self._replay(AgentPhase.BUILDING)
        self._buffer.clear()
        self._enter(AgentPhase.COMPLETED)

    def _replay(self, phase: AgentPhase) -> None:
        text = "".join(self._buffer)
        self._buffer.clear()
        self._enter(phase)
        chunks = chunk_words(text, self._chunk_size)
        for index, chunk in enumerate(chunks):
            self._notify(PhaseEvent(phase, chunk))
            if self._delay and index < len(chunks) - 1:
                self._sleep(self._delay)

    def _enter(self, phase: AgentPhase) -> None:
        if phase is self._phase:
            return
        LOGGER.debug("Agent phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self.transitions.append(phase)
        emit_event("agent.phase", phase=phase)
        self._notify(PhaseEvent(phase))

    def _notify(self, event: PhaseEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)
