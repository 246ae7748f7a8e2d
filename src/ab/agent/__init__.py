"""Conversation orchestration for the app builder agent."""

from __future__ import annotations

from .conversation import ConversationIntegrityError, ConversationState, validate_conversation
from .enforcer import ResolvedTurn, resolve
from .orchestrator import Agent, AgentResult
from .phases import AgentPhase, PhaseEvent, PhaseTracker
from .references import MissingReference, find_missing_references, format_missing_warning
from .transcript import TranscriptRecorder

__all__ = [
    "Agent",
    "AgentPhase",
    "AgentResult",
    "ConversationIntegrityError",
    "ConversationState",
    "MissingReference",
    "PhaseEvent",
    "PhaseTracker",
    "ResolvedTurn",
    "TranscriptRecorder",
    "find_missing_references",
    "format_missing_warning",
    "resolve",
    "validate_conversation",
]
