"""Workspace tools exposed to the agent."""

from __future__ import annotations

from .definitions import (
    EDIT_TOOL,
    READ_TOOL,
    SEARCH_TOOL,
    TOOL_INPUT_MODELS,
    WEB_SEARCH_TOOL,
    WRITE_TOOL,
    tool_definitions,
)
from .executors import ToolContext, ToolExecutor, ToolOutput, default_executors
from .gateway import ToolGateway
from .metrics import MetricsCollector, ToolMetric
from .security import SecurityGuard
from .verifier import StepResult, VerifierRunner, VerifyResult

__all__ = [
    "EDIT_TOOL",
    "MetricsCollector",
    "READ_TOOL",
    "SEARCH_TOOL",
    "SecurityGuard",
    "StepResult",
    "TOOL_INPUT_MODELS",
    "ToolContext",
    "ToolExecutor",
    "ToolGateway",
    "ToolMetric",
    "ToolOutput",
    "VerifierRunner",
    "VerifyResult",
    "WEB_SEARCH_TOOL",
    "WRITE_TOOL",
    "default_executors",
    "tool_definitions",
]
