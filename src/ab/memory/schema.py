"""Typed records persisted by the plan execution store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "ExecutionStatus",
    "OperationRecord",
    "OperationStatus",
    "PlanExecution",
    "RecordModel",
    "utc_now",
]


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class ExecutionStatus(str, Enum):
    """Lifecycle states for a plan execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class OperationStatus(str, Enum):
    """Lifecycle states for a single plan operation."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PlanExecution(RecordModel):
    """One row per plan identifier, mutated in place until ``completed_at`` is set."""

    plan_id: str
    session_id: str
    workspace_id: str
    total_ops: int
    succeeded_ops: int = 0
    failed_ops: int = 0
    skipped_ops: int = 0
    status: ExecutionStatus = ExecutionStatus.RUNNING
    log_path: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: int = 0


class OperationRecord(RecordModel):
    """Outcome of a single operation, keyed by plan and index."""

    plan_id: str
    index: int
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)
    status: OperationStatus = OperationStatus.RUNNING
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: int = 0
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
