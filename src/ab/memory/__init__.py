"""Persistence for plan executions."""

from .schema import ExecutionStatus, OperationRecord, OperationStatus, PlanExecution
from .store import ExecutionStore

__all__ = [
    "ExecutionStatus",
    "ExecutionStore",
    "OperationRecord",
    "OperationStatus",
    "PlanExecution",
]
