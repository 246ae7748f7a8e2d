"""Validated mutation pipeline: plan schema, validation and execution."""

from .executor import ExecutionResult, OperationError, OperationResult, PlanExecutor, apply_log_path
from .schemas import (
    Operation,
    PackageInstallOperation,
    PackageRemoveOperation,
    PatchOperation,
    Plan,
    WriteOperation,
)
from .validator import PlanValidationError, PlanValidator, ValidationResult

__all__ = [
    "ExecutionResult",
    "Operation",
    "OperationError",
    "OperationResult",
    "PackageInstallOperation",
    "PackageRemoveOperation",
    "PatchOperation",
    "Plan",
    "PlanExecutor",
    "PlanValidationError",
    "PlanValidator",
    "ValidationResult",
    "WriteOperation",
    "apply_log_path",
]
