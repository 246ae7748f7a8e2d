"""Sequential, idempotent execution of validated plans against a workspace."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Sequence

from ..memory.schema import ExecutionStatus, OperationRecord, OperationStatus, PlanExecution, utc_now
from ..memory.store import ExecutionStore
from ..telemetry import emit_event
from ..workspace import Workspace, WorkspaceError, WorkspaceResolver
from .schemas import (
    Operation,
    PackageInstallOperation,
    PackageRemoveOperation,
    PatchOperation,
    Plan,
    WriteOperation,
)

__all__ = [
    "ExecutionResult",
    "OperationError",
    "OperationResult",
    "PlanExecutor",
    "apply_log_path",
]

LOGGER = logging.getLogger(__name__)

MANIFEST_PATH = "package.json"
NO_CHANGES_MESSAGE = "No changes needed - packages already in desired state"


class OperationError(RuntimeError):
    """Raised by an operation handler; recorded as a failed operation."""


def apply_log_path(plan_id: str) -> str:
    """Return the workspace-relative path of a plan's audit log."""
    return f"plan/apply-log-{plan_id}.json"


@dataclass(slots=True)
class OperationResult:
    """Outcome of one operation as reported to callers."""

    index: int
    type: str
    status: Literal["success", "failed", "skipped"]
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"index": self.index, "type": self.type, "status": self.status}
        if self.result is not None:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
        payload["durationMs"] = self.duration_ms
        return payload


@dataclass(slots=True)
class ExecutionResult:
    """Summary returned for an executed (or previously executed) plan."""

    plan_id: str
    total_ops: int
    succeeded_ops: int
    failed_ops: int
    skipped_ops: int
    status: str
    operations: List[OperationResult] = field(default_factory=list)
    log_path: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id,
            "totalOps": self.total_ops,
            "succeededOps": self.succeeded_ops,
            "failedOps": self.failed_ops,
            "skippedOps": self.skipped_ops,
            "status": self.status,
            "operations": [operation.to_dict() for operation in self.operations],
            "logPath": self.log_path,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationMs": self.duration_ms,
        }


class PlanExecutor:
    """Apply plan operations in order, stopping at the first failure."""

    def __init__(self, store: ExecutionStore, workspaces: WorkspaceResolver) -> None:
        self._store = store
        self._workspaces = workspaces

    def execute(self, plan: Plan, workspace_id: str) -> ExecutionResult:
        """Execute ``plan`` once; later calls for the same plan return the stored result."""
        if self._store.get_execution(plan.plan_id) is not None:
            return self._reuse(plan.plan_id)

        execution = PlanExecution(
            plan_id=plan.plan_id,
            session_id=plan.session_id,
            workspace_id=workspace_id,
            total_ops=len(plan.operations),
            status=ExecutionStatus.RUNNING,
        )
        if not self._store.create_execution(execution):
            return self._reuse(plan.plan_id)

        started = time.perf_counter()
        LOGGER.info("Executing plan %s (%d operation(s))", plan.plan_id, len(plan.operations))
        emit_event(
            "plan.execution.started",
            plan_id=plan.plan_id,
            session_id=plan.session_id,
            workspace_id=workspace_id,
            operation_count=len(plan.operations),
        )

        workspace: Optional[Workspace] = None
        workspace_error: Optional[str] = None
        try:
            workspace = self._workspaces(workspace_id)
        except WorkspaceError as error:
            workspace_error = str(error)

        records: list[OperationRecord] = []
        for index, operation in enumerate(plan.operations):
            record = OperationRecord(
                plan_id=plan.plan_id,
                index=index,
                type=operation.type,
                params=operation.model_dump(mode="json"),
                status=OperationStatus.RUNNING,
            )
            self._store.save_operation(record)
            op_started = time.perf_counter()
            try:
                if workspace is None:
                    raise OperationError(workspace_error or f"Unknown workspace: {workspace_id}")
                record.result = self._apply(operation, workspace)
                record.status = OperationStatus.SUCCESS
            except (OperationError, OSError, ValueError) as error:
                record.status = OperationStatus.FAILED
                record.error = str(error)
            record.duration_ms = _elapsed_ms(op_started)
            record.completed_at = utc_now()
            self._store.save_operation(record)
            records.append(record)

            if record.status is OperationStatus.FAILED:
                LOGGER.warning("Plan %s operation %d (%s) failed: %s", plan.plan_id, index, operation.type, record.error)
                emit_event(
                    "plan.operation.failed",
                    plan_id=plan.plan_id,
                    operation_index=index,
                    operation_type=operation.type,
                    error=record.error,
                    duration_ms=record.duration_ms,
                )
                records.extend(self._skip_remaining(plan, index + 1))
                break

            emit_event(
                "plan.operation.success",
                plan_id=plan.plan_id,
                operation_index=index,
                operation_type=operation.type,
                duration_ms=record.duration_ms,
            )

        succeeded = sum(1 for record in records if record.status is OperationStatus.SUCCESS)
        failed = sum(1 for record in records if record.status is OperationStatus.FAILED)
        skipped = sum(1 for record in records if record.status is OperationStatus.SKIPPED)
        if failed == 0:
            execution.status = ExecutionStatus.COMPLETED
        elif succeeded == 0:
            execution.status = ExecutionStatus.FAILED
        else:
            execution.status = ExecutionStatus.PARTIAL
        execution.succeeded_ops = succeeded
        execution.failed_ops = failed
        execution.skipped_ops = skipped
        execution.duration_ms = _elapsed_ms(started)
        execution.completed_at = utc_now()

        if workspace is not None:
            execution.log_path = self._write_apply_log(workspace, plan, execution, records)
        self._store.update_execution(execution)

        LOGGER.info(
            "Plan %s finished with status %s (%d succeeded, %d failed, %d skipped)",
            plan.plan_id,
            execution.status.value,
            succeeded,
            failed,
            skipped,
        )
        emit_event(
            "plan.execution.completed",
            plan_id=plan.plan_id,
            status=execution.status,
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            duration_ms=execution.duration_ms,
        )
        return self.load_result(plan.plan_id)

    def load_result(self, plan_id: str) -> ExecutionResult:
        """Rebuild an :class:`ExecutionResult` from the store."""
        execution = self._store.get_execution(plan_id)
        if execution is None:
            raise KeyError(f"No execution recorded for plan {plan_id}")
        operations = [
            OperationResult(
                index=record.index,
                type=record.type,
                status=record.status.value,  # type: ignore[arg-type]
                result=record.result,
                error=record.error,
                duration_ms=record.duration_ms,
            )
            for record in self._store.list_operations(plan_id)
        ]
        return ExecutionResult(
            plan_id=execution.plan_id,
            total_ops=execution.total_ops,
            succeeded_ops=execution.succeeded_ops,
            failed_ops=execution.failed_ops,
            skipped_ops=execution.skipped_ops,
            status=execution.status.value,
            operations=operations,
            log_path=execution.log_path,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            duration_ms=execution.duration_ms,
        )

    def _reuse(self, plan_id: str) -> ExecutionResult:
        LOGGER.info("Plan %s already executed; returning stored result", plan_id)
        emit_event("plan.execution.reused", plan_id=plan_id)
        return self.load_result(plan_id)

    def _skip_remaining(self, plan: Plan, start: int) -> List[OperationRecord]:
        skipped: list[OperationRecord] = []
        for index in range(start, len(plan.operations)):
            operation = plan.operations[index]
            record = OperationRecord(
                plan_id=plan.plan_id,
                index=index,
                type=operation.type,
                params=operation.model_dump(mode="json"),
                status=OperationStatus.SKIPPED,
                completed_at=utc_now(),
            )
            self._store.save_operation(record)
            skipped.append(record)
        return skipped

    # Handlers ------------------------------------------------------------------------
    def _apply(self, operation: Operation, workspace: Workspace) -> Dict[str, Any]:
        if isinstance(operation, WriteOperation):
            return _apply_write(operation, workspace)
        if isinstance(operation, PatchOperation):
            return _apply_patch(operation, workspace)
        if isinstance(operation, PackageInstallOperation):
            return _update_manifest(workspace, "package_install", operation.packages, dev=operation.dev)
        if isinstance(operation, PackageRemoveOperation):
            return _update_manifest(workspace, "package_remove", operation.packages, dev=False)
        raise OperationError(f"Unknown operation type: {getattr(operation, 'type', operation)!r}")

    def _write_apply_log(
        self,
        workspace: Workspace,
        plan: Plan,
        execution: PlanExecution,
        records: Sequence[OperationRecord],
    ) -> Optional[str]:
        path = apply_log_path(plan.plan_id)
        entries = []
        for record in records:
            entry = OperationResult(
                index=record.index,
                type=record.type,
                status=record.status.value,  # type: ignore[arg-type]
                result=record.result,
                error=record.error,
                duration_ms=record.duration_ms,
            ).to_dict()
            entry["operation"] = plan.operations[record.index].model_dump(mode="json")
            entries.append(entry)
        document = {
            "planId": plan.plan_id,
            "sessionId": plan.session_id,
            "appId": execution.workspace_id,
            "executedAt": utc_now().isoformat(),
            "status": execution.status.value,
            "summary": {
                "total": execution.total_ops,
                "succeeded": execution.succeeded_ops,
                "failed": execution.failed_ops,
                "skipped": execution.skipped_ops,
                "durationMs": execution.duration_ms,
            },
            "operations": entries,
        }
        try:
            workspace.write_text(path, json.dumps(document, indent=2))
        except OSError as error:
            LOGGER.error("Failed to write apply log for plan %s: %s", plan.plan_id, error)
            return None
        LOGGER.debug("Apply log written to %s", path)
        return path


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


def _apply_write(operation: WriteOperation, workspace: Workspace) -> Dict[str, Any]:
    workspace.write_text(operation.path, operation.content)
    return {
        "operation": "write",
        "path": operation.path,
        "size": len(operation.content),
        "lines": operation.content.count("\n") + 1,
    }


def _apply_patch(operation: PatchOperation, workspace: Workspace) -> Dict[str, Any]:
    original = workspace.read_text(operation.path)
    occurrences = original.count(operation.search)
    if occurrences == 0:
        raise OperationError(f"Pattern '{operation.search[:50]}...' not found in {operation.path}")
    updated = original.replace(operation.search, operation.replace, 1)
    workspace.write_text(operation.path, updated)
    return {
        "operation": "patch",
        "path": operation.path,
        "occurrences": occurrences,
        "searchPattern": operation.search[:100],
        "sizeDiff": len(updated) - len(original),
    }


def _update_manifest(
    workspace: Workspace,
    operation: Literal["package_install", "package_remove"],
    packages: Sequence[str],
    *,
    dev: bool,
) -> Dict[str, Any]:
    raw = workspace.read_text(MANIFEST_PATH)
    try:
        manifest = json.loads(raw)
    except json.JSONDecodeError as error:
        raise OperationError(f"Malformed {MANIFEST_PATH}: {error}") from error
    if not isinstance(manifest, dict):
        raise OperationError(f"Malformed {MANIFEST_PATH}: expected a JSON object")

    target = "devDependencies" if dev else "dependencies"
    dependencies = manifest.get(target)
    if dependencies is None:
        dependencies = {}
        manifest[target] = dependencies
    if not isinstance(dependencies, dict):
        raise OperationError(f"Malformed {MANIFEST_PATH}: '{target}' must be an object")

    modified: list[str] = []
    for name in packages:
        if operation == "package_install" and name not in dependencies:
            dependencies[name] = "latest"
            modified.append(name)
        elif operation == "package_remove" and name in dependencies:
            del dependencies[name]
            modified.append(name)

    if not modified:
        return {"operation": operation, "modified": [], "message": NO_CHANGES_MESSAGE}

    workspace.write_text(MANIFEST_PATH, json.dumps(manifest, indent=2, ensure_ascii=False) + "\n")
    return {"operation": operation, "modified": modified, "target": target, "path": MANIFEST_PATH}
