"""Durable storage for plan executions and their per-operation results."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional

from .schema import ExecutionStatus, OperationRecord, OperationStatus, PlanExecution

__all__ = ["DEFAULT_DB_PATH", "ExecutionStore"]

DEFAULT_DB_PATH = Path("data/ab.sqlite")
LOGGER = logging.getLogger(__name__)


def _as_iso(timestamp: Optional[datetime]) -> Optional[str]:
    """Serialise a timestamp to a timezone-aware ISO 8601 string."""
    if timestamp is None:
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp produced by `_as_iso`."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def _dump_json(data: Any) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data, sort_keys=True)


def _load_json(value: Optional[str], *, default: Any) -> Any:
    """Decode JSON columns while falling back to the provided default."""
    if not value:
        return default
    data = json.loads(value)
    if data is None:
        return default
    return data


class ExecutionStore:
    """SQLite-backed persistence for plan executions."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path)
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = self._open_connection()
        self._bootstrap()

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "ExecutionStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("ExecutionStore is closed")
        return self._conn

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path))
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    def _bootstrap(self) -> None:
        self.connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS plan_executions (
                plan_id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                workspace_id TEXT NOT NULL,
                status TEXT NOT NULL,
                total_ops INTEGER NOT NULL,
                succeeded_ops INTEGER NOT NULL DEFAULT 0,
                failed_ops INTEGER NOT NULL DEFAULT 0,
                skipped_ops INTEGER NOT NULL DEFAULT 0,
                log_path TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                duration_ms INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS plan_operations (
                plan_id TEXT NOT NULL,
                operation_index INTEGER NOT NULL,
                operation_type TEXT NOT NULL,
                operation_params TEXT NOT NULL,
                status TEXT NOT NULL,
                result TEXT,
                error TEXT,
                duration_ms INTEGER NOT NULL DEFAULT 0,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                PRIMARY KEY (plan_id, operation_index),
                FOREIGN KEY(plan_id) REFERENCES plan_executions(plan_id) ON DELETE CASCADE
            );
            CREATE INDEX IF NOT EXISTS idx_plan_executions_status
                ON plan_executions(status);
            """
        )
        self.connection.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        connection = self.connection
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise

    # Plan executions -----------------------------------------------------------------
    def create_execution(self, execution: PlanExecution) -> bool:
        """Insert ``execution`` unless the plan already has a row; return whether it was inserted."""
        with self._transaction() as connection:
            cursor = connection.execute(
                """
                INSERT INTO plan_executions (
                    plan_id, session_id, workspace_id, status, total_ops,
                    succeeded_ops, failed_ops, skipped_ops, log_path,
                    started_at, completed_at, duration_ms
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(plan_id) DO NOTHING
                """,
                (
                    execution.plan_id,
                    execution.session_id,
                    execution.workspace_id,
                    execution.status.value,
                    execution.total_ops,
                    execution.succeeded_ops,
                    execution.failed_ops,
                    execution.skipped_ops,
                    execution.log_path,
                    _as_iso(execution.started_at),
                    _as_iso(execution.completed_at),
                    execution.duration_ms,
                ),
            )
            inserted = cursor.rowcount == 1
        if not inserted:
            LOGGER.info("Plan execution %s already recorded", execution.plan_id)
        return inserted

    def update_execution(self, execution: PlanExecution) -> None:
        with self._transaction() as connection:
            connection.execute(
                """
                UPDATE plan_executions
                SET status = ?, succeeded_ops = ?, failed_ops = ?, skipped_ops = ?,
                    log_path = ?, completed_at = ?, duration_ms = ?
                WHERE plan_id = ?
                """,
                (
                    execution.status.value,
                    execution.succeeded_ops,
                    execution.failed_ops,
                    execution.skipped_ops,
                    execution.log_path,
                    _as_iso(execution.completed_at),
                    execution.duration_ms,
                    execution.plan_id,
                ),
            )

    def get_execution(self, plan_id: str) -> Optional[PlanExecution]:
        row = self.connection.execute(
            "SELECT * FROM plan_executions WHERE plan_id = ?",
            (plan_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_execution(row)

    def list_executions(self, limit: Optional[int] = None) -> List[PlanExecution]:
        query = "SELECT * FROM plan_executions ORDER BY started_at DESC"
        params: tuple[Any, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        rows = self.connection.execute(query, params).fetchall()
        return [self._row_to_execution(row) for row in rows]

    # Operations ----------------------------------------------------------------------
    def save_operation(self, record: OperationRecord) -> None:
        with self._transaction() as connection:
            connection.execute(
                """
                INSERT INTO plan_operations (
                    plan_id, operation_index, operation_type, operation_params,
                    status, result, error, duration_ms, started_at, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(plan_id, operation_index) DO UPDATE SET
                    status = excluded.status,
                    result = excluded.result,
                    error = excluded.error,
                    duration_ms = excluded.duration_ms,
                    completed_at = excluded.completed_at
                """,
                (
                    record.plan_id,
                    record.index,
                    record.type,
                    json.dumps(record.params, sort_keys=True),
                    record.status.value,
                    _dump_json(record.result),
                    record.error,
                    record.duration_ms,
                    _as_iso(record.started_at),
                    _as_iso(record.completed_at),
                ),
            )

    def list_operations(self, plan_id: str) -> List[OperationRecord]:
        rows = self.connection.execute(
            """
            SELECT * FROM plan_operations
            WHERE plan_id = ?
            ORDER BY operation_index ASC
            """,
            (plan_id,),
        ).fetchall()
        return [self._row_to_operation(row) for row in rows]

    # Row conversion ------------------------------------------------------------------
    @staticmethod
    def _row_to_execution(row: sqlite3.Row) -> PlanExecution:
        return PlanExecution(
            plan_id=row["plan_id"],
            session_id=row["session_id"],
            workspace_id=row["workspace_id"],
            status=ExecutionStatus(row["status"]),
            total_ops=row["total_ops"],
            succeeded_ops=row["succeeded_ops"],
            failed_ops=row["failed_ops"],
            skipped_ops=row["skipped_ops"],
            log_path=row["log_path"],
            started_at=_from_iso(row["started_at"]),
            completed_at=_from_iso(row["completed_at"]),
            duration_ms=row["duration_ms"],
        )

    @staticmethod
    def _row_to_operation(row: sqlite3.Row) -> OperationRecord:
        return OperationRecord(
            plan_id=row["plan_id"],
            index=row["operation_index"],
            type=row["operation_type"],
            params=_load_json(row["operation_params"], default={}),
            status=OperationStatus(row["status"]),
            result=_load_json(row["result"], default=None),
            error=row["error"],
            duration_ms=row["duration_ms"],
            started_at=_from_iso(row["started_at"]),
            completed_at=_from_iso(row["completed_at"]),
        )
