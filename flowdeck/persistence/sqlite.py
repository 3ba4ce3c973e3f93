"""SQLite implementation of the execution store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..errors import ConflictError, NotFoundError, PersistenceError
from ..models import ACTIVE_EXECUTION_STATUSES, Workflow, WorkflowExecution
from .repository import ExecutionStore


class SQLiteExecutionStore(ExecutionStore):
    """Persist workflows and executions using SQLite.

    Each record is stored as its JSON document next to the columns used for
    lookups. Blocking calls run in a worker thread.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._ensure_schema()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open SQLite store {self.db_path}: {e}") from e

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                data TEXT NOT NULL,
                started_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_workflow ON executions (workflow_id)"
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                self._conn.commit()
                return cur.rowcount
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                raise ConflictError(str(e)) from e
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceError(str(e)) from e

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                return cur.fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(str(e)) from e

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                return cur.fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(str(e)) from e

    def _delete_workflow(self, workflow_id: str) -> None:
        statuses = [status.value for status in ACTIVE_EXECUTION_STATUSES]
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute("SELECT 1 FROM workflows WHERE id = ?", (workflow_id,))
                if cur.fetchone() is None:
                    raise NotFoundError(f"Workflow not found: {workflow_id}")
                cur.execute(
                    "SELECT COUNT(*) FROM executions WHERE workflow_id = ? AND status IN (?, ?)",
                    (workflow_id, *statuses),
                )
                if cur.fetchone()[0]:
                    raise ConflictError(f"Workflow {workflow_id} has active executions")
                cur.execute("DELETE FROM executions WHERE workflow_id = ?", (workflow_id,))
                cur.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceError(str(e)) from e

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: Workflow) -> None:
        try:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO workflows (id, name, status, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                workflow.id,
                workflow.name,
                workflow.status.value,
                workflow.model_dump_json(),
                workflow.created_at.isoformat(),
                workflow.updated_at.isoformat(),
            )
        except ConflictError:
            raise ConflictError(f"Workflow already exists: {workflow.id}") from None

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflows WHERE id = ?", workflow_id
        )
        return Workflow.model_validate_json(row["data"]) if row else None

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM workflows ORDER BY created_at"
        )
        return [Workflow.model_validate_json(row["data"]) for row in rows]

    async def update_workflow(self, workflow: Workflow) -> None:
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE workflows SET name = ?, status = ?, data = ?, updated_at = ? WHERE id = ?",
            workflow.name,
            workflow.status.value,
            workflow.model_dump_json(),
            workflow.updated_at.isoformat(),
            workflow.id,
        )
        if not updated:
            raise NotFoundError(f"Workflow not found: {workflow.id}")

    async def delete_workflow(self, workflow_id: str) -> None:
        await asyncio.to_thread(self._delete_workflow, workflow_id)

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(self, execution: WorkflowExecution) -> None:
        try:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO executions (id, workflow_id, status, data, started_at) VALUES (?, ?, ?, ?, ?)",
                execution.id,
                execution.workflow_id,
                execution.status.value,
                execution.model_dump_json(),
                execution.started_at.isoformat(),
            )
        except ConflictError:
            raise ConflictError(f"Execution already exists: {execution.id}") from None

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM executions WHERE id = ?", execution_id
        )
        return WorkflowExecution.model_validate_json(row["data"]) if row else None

    async def update_execution(self, execution: WorkflowExecution) -> None:
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE executions SET status = ?, data = ? WHERE id = ?",
            execution.status.value,
            execution.model_dump_json(),
            execution.id,
        )
        if not updated:
            raise NotFoundError(f"Execution not found: {execution.id}")

    async def list_executions_for_workflow(self, workflow_id: str) -> list[WorkflowExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM executions WHERE workflow_id = ? ORDER BY started_at",
            workflow_id,
        )
        return [WorkflowExecution.model_validate_json(row["data"]) for row in rows]

    async def list_executions(self) -> list[WorkflowExecution]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM executions ORDER BY started_at"
        )
        return [WorkflowExecution.model_validate_json(row["data"]) for row in rows]
