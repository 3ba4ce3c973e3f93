"""PostgreSQL implementation of the execution store."""

from __future__ import annotations

from typing import Any

import asyncpg

from ..errors import ConflictError, NotFoundError, PersistenceError
from ..models import ACTIVE_EXECUTION_STATUSES, Workflow, WorkflowExecution
from .repository import ExecutionStore


class PostgresExecutionStore(ExecutionStore):
    """Persist workflows and executions using PostgreSQL (JSONB documents)."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (OSError, asyncpg.PostgresError) as e:
            raise PersistenceError(f"Cannot connect to PostgreSQL: {e}") from e
        if not self._initialized:
            try:
                await self._ensure_schema(conn)
            except (OSError, asyncpg.PostgresError) as e:
                await conn.close()
                raise PersistenceError(f"Cannot create PostgreSQL schema: {e}") from e
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                data JSONB NOT NULL,
                started_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    # Helper methods
    async def _execute(self, query: str, *params: Any) -> str:
        conn = await self._connect()
        try:
            return await conn.execute(query, *params)
        except asyncpg.UniqueViolationError as e:
            raise ConflictError(str(e)) from e
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e
        finally:
            await conn.close()

    @staticmethod
    def _affected(status: str) -> int:
        # asyncpg returns command tags such as "UPDATE 1"
        return int(status.split()[-1])

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: Workflow) -> None:
        try:
            await self._execute(
                "INSERT INTO workflows (id, name, status, data, created_at, updated_at) VALUES ($1, $2, $3, $4, $5, $6)",
                workflow.id,
                workflow.name,
                workflow.status.value,
                workflow.model_dump_json(),
                workflow.created_at,
                workflow.updated_at,
            )
        except ConflictError:
            raise ConflictError(f"Workflow already exists: {workflow.id}") from None

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        rows = await self._fetch("SELECT data FROM workflows WHERE id = $1", workflow_id)
        return Workflow.model_validate_json(rows[0]["data"]) if rows else None

    async def list_workflows(self) -> list[Workflow]:
        rows = await self._fetch("SELECT data FROM workflows ORDER BY created_at")
        return [Workflow.model_validate_json(row["data"]) for row in rows]

    async def update_workflow(self, workflow: Workflow) -> None:
        status = await self._execute(
            "UPDATE workflows SET name = $1, status = $2, data = $3, updated_at = $4 WHERE id = $5",
            workflow.name,
            workflow.status.value,
            workflow.model_dump_json(),
            workflow.updated_at,
            workflow.id,
        )
        if not self._affected(status):
            raise NotFoundError(f"Workflow not found: {workflow.id}")

    async def delete_workflow(self, workflow_id: str) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                exists = await conn.fetchval(
                    "SELECT 1 FROM workflows WHERE id = $1 FOR UPDATE", workflow_id
                )
                if not exists:
                    raise NotFoundError(f"Workflow not found: {workflow_id}")
                active = await conn.fetchval(
                    "SELECT COUNT(*) FROM executions WHERE workflow_id = $1 AND status = ANY($2::text[])",
                    workflow_id,
                    [status.value for status in ACTIVE_EXECUTION_STATUSES],
                )
                if active:
                    raise ConflictError(f"Workflow {workflow_id} has active executions")
                await conn.execute("DELETE FROM executions WHERE workflow_id = $1", workflow_id)
                await conn.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e)) from e
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(self, execution: WorkflowExecution) -> None:
        try:
            await self._execute(
                "INSERT INTO executions (id, workflow_id, status, data, started_at) VALUES ($1, $2, $3, $4, $5)",
                execution.id,
                execution.workflow_id,
                execution.status.value,
                execution.model_dump_json(),
                execution.started_at,
            )
        except ConflictError:
            raise ConflictError(f"Execution already exists: {execution.id}") from None

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        rows = await self._fetch("SELECT data FROM executions WHERE id = $1", execution_id)
        return WorkflowExecution.model_validate_json(rows[0]["data"]) if rows else None

    async def update_execution(self, execution: WorkflowExecution) -> None:
        status = await self._execute(
            "UPDATE executions SET status = $1, data = $2 WHERE id = $3",
            execution.status.value,
            execution.model_dump_json(),
            execution.id,
        )
        if not self._affected(status):
            raise NotFoundError(f"Execution not found: {execution.id}")

    async def list_executions_for_workflow(self, workflow_id: str) -> list[WorkflowExecution]:
        rows = await self._fetch(
            "SELECT data FROM executions WHERE workflow_id = $1 ORDER BY started_at",
            workflow_id,
        )
        return [WorkflowExecution.model_validate_json(row["data"]) for row in rows]

    async def list_executions(self) -> list[WorkflowExecution]:
        rows = await self._fetch("SELECT data FROM executions ORDER BY started_at")
        return [WorkflowExecution.model_validate_json(row["data"]) for row in rows]
