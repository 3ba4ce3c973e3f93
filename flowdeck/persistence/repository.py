"""Store abstraction for workflow definitions and executions."""

from __future__ import annotations

from typing import Protocol

from ..models import Workflow, WorkflowExecution


class ExecutionStore(Protocol):
    """Protocol for durable workflow and execution storage.

    ``get_*`` return ``None`` for unknown ids. ``update_*`` and ``delete_*``
    raise ``NotFoundError`` for unknown ids, ``create_*`` raises
    ``ConflictError`` for an id that already exists and backend failures
    surface as ``PersistenceError``.
    """

    async def create_workflow(self, workflow: Workflow) -> None:
        """Persist a new workflow definition."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow definition by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all workflow definitions, oldest first."""

    async def update_workflow(self, workflow: Workflow) -> None:
        """Replace a stored workflow definition."""

    async def delete_workflow(self, workflow_id: str) -> None:
        """Remove a workflow and its executions.

        Raises ``ConflictError`` while any of its executions is running or
        paused.
        """

    async def create_execution(self, execution: WorkflowExecution) -> None:
        """Persist a new execution."""

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Retrieve an execution by id."""

    async def update_execution(self, execution: WorkflowExecution) -> None:
        """Replace a stored execution."""

    async def list_executions_for_workflow(self, workflow_id: str) -> list[WorkflowExecution]:
        """Return executions of one workflow, oldest first."""

    async def list_executions(self) -> list[WorkflowExecution]:
        """Return all executions, oldest first."""
