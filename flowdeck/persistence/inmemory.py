"""In-memory implementation of the execution store."""

from __future__ import annotations

from typing import Dict

from ..errors import ConflictError, NotFoundError
from ..models import ACTIVE_EXECUTION_STATUSES, Workflow, WorkflowExecution
from .repository import ExecutionStore


class InMemoryExecutionStore(ExecutionStore):
    """Store workflows and executions in local memory.

    Useful for tests or when no database is configured. Records are copied
    on the way in and out, so callers never share state with the store. Data
    is not persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._executions: Dict[str, WorkflowExecution] = {}

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: Workflow) -> None:
        if workflow.id in self._workflows:
            raise ConflictError(f"Workflow already exists: {workflow.id}")
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list_workflows(self) -> list[Workflow]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    async def update_workflow(self, workflow: Workflow) -> None:
        if workflow.id not in self._workflows:
            raise NotFoundError(f"Workflow not found: {workflow.id}")
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def delete_workflow(self, workflow_id: str) -> None:
        if workflow_id not in self._workflows:
            raise NotFoundError(f"Workflow not found: {workflow_id}")
        executions = [e for e in self._executions.values() if e.workflow_id == workflow_id]
        if any(e.status in ACTIVE_EXECUTION_STATUSES for e in executions):
            raise ConflictError(f"Workflow {workflow_id} has active executions")
        for execution in executions:
            del self._executions[execution.id]
        del self._workflows[workflow_id]

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(self, execution: WorkflowExecution) -> None:
        if execution.id in self._executions:
            raise ConflictError(f"Execution already exists: {execution.id}")
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def update_execution(self, execution: WorkflowExecution) -> None:
        if execution.id not in self._executions:
            raise NotFoundError(f"Execution not found: {execution.id}")
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def list_executions_for_workflow(self, workflow_id: str) -> list[WorkflowExecution]:
        return [
            e.model_copy(deep=True)
            for e in self._executions.values()
            if e.workflow_id == workflow_id
        ]

    async def list_executions(self) -> list[WorkflowExecution]:
        return [e.model_copy(deep=True) for e in self._executions.values()]
