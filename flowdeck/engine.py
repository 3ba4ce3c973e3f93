"""Workflow engine: drives executions wave by wave over the step graph.

Each pass of the driver recomputes which steps are ready, gates the ones that
need an operator, runs the rest concurrently and waits for all of them before
looking again. Every state change is written through to the store, which is
the source of truth: an execution that is not held in this engine's runtime
cache is reloaded from the store, so one process can pause an execution and
another can resume it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import FlowdeckConfig
from .errors import (
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
)
from .events import Event, EventBus, EventType
from .handlers.base import StepContext
from .handlers.registry import HandlerRegistry
from .models import (
    ExecutionStatus,
    InteractionType,
    Step,
    StepStatus,
    UserInteraction,
    Workflow,
    WorkflowExecution,
    utcnow,
)
from .persistence.repository import ExecutionStore
from .scheduler import ready_steps, satisfied_ids, validate_graph
from .state import RetryPolicy, transition

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Owns workflow definitions and runs their executions."""

    def __init__(
        self,
        store: ExecutionStore,
        registry: HandlerRegistry,
        events: Optional[EventBus] = None,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[FlowdeckConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or FlowdeckConfig()
        self.store = store
        self.registry = registry
        self.events = events or EventBus()
        self.retry_policy = retry_policy or RetryPolicy(
            self.settings.engine.retry_base_delay, self.settings.engine.retry_jitter
        )
        self._sleep = sleep
        self._executions: Dict[str, WorkflowExecution] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._wakeups: Dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Workflow definitions
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        validate_graph(workflow.steps)
        await self.store.create_workflow(workflow)
        logger.info(f"Created workflow {workflow.id} ({workflow.name})")
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow not found: {workflow_id}")
        return workflow

    async def list_workflows(self) -> List[Workflow]:
        return await self.store.list_workflows()

    async def update_workflow(self, workflow_id: str, **changes: Any) -> Workflow:
        workflow = await self.get_workflow(workflow_id)
        data = workflow.model_dump()
        data.update(changes)
        data["id"] = workflow.id
        data["updated_at"] = utcnow()
        updated = Workflow.model_validate(data)
        validate_graph(updated.steps)
        await self.store.update_workflow(updated)
        return updated

    async def delete_workflow(self, workflow_id: str) -> None:
        await self.store.delete_workflow(workflow_id)
        logger.info(f"Deleted workflow {workflow_id}")

    # ------------------------------------------------------------------
    # Executions
    async def invoke_workflow(
        self, workflow_id: str, initial_inputs: Optional[Dict[str, Any]] = None
    ) -> WorkflowExecution:
        """Start a new execution and drive it until it finishes or pauses.

        Raises:
            NotFoundError: If the workflow does not exist.
            ConfigurationError: If the graph is invalid or a step type has no
                handler. Nothing has run at that point.
            PersistenceError: If the execution cannot be stored.
        """
        workflow = await self.get_workflow(workflow_id)
        self.validate(workflow)

        execution = WorkflowExecution.for_workflow(workflow, initial_inputs)
        await self.store.create_execution(execution)
        self._executions[execution.id] = execution
        logger.info(f"Started execution {execution.id} of workflow {workflow.id}")
        self._emit(EventType.WORKFLOW_STARTED, execution, workflow)
        return await self._drive(execution)

    def validate(self, workflow: Workflow) -> None:
        validate_graph(workflow.steps)
        for step in workflow.steps:
            if not self.registry.supports(step.type):
                raise ConfigurationError(
                    f"No handler registered for step type: {step.type.value} (step {step.id})"
                )

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        return await self._load_execution(execution_id)

    async def list_executions(self, workflow_id: Optional[str] = None) -> List[WorkflowExecution]:
        if workflow_id is None:
            return await self.store.list_executions()
        return await self.store.list_executions_for_workflow(workflow_id)

    async def submit_user_interaction(
        self,
        execution_id: str,
        step_id: str,
        interaction: UserInteraction | InteractionType | str,
        data: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
    ) -> WorkflowExecution:
        """Apply an operator decision to a step and continue the execution.

        The execution is driven further unless it is on operator hold (paused
        through ``pause_execution``) or another call is already driving it.
        """
        execution = await self._load_execution(execution_id)
        if execution.is_terminal:
            raise InvalidTransitionError(
                f"Execution {execution_id} is {execution.status.value}"
            )
        if step_id not in execution.steps:
            raise NotFoundError(f"Step {step_id} not found in execution {execution_id}")

        if not isinstance(interaction, UserInteraction):
            interaction = UserInteraction(
                step_id=step_id,
                type=InteractionType(interaction),
                data=dict(data or {}),
                user_message=user_message,
            )
        elif interaction.step_id != step_id:
            raise ValueError(
                f"Interaction targets step {interaction.step_id}, not {step_id}"
            )

        def apply(target: WorkflowExecution) -> None:
            self._apply_interaction(target.steps[step_id], interaction)
            target.user_interactions.append(interaction)
            if target.status == ExecutionStatus.PAUSED and not target.operator_hold:
                target.status = ExecutionStatus.RUNNING

        workflow = await self.get_workflow(execution.workflow_id)
        await self._commit(execution, apply)
        logger.info(
            f"Execution {execution_id}: {interaction.type.value} on step {step_id}"
        )
        step = execution.steps[step_id]
        if interaction.type == InteractionType.REJECTION:
            self._emit(EventType.STEP_FAILED, execution, workflow, step=step, error=step.error)
        elif interaction.type == InteractionType.SKIP:
            self._emit(EventType.STEP_SKIPPED, execution, workflow, step=step)
        self._emit(EventType.USER_INTERACTION, execution, workflow, step=step, interaction=interaction)

        if execution.status != ExecutionStatus.RUNNING or self._is_driving(execution_id):
            self._wake(execution_id)
            return execution
        return await self._drive(execution)

    async def pause_execution(self, execution_id: str) -> WorkflowExecution:
        """Hold a running execution at the next wave boundary."""
        execution = await self._load_execution(execution_id)
        if execution.status != ExecutionStatus.RUNNING:
            raise InvalidTransitionError(
                f"Cannot pause execution {execution_id} in status {execution.status.value}"
            )

        def hold(target: WorkflowExecution) -> None:
            target.status = ExecutionStatus.PAUSED
            target.operator_hold = True

        await self._commit(execution, hold)
        logger.info(f"Paused execution {execution_id}")
        self._emit(EventType.WORKFLOW_PAUSED, execution)
        self._wake(execution_id)
        return execution

    async def resume_execution(self, execution_id: str) -> WorkflowExecution:
        execution = await self._load_execution(execution_id)
        if execution.status != ExecutionStatus.PAUSED:
            raise InvalidTransitionError(
                f"Cannot resume execution {execution_id} in status {execution.status.value}"
            )

        def release(target: WorkflowExecution) -> None:
            target.status = ExecutionStatus.RUNNING
            target.operator_hold = False

        await self._commit(execution, release)
        logger.info(f"Resumed execution {execution_id}")
        self._emit(EventType.WORKFLOW_RESUMED, execution)
        if self._is_driving(execution_id):
            return execution
        return await self._drive(execution)

    async def cancel_execution(self, execution_id: str) -> WorkflowExecution:
        """Cancel an execution. Steps already in flight finish their attempt."""
        execution = await self._load_execution(execution_id)
        if execution.is_terminal:
            raise InvalidTransitionError(
                f"Cannot cancel execution {execution_id} in status {execution.status.value}"
            )
        now = utcnow()
        await self._commit(
            execution, lambda target: target.finish(ExecutionStatus.CANCELLED, at=now)
        )
        logger.info(f"Cancelled execution {execution_id}")
        self._emit(EventType.WORKFLOW_CANCELLED, execution)
        self._wake(execution_id)
        if not self._is_driving(execution_id):
            self._forget(execution_id)
        return execution

    # ------------------------------------------------------------------
    # Driver
    async def _drive(self, execution: WorkflowExecution) -> WorkflowExecution:
        lock = self._locks.setdefault(execution.id, asyncio.Lock())
        if lock.locked():
            return execution

        async with lock:
            workflow = await self.get_workflow(execution.workflow_id)
            try:
                await self._run(execution, workflow)
            except PersistenceError:
                await self._fail(execution, workflow, "Execution state could not be persisted")
                raise
            except ConfigurationError as e:
                await self._fail(execution, workflow, str(e))
                raise

        if execution.is_terminal:
            self._forget(execution.id)
        return execution

    async def _run(self, execution: WorkflowExecution, workflow: Workflow) -> None:
        while execution.status == ExecutionStatus.RUNNING:
            steps = execution.ordered_steps()
            candidates = [
                step
                for step in ready_steps(steps, satisfied_ids(steps))
                if step.status == StepStatus.PENDING
            ]

            gated = [step for step in candidates if step.requires_approval]
            for step in gated:
                transition(step, StepStatus.PAUSED)
                logger.info(f"Step {step.id} of execution {execution.id} awaits user interaction")
                self._emit(EventType.USER_INTERACTION_REQUIRED, execution, workflow, step=step)
            if gated:
                await self.store.update_execution(execution)

            now = utcnow()
            eligible = [step for step in candidates if not step.requires_approval]
            runnable = [
                step
                for step in eligible
                if step.next_attempt_at is None or step.next_attempt_at <= now
            ]
            if runnable:
                await self._run_wave(execution, workflow, runnable)
                continue
            if eligible:
                delay = min((step.next_attempt_at - now).total_seconds() for step in eligible)
                await self._wait(execution.id, max(delay, 0.0))
                continue

            await self._settle(execution, workflow)

    async def _run_wave(
        self, execution: WorkflowExecution, workflow: Workflow, steps: List[Step]
    ) -> None:
        # outputs published by this wave are invisible to its own steps
        results = dict(execution.step_results)
        execution.waves.append([step.id for step in steps])
        execution.current_step_id = steps[0].id
        for step in steps:
            transition(step, StepStatus.RUNNING)
            step.attempts += 1
            step.error = None
            logger.info(
                f"Step {step.id} of execution {execution.id} started (attempt {step.attempts})"
            )
            self._emit(EventType.STEP_STARTED, execution, workflow, step=step)
        await self.store.update_execution(execution)

        outcomes = await asyncio.gather(
            *(
                self.registry.dispatch(
                    step, StepContext(execution.id, results, execution.inputs, step.inputs)
                )
                for step in steps
            ),
            return_exceptions=True,
        )

        fatal: Optional[ConfigurationError] = None
        for step, outcome in zip(steps, outcomes):
            if isinstance(outcome, ConfigurationError):
                self._fail_step(execution, workflow, step, outcome)
                fatal = fatal or outcome
            elif isinstance(outcome, Exception):
                self._handle_failure(execution, workflow, step, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                step.outputs = dict(outcome or {})
                execution.step_results[step.id] = step.outputs
                transition(step, StepStatus.COMPLETED)
                logger.info(f"Step {step.id} of execution {execution.id} completed")
                self._emit(EventType.STEP_COMPLETED, execution, workflow, step=step)

        await self.store.update_execution(execution)
        if fatal is not None:
            raise fatal

    def _handle_failure(
        self,
        execution: WorkflowExecution,
        workflow: Workflow,
        step: Step,
        error: Exception,
    ) -> None:
        if not self.retry_policy.should_retry(step, error):
            self._fail_step(execution, workflow, step, error)
            return
        transition(step, StepStatus.FAILED)
        step.error = str(error)
        self._emit(EventType.STEP_FAILED, execution, workflow, step=step, error=step.error)
        delay = self.retry_policy.schedule(step)
        logger.warning(
            f"Step {step.id} of execution {execution.id} failed: {error}; "
            f"retry {step.retry_count}/{step.max_retries} in {delay:.2f}s"
        )
        self._emit(EventType.STEP_RETRY_SCHEDULED, execution, workflow, step=step, error=step.error)

    def _fail_step(
        self,
        execution: WorkflowExecution,
        workflow: Workflow,
        step: Step,
        error: Exception,
    ) -> None:
        transition(step, StepStatus.FAILED)
        step.error = str(error)
        logger.error(f"Step {step.id} of execution {execution.id} failed: {error}")
        self._emit(EventType.STEP_FAILED, execution, workflow, step=step, error=str(error))

    async def _settle(self, execution: WorkflowExecution, workflow: Workflow) -> None:
        """Decide the execution status once no step can make progress."""
        steps = execution.ordered_steps()
        if all(step.is_satisfied for step in steps):
            execution.finish(ExecutionStatus.COMPLETED)
            execution.current_step_id = None
            await self.store.update_execution(execution)
            logger.info(f"Execution {execution.id} completed in {execution.total_duration:.2f}s")
            self._emit(EventType.WORKFLOW_COMPLETED, execution, workflow)
            return

        if any(step.status == StepStatus.PAUSED for step in steps):
            execution.status = ExecutionStatus.PAUSED
            await self.store.update_execution(execution)
            logger.info(f"Execution {execution.id} paused for user interaction")
            self._emit(EventType.WORKFLOW_PAUSED, execution, workflow)
            return

        failed = [step for step in steps if step.status == StepStatus.FAILED]
        if failed:
            error = f"Step {failed[0].id} failed: {failed[0].error}"
        else:
            error = "No runnable steps remain"
        execution.finish(ExecutionStatus.FAILED, error)
        await self.store.update_execution(execution)
        logger.error(f"Execution {execution.id} failed: {error}")
        self._emit(EventType.WORKFLOW_FAILED, execution, workflow, error=error)

    async def _fail(self, execution: WorkflowExecution, workflow: Workflow, error: str) -> None:
        """Record a fatal error; persisting the failure itself is best effort."""
        if not execution.is_terminal:
            execution.finish(ExecutionStatus.FAILED, error)
        logger.error(f"Execution {execution.id} failed: {error}")
        try:
            await self.store.update_execution(execution)
        except PersistenceError as e:
            logger.error(f"Could not persist failure of execution {execution.id}: {e}")
        self._emit(EventType.WORKFLOW_FAILED, execution, workflow, error=error)

    async def _wait(self, execution_id: str, delay: float) -> None:
        """Sleep until ``delay`` elapses or the execution is woken."""
        wakeup = self._wakeups.setdefault(execution_id, asyncio.Event())
        wakeup.clear()
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(wakeup.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()

    # ------------------------------------------------------------------
    # Helpers
    async def _commit(
        self,
        execution: WorkflowExecution,
        change: Callable[[WorkflowExecution], None],
    ) -> None:
        """Persist ``change`` first, then apply it to ``execution``.

        A failed write leaves ``execution`` untouched, including the live
        object a running driver works on.
        """
        staged = execution.model_copy(deep=True)
        change(staged)
        await self.store.update_execution(staged)
        change(execution)

    def _apply_interaction(self, step: Step, interaction: UserInteraction) -> None:
        kind = interaction.type
        if kind in (InteractionType.APPROVAL, InteractionType.INPUT):
            if step.status not in (StepStatus.PAUSED, StepStatus.PENDING):
                raise InvalidTransitionError(
                    f"Step {step.id} is {step.status.value}; nothing to approve"
                )
            step.user_approved = True
            step.inputs.update(interaction.data)
            if step.status == StepStatus.PAUSED:
                transition(step, StepStatus.PENDING)
        elif kind == InteractionType.REJECTION:
            if step.status != StepStatus.PAUSED:
                raise InvalidTransitionError(
                    f"Step {step.id} is {step.status.value}; only paused steps can be rejected"
                )
            transition(step, StepStatus.FAILED)
            step.error = interaction.user_message or "Rejected by user"
        elif kind == InteractionType.SKIP:
            transition(step, StepStatus.SKIPPED)
        elif kind == InteractionType.RETRY:
            if step.status not in (StepStatus.PAUSED, StepStatus.FAILED):
                raise InvalidTransitionError(
                    f"Step {step.id} is {step.status.value}; only paused or failed steps can be retried"
                )
            transition(step, StepStatus.PENDING)
            step.retry_count = 0
            step.error = None
            step.next_attempt_at = None
        elif kind == InteractionType.MODIFICATION:
            step.inputs.update(interaction.data)

    async def _load_execution(self, execution_id: str) -> WorkflowExecution:
        # the live object is authoritative only while this engine drives it
        if self._is_driving(execution_id):
            return self._executions[execution_id]
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise NotFoundError(f"Execution not found: {execution_id}")
        if execution.is_terminal:
            self._forget(execution_id)
        else:
            self._executions[execution_id] = execution
        return execution

    def _is_driving(self, execution_id: str) -> bool:
        lock = self._locks.get(execution_id)
        return lock is not None and lock.locked()

    def _wake(self, execution_id: str) -> None:
        wakeup = self._wakeups.get(execution_id)
        if wakeup is not None:
            wakeup.set()

    def _forget(self, execution_id: str) -> None:
        self._executions.pop(execution_id, None)
        self._locks.pop(execution_id, None)
        self._wakeups.pop(execution_id, None)

    def _emit(
        self,
        event_type: EventType,
        execution: WorkflowExecution,
        workflow: Optional[Workflow] = None,
        step: Optional[Step] = None,
        error: Optional[str] = None,
        interaction: Optional[UserInteraction] = None,
    ) -> None:
        self.events.emit(
            Event(
                type=event_type,
                execution=execution,
                workflow=workflow,
                step=step,
                error=error,
                interaction=interaction,
            )
        )


__all__ = ["WorkflowEngine"]
