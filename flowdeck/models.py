"""Workflow, step and execution data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_MAX_RETRIES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class StepType(str, Enum):
    """Handler capability a step is executed with."""

    AI_ACTION = "ai_action"
    API_CALL = "api_call"
    DATA_PROCESSING = "data_processing"
    USER_INPUT = "user_input"
    DECISION = "decision"
    LOOP = "loop"
    PARALLEL = "parallel"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    SKIPPED = "skipped"


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class InteractionType(str, Enum):
    """Operator decisions that can be submitted for a step."""

    APPROVAL = "approval"
    REJECTION = "rejection"
    INPUT = "input"
    MODIFICATION = "modification"
    SKIP = "skip"
    RETRY = "retry"


SUCCESS_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})
ACTIVE_EXECUTION_STATUSES = frozenset({ExecutionStatus.RUNNING, ExecutionStatus.PAUSED})


class Step(BaseModel):
    """A single unit of work inside a workflow.

    The same model describes a step in a workflow definition and carries the
    mutable execution state of that step inside a ``WorkflowExecution``.
    """

    id: str
    type: StepType
    name: str = ""
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    dependencies: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    user_approval_required: bool = False
    user_approved: bool = False
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    attempts: int = Field(default=0, ge=0)
    next_attempt_at: Optional[datetime] = None
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None

    @property
    def requires_approval(self) -> bool:
        """``True`` while the step must wait for an operator before running."""
        gated = self.user_approval_required or self.type == StepType.USER_INPUT
        return gated and not self.user_approved

    @property
    def is_satisfied(self) -> bool:
        """Completed or skipped: dependents may run."""
        return self.status in SUCCESS_STATUSES

    def display_name(self) -> str:
        return self.name or self.id


class Workflow(BaseModel):
    """A workflow definition: descriptive metadata plus its steps."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    version: str = "1.0.0"
    status: WorkflowStatus = WorkflowStatus.DRAFT
    steps: List[Step] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    category: str = "general"
    is_template: bool = False

    @field_validator("steps")
    @classmethod
    def _unique_step_ids(cls, steps: List[Step]) -> List[Step]:
        seen: set[str] = set()
        for step in steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step ID: {step.id}")
            seen.add(step.id)
        return steps

    def step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.id == step_id), None)


class UserInteraction(BaseModel):
    """Immutable record of an operator decision on a step."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    step_id: str
    type: InteractionType
    timestamp: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)
    user_message: Optional[str] = None


class WorkflowExecution(BaseModel):
    """One invocation of a workflow."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    total_duration: Optional[float] = None
    current_step_id: Optional[str] = None
    inputs: Dict[str, Any] = Field(default_factory=dict)
    step_results: Dict[str, Any] = Field(default_factory=dict)
    steps: Dict[str, Step] = Field(default_factory=dict)
    user_interactions: List[UserInteraction] = Field(default_factory=list)
    waves: List[List[str]] = Field(default_factory=list)
    operator_hold: bool = False
    error: Optional[str] = None

    @classmethod
    def for_workflow(
        cls, workflow: Workflow, inputs: Optional[Dict[str, Any]] = None
    ) -> "WorkflowExecution":
        """Create a fresh execution with pending copies of the workflow's steps."""
        steps = {
            step.id: step.model_copy(
                deep=True,
                update={
                    "status": StepStatus.PENDING,
                    "outputs": {},
                    "retry_count": 0,
                    "attempts": 0,
                    "error": None,
                    "start_time": None,
                    "end_time": None,
                    "duration": None,
                    "next_attempt_at": None,
                },
            )
            for step in workflow.steps
        }
        return cls(workflow_id=workflow.id, inputs=dict(inputs or {}), steps=steps)

    @property
    def is_terminal(self) -> bool:
        return self.status in {
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        }

    def ordered_steps(self) -> List[Step]:
        return list(self.steps.values())

    def finish(
        self,
        status: ExecutionStatus,
        error: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """Move to a terminal status and record timing."""
        self.status = status
        self.completed_at = at or utcnow()
        self.total_duration = (self.completed_at - self.started_at).total_seconds()
        self.operator_hold = False
        if error is not None:
            self.error = error


__all__ = [
    "StepType",
    "StepStatus",
    "WorkflowStatus",
    "ExecutionStatus",
    "InteractionType",
    "Step",
    "Workflow",
    "UserInteraction",
    "WorkflowExecution",
    "SUCCESS_STATUSES",
    "ACTIVE_EXECUTION_STATUSES",
    "utcnow",
    "new_id",
]
