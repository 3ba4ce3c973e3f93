"""flowdeck: DAG workflow engine with AI, HTTP and human-in-the-loop steps."""

from .config import FlowdeckConfig, load_config
from .engine import WorkflowEngine
from .errors import (
    ConfigurationError,
    ConflictError,
    FlowdeckError,
    HandlerError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
)
from .events import Event, EventBus, EventType
from .handlers import HandlerRegistry, StepContext, StepHandler
from .models import (
    ExecutionStatus,
    InteractionType,
    Step,
    StepStatus,
    StepType,
    UserInteraction,
    Workflow,
    WorkflowExecution,
    WorkflowStatus,
)
from .persistence import get_store
from .state import RetryPolicy

__version__ = "0.1.0"
__all__ = [
    "FlowdeckConfig",
    "load_config",
    "WorkflowEngine",
    "FlowdeckError",
    "ConfigurationError",
    "ConflictError",
    "HandlerError",
    "InvalidTransitionError",
    "NotFoundError",
    "PersistenceError",
    "Event",
    "EventBus",
    "EventType",
    "HandlerRegistry",
    "StepContext",
    "StepHandler",
    "ExecutionStatus",
    "InteractionType",
    "Step",
    "StepStatus",
    "StepType",
    "UserInteraction",
    "Workflow",
    "WorkflowExecution",
    "WorkflowStatus",
    "get_store",
    "RetryPolicy",
]
