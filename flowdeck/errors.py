"""Exception hierarchy for flowdeck."""

from __future__ import annotations


class FlowdeckError(Exception):
    """Base class for all flowdeck errors."""


class ConfigurationError(FlowdeckError):
    """Workflow definition cannot be executed.

    Raised for unknown step types, circular dependencies, dangling dependency
    references and malformed conditions. Never retried.
    """


class HandlerError(FlowdeckError):
    """A step handler failed while executing a step."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class PersistenceError(FlowdeckError):
    """The durable store could not complete an operation."""


class ConflictError(FlowdeckError):
    """The operation conflicts with the current stored state."""


class NotFoundError(FlowdeckError):
    """A workflow, execution or step does not exist."""


class InvalidTransitionError(FlowdeckError):
    """A state change is not allowed from the current state."""


__all__ = [
    "FlowdeckError",
    "ConfigurationError",
    "HandlerError",
    "PersistenceError",
    "ConflictError",
    "NotFoundError",
    "InvalidTransitionError",
]
