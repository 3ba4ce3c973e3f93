"""Step state machine and retry policy."""

from __future__ import annotations

import random
from datetime import timedelta
from typing import Dict, FrozenSet, Optional

from .constants import DEFAULT_RETRY_BASE_DELAY, DEFAULT_RETRY_JITTER
from .errors import HandlerError, InvalidTransitionError
from .models import Step, StepStatus, utcnow

TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset(
        {StepStatus.RUNNING, StepStatus.PAUSED, StepStatus.SKIPPED}
    ),
    StepStatus.PAUSED: frozenset(
        {StepStatus.PENDING, StepStatus.SKIPPED, StepStatus.FAILED}
    ),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.FAILED: frozenset({StepStatus.PENDING}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}

_FINISHED = {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED}


def can_transition(current: StepStatus, target: StepStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(step: Step, target: StepStatus) -> Step:
    """Move ``step`` to ``target`` and stamp timing fields.

    Raises:
        InvalidTransitionError: If the move is not in ``TRANSITIONS``.
    """
    if not can_transition(step.status, target):
        raise InvalidTransitionError(
            f"Step {step.id} cannot move from {step.status.value} to {target.value}"
        )

    now = utcnow()
    step.status = target
    if target == StepStatus.RUNNING:
        step.start_time = now
        step.end_time = None
        step.duration = None
        step.next_attempt_at = None
    elif target in _FINISHED:
        step.end_time = now
        if step.start_time is not None:
            step.duration = (now - step.start_time).total_seconds()
    return step


class RetryPolicy:
    """Linear backoff with jitter: ``base_delay * attempt + U(0, jitter)``."""

    def __init__(
        self,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        jitter: float = DEFAULT_RETRY_JITTER,
    ) -> None:
        self.base_delay = base_delay
        self.jitter = jitter

    def compute_backoff(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (1-based)."""
        delay = self.base_delay * attempt
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    def should_retry(self, step: Step, error: Optional[BaseException]) -> bool:
        if isinstance(error, HandlerError) and not error.retryable:
            return False
        return step.retry_count < step.max_retries

    def schedule(self, step: Step) -> float:
        """Requeue a failed step: back to pending with a delayed start.

        Returns:
            The backoff delay in seconds.
        """
        transition(step, StepStatus.PENDING)
        step.retry_count += 1
        delay = self.compute_backoff(step.retry_count)
        step.next_attempt_at = utcnow() + timedelta(seconds=delay)
        return delay


__all__ = ["TRANSITIONS", "can_transition", "transition", "RetryPolicy"]
