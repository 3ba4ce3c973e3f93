"""Typed publish/subscribe channel for workflow lifecycle events.

Delivery is synchronous: ``emit`` calls every subscriber of the event type,
in subscription order, before returning. The subscriber list is copied before
dispatch, so callbacks may subscribe or unsubscribe freely while an event is
being delivered; the change applies from the next emission. There is no
queueing or replay.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum
from typing import Callable, DefaultDict, List, Optional

from pydantic import BaseModel

from .models import Step, UserInteraction, Workflow, WorkflowExecution

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_PAUSED = "workflow_paused"
    WORKFLOW_RESUMED = "workflow_resumed"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_SKIPPED = "step_skipped"
    STEP_RETRY_SCHEDULED = "step_retry_scheduled"
    USER_INTERACTION_REQUIRED = "user_interaction_required"
    USER_INTERACTION = "user_interaction"


class Event(BaseModel):
    """Payload handed to subscribers."""

    type: EventType
    execution: WorkflowExecution
    workflow: Optional[Workflow] = None
    step: Optional[Step] = None
    error: Optional[str] = None
    interaction: Optional[UserInteraction] = None


Subscriber = Callable[[Event], None]


class EventBus:
    """Fan-out of events to the callbacks subscribed to each type."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[EventType, List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: EventType | str, callback: Subscriber) -> None:
        self._subscribers[EventType(event_type)].append(callback)

    def unsubscribe(self, event_type: EventType | str, callback: Subscriber) -> None:
        """Remove ``callback``; unknown callbacks are ignored."""
        listeners = self._subscribers.get(EventType(event_type))
        if listeners and callback in listeners:
            listeners.remove(callback)

    def subscriber_count(self, event_type: EventType | str) -> int:
        return len(self._subscribers.get(EventType(event_type), []))

    def emit(self, event: Event) -> None:
        for callback in list(self._subscribers.get(event.type, [])):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed on {event.type.value}: {e}")


__all__ = ["EventType", "Event", "EventBus", "Subscriber"]
