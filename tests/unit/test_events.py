from flowdeck.events import Event, EventBus, EventType
from flowdeck.models import WorkflowExecution


def _event(event_type=EventType.STEP_STARTED):
    return Event(type=event_type, execution=WorkflowExecution(workflow_id="wf"))


def test_subscribers_called_in_order():
    bus = EventBus()
    calls = []
    bus.subscribe(EventType.STEP_STARTED, lambda e: calls.append("first"))
    bus.subscribe("step_started", lambda e: calls.append("second"))

    bus.emit(_event())

    assert calls == ["first", "second"]


def test_emit_only_reaches_matching_type():
    bus = EventBus()
    calls = []
    bus.subscribe(EventType.WORKFLOW_COMPLETED, calls.append)

    bus.emit(_event(EventType.STEP_STARTED))

    assert calls == []


def test_unsubscribe_unknown_callback_is_ignored():
    bus = EventBus()
    bus.unsubscribe(EventType.STEP_FAILED, lambda e: None)
    assert bus.subscriber_count(EventType.STEP_FAILED) == 0


def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(EventType.STEP_STARTED, broken)
    bus.subscribe(EventType.STEP_STARTED, calls.append)

    bus.emit(_event())

    assert len(calls) == 1


def test_subscription_changes_apply_from_next_emission():
    bus = EventBus()
    calls = []

    def late(event):
        calls.append("late")

    def first(event):
        calls.append("first")
        bus.subscribe(EventType.STEP_STARTED, late)
        bus.unsubscribe(EventType.STEP_STARTED, first)

    bus.subscribe(EventType.STEP_STARTED, first)

    bus.emit(_event())
    assert calls == ["first"]

    bus.emit(_event())
    assert calls == ["first", "late"]
