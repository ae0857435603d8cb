from __future__ import annotations

import threading
from typing import List

import pytest

from clipsync_server.delivery import DeliveryRouter
from clipsync_server.interaction import EventChannel, InteractionContext
from clipsync_server.lifecycle import LifecycleBridge
from clipsync_server.messages import ActivityState, DeliveryEvent, DeliveryKind, InboundMessage
from clipsync_server.pending_store import PendingStore
from clipsync_server.scheduler import ExecutionWindow


class FakeScheduler:
    def __init__(self) -> None:
        self.scheduled: List[float] = []

    def request_extra_time(self, reason: str) -> ExecutionWindow:
        return ExecutionWindow(reason)

    def schedule_processing(self, earliest_begin: float = 1.0) -> bool:
        self.scheduled.append(earliest_begin)
        return True


@pytest.fixture
def store(tmp_path) -> PendingStore:
    return PendingStore(tmp_path / "pending.json")


def test_drain_on_empty_store_is_noop(store):
    events: List[DeliveryEvent] = []
    bridge = LifecycleBridge(store, events.append)

    assert bridge.drain() == []
    assert bridge.drain() == []
    assert events == []


def test_last_write_wins_then_single_immediate_on_wake(store):
    events: List[DeliveryEvent] = []
    scheduler = FakeScheduler()
    bridge = LifecycleBridge(store, events.append, scheduler)
    router = DeliveryRouter(store, events.append, scheduler=scheduler, activity=lambda: bridge.activity)

    bridge.set_activity(ActivityState.BACKGROUND)
    router.ingest(InboundMessage("A"))
    router.ingest(InboundMessage("B"))
    events.clear()

    drained = bridge.set_activity(ActivityState.ACTIVE)

    assert drained == [DeliveryEvent(DeliveryKind.IMMEDIATE, "B")]
    assert events == drained
    assert store.is_empty()
    assert bridge.set_activity(ActivityState.ACTIVE) == []


def test_entering_background_schedules_processing(store):
    scheduler = FakeScheduler()
    bridge = LifecycleBridge(store, lambda _event: None, scheduler)

    bridge.set_activity(ActivityState.BACKGROUND)
    bridge.set_activity(ActivityState.BACKGROUND)

    assert scheduler.scheduled == [1.0]


def test_execution_window_drains_completes_and_reschedules(store):
    events: List[DeliveryEvent] = []
    scheduler = FakeScheduler()
    bridge = LifecycleBridge(store, events.append, scheduler, initial=ActivityState.BACKGROUND)
    store.put(InboundMessage("queued"))
    window = ExecutionWindow("processing")

    bridge.handle_execution_window(window)

    assert events == [DeliveryEvent.immediate("queued")]
    assert window.completed and window.success is True
    assert store.is_empty()
    assert scheduler.scheduled == [1.0]


def test_execution_window_with_empty_store_succeeds(store):
    bridge = LifecycleBridge(store, lambda _event: None, FakeScheduler(), initial=ActivityState.ACTIVE)
    window = ExecutionWindow("processing")

    bridge.handle_execution_window(window)

    assert window.success is True


def test_expired_window_reports_failure(store):
    window = ExecutionWindow("processing")
    seen = []

    def _emit(event):
        seen.append(event)
        window.expire()

    bridge = LifecycleBridge(store, _emit)
    store.put(InboundMessage("slow"))
    bridge.handle_execution_window(window)

    assert seen == [DeliveryEvent.immediate("slow")]
    assert window.completed
    assert window.success is False


def test_failed_emit_still_clears_store(store):
    def explode(_event):
        raise RuntimeError("ui unavailable")

    bridge = LifecycleBridge(store, explode)
    store.put(InboundMessage("x"))

    events = bridge.drain()

    assert [event.text for event in events] == ["x"]
    assert store.is_empty()


def test_wake_between_activity_check_and_store_write_delivers_now(store):
    events: List[DeliveryEvent] = []
    bridge = LifecycleBridge(store, events.append, FakeScheduler(), initial=ActivityState.BACKGROUND)

    def _activity_then_wake() -> ActivityState:
        sampled = bridge.activity
        bridge.set_activity(ActivityState.ACTIVE)
        return sampled

    router = DeliveryRouter(
        store,
        events.append,
        scheduler=FakeScheduler(),
        activity=_activity_then_wake,
        park=bridge.park,
    )

    event = router.ingest(InboundMessage("late"))

    assert event == DeliveryEvent.immediate("late")
    assert events == [DeliveryEvent.immediate("late")]
    assert store.is_empty()


def test_wake_racing_a_parking_thread_never_strands_the_message(store):
    events: List[DeliveryEvent] = []
    bridge = LifecycleBridge(store, events.append, FakeScheduler(), initial=ActivityState.BACKGROUND)
    router = DeliveryRouter(store, events.append, park=bridge.park, activity=lambda: bridge.activity)
    waker = threading.Thread(target=bridge.set_activity, args=(ActivityState.ACTIVE,))

    real_put = store.put

    def _put_then_wake(message):
        displaced = real_put(message)
        waker.start()
        return displaced

    store.put = _put_then_wake
    router.ingest(InboundMessage("racing"))
    waker.join(timeout=2.0)

    assert bridge.activity is ActivityState.ACTIVE
    assert store.is_empty()
    assert len(events) == 2
    assert DeliveryEvent.deferred("racing") in events
    assert DeliveryEvent.immediate("racing") in events


def test_park_refuses_when_active(store):
    bridge = LifecycleBridge(store, lambda _event: None)

    assert bridge.park(InboundMessage("now")) is False
    assert store.is_empty()


def test_drain_keeps_messages_nobody_accepted(store):
    context = InteractionContext()
    channel: EventChannel[DeliveryEvent] = EventChannel("delivery", context)
    received: List[DeliveryEvent] = []
    channel.subscribe(received.append)
    bridge = LifecycleBridge(store, channel.publish)
    store.put(InboundMessage("parked"))

    assert bridge.drain() == []
    assert [message.text for message in store.snapshot()] == ["parked"]

    context.start()
    try:
        assert bridge.drain() == [DeliveryEvent.immediate("parked")]
        assert context.flush(timeout=2.0)
    finally:
        context.stop()

    assert received == [DeliveryEvent.immediate("parked")]
    assert store.is_empty()
