from __future__ import annotations

import threading
import time
from typing import List

import pytest
from PyQt6.QtCore import QCoreApplication, Qt

from clipsync_client.qt_bridge import (
    ApplicationStateWatcher,
    DeliveryBridge,
    QtInteractionContext,
    activity_from_qt_state,
)
from clipsync_server.interaction import EventChannel
from clipsync_server.messages import ActivityState, DeliveryEvent, LocalAlert
from clipsync_server.server_state import ServerSnapshot


@pytest.fixture(scope="module")
def qt_app():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FakeClipboard:
    def __init__(self, fail: bool = False) -> None:
        self.texts: List[str] = []
        self.fail = fail

    def __call__(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("clipboard locked")
        self.texts.append(text)


class _StateSignal:
    def __init__(self) -> None:
        self.slots = []

    def connect(self, slot) -> None:
        self.slots.append(slot)


class _StubApp:
    def __init__(self) -> None:
        self.applicationStateChanged = _StateSignal()

    def change(self, state) -> None:
        for slot in self.applicationStateChanged.slots:
            slot(state)


def _process_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        QCoreApplication.processEvents()
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_immediate_event_copies_records_and_toasts(qt_app) -> None:
    clipboard = FakeClipboard()
    bridge = DeliveryBridge(clipboard_writer=clipboard)
    toasts: List[str] = []
    histories: List[list] = []
    bridge.toast_requested.connect(toasts.append)
    bridge.history_changed.connect(histories.append)

    bridge.handle_delivery(DeliveryEvent.immediate("a fairly long clipboard entry"))

    assert clipboard.texts == ["a fairly long clipboard entry"]
    assert toasts == ["Copied: a fairly long c..."]
    assert histories == [["a fairly long clipboard entry"]]


def test_deferred_event_only_updates_history(qt_app) -> None:
    clipboard = FakeClipboard()
    bridge = DeliveryBridge(clipboard_writer=clipboard)

    bridge.handle_delivery(DeliveryEvent.deferred("later"))

    assert clipboard.texts == []
    assert bridge.history.entries() == ["later"]


def test_drained_duplicate_does_not_duplicate_history(qt_app) -> None:
    clipboard = FakeClipboard()
    bridge = DeliveryBridge(clipboard_writer=clipboard)
    histories: List[list] = []
    bridge.history_changed.connect(histories.append)

    bridge.handle_delivery(DeliveryEvent.deferred("same"))
    bridge.handle_delivery(DeliveryEvent.immediate("same"))

    assert clipboard.texts == ["same"]
    assert bridge.history.entries() == ["same"]
    assert len(histories) == 1


def test_clipboard_failure_still_records_history(qt_app) -> None:
    bridge = DeliveryBridge(clipboard_writer=FakeClipboard(fail=True))
    toasts: List[str] = []
    bridge.toast_requested.connect(toasts.append)

    bridge.handle_delivery(DeliveryEvent.immediate("text"))

    assert toasts == []
    assert bridge.history.entries() == ["text"]


def test_alert_and_server_state_are_forwarded(qt_app) -> None:
    bridge = DeliveryBridge(clipboard_writer=FakeClipboard())
    alerts = []
    states = []
    bridge.alert_raised.connect(alerts.append)
    bridge.server_state_changed.connect(states.append)

    alert = LocalAlert.for_message("ping")
    snapshot = ServerSnapshot("10.0.0.3", 8080, True)
    bridge.handle_alert(alert)
    bridge.handle_server_state(snapshot)

    assert alerts == [alert]
    assert states == [snapshot]


@pytest.mark.parametrize(
    "state, expected",
    [
        (Qt.ApplicationState.ApplicationActive, ActivityState.ACTIVE),
        (Qt.ApplicationState.ApplicationInactive, ActivityState.ACTIVE),
        (Qt.ApplicationState.ApplicationHidden, ActivityState.BACKGROUND),
        (Qt.ApplicationState.ApplicationSuspended, ActivityState.BACKGROUND),
    ],
)
def test_activity_mapping(state, expected) -> None:
    assert activity_from_qt_state(state) is expected


def test_state_watcher_forwards_only_changes(qt_app) -> None:
    app = _StubApp()
    seen: List[ActivityState] = []
    watcher = ApplicationStateWatcher(app, seen.append)

    app.change(Qt.ApplicationState.ApplicationActive)
    app.change(Qt.ApplicationState.ApplicationInactive)
    app.change(Qt.ApplicationState.ApplicationSuspended)
    app.change(Qt.ApplicationState.ApplicationActive)

    assert seen == [ActivityState.ACTIVE, ActivityState.BACKGROUND, ActivityState.ACTIVE]
    assert watcher is not None


def test_qt_context_runs_posts_from_worker_threads_on_owner_thread(qt_app) -> None:
    context = QtInteractionContext()
    channel: EventChannel[str] = EventChannel("delivery", context)
    received: List[tuple] = []
    channel.subscribe(lambda value: received.append((value, threading.current_thread())))
    context.start()

    worker = threading.Thread(target=channel.publish, args=("from worker",))
    worker.start()
    worker.join(timeout=2.0)

    assert _process_until(lambda: bool(received))
    assert received[0][0] == "from worker"
    assert received[0][1] is threading.main_thread()


def test_qt_context_rejects_posts_when_stopped(qt_app) -> None:
    context = QtInteractionContext()

    assert context.post(lambda: None) is False
    context.start()
    assert context.post(lambda: None) is True
    context.stop()
    assert context.post(lambda: None) is False
