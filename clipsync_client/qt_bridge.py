"""Qt glue: runs server callbacks on the GUI thread and maps application state."""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple

from PyQt6.QtCore import QObject, Qt, pyqtSignal
from PyQt6.QtGui import QGuiApplication

from clipsync_client.history import DEFAULT_TOAST_MAX_CHARS, ClipboardHistory, toast_text
from clipsync_server.messages import ActivityState, DeliveryEvent, LocalAlert
from clipsync_server.server_state import ServerSnapshot

_CLIENT_LOGGER = logging.getLogger("ClipSync.client")

ClipboardWriter = Callable[[str], None]


def write_system_clipboard(text: str) -> None:
    clipboard = QGuiApplication.clipboard()
    if clipboard is None:
        raise RuntimeError("System clipboard unavailable")
    clipboard.setText(text)


def activity_from_qt_state(state: Qt.ApplicationState) -> ActivityState:
    """Suspended and hidden applications count as backgrounded; everything else is active."""

    if state in (Qt.ApplicationState.ApplicationSuspended, Qt.ApplicationState.ApplicationHidden):
        return ActivityState.BACKGROUND
    return ActivityState.ACTIVE


class QtInteractionContext(QObject):
    """Interaction context whose callables run on the thread owning this object."""

    _invoke = pyqtSignal(object)

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._running = False
        self._invoke.connect(self._run_job, Qt.ConnectionType.QueuedConnection)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True

    def stop(self, timeout: float = 5.0) -> None:
        self._running = False

    def post(self, func: Callable[..., Any], *args: Any) -> bool:
        if not self._running:
            return False
        self._invoke.emit((func, args))
        return True

    def _run_job(self, job: Tuple[Callable[..., Any], Tuple[Any, ...]]) -> None:
        func, args = job
        try:
            func(*args)
        except Exception as exc:
            _CLIENT_LOGGER.warning("GUI callback %r raised error: %s", func, exc)


class DeliveryBridge(QObject):
    """Applies delivery events to the clipboard and history, then notifies the UI."""

    history_changed = pyqtSignal(list)
    toast_requested = pyqtSignal(str)
    alert_raised = pyqtSignal(object)
    server_state_changed = pyqtSignal(object)

    def __init__(
        self,
        history: Optional[ClipboardHistory] = None,
        clipboard_writer: Optional[ClipboardWriter] = None,
        toast_max_chars: int = DEFAULT_TOAST_MAX_CHARS,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.history = history or ClipboardHistory()
        self._clipboard_writer = clipboard_writer or write_system_clipboard
        self._toast_max_chars = toast_max_chars

    def handle_delivery(self, event: DeliveryEvent) -> None:
        if event.is_immediate:
            try:
                self._clipboard_writer(event.text)
            except Exception as exc:
                _CLIENT_LOGGER.warning("Failed to copy message to clipboard: %s", exc)
            else:
                self.toast_requested.emit(f"Copied: {toast_text(event.text, self._toast_max_chars)}")
        if self.history.add(event.text):
            self.history_changed.emit(self.history.entries())

    def handle_alert(self, alert: LocalAlert) -> None:
        _CLIENT_LOGGER.debug("Local alert: %s", alert.title)
        self.alert_raised.emit(alert)

    def handle_server_state(self, snapshot: ServerSnapshot) -> None:
        self.server_state_changed.emit(snapshot)

    def clear_history(self) -> None:
        self.history.clear()
        self.history_changed.emit([])


class ApplicationStateWatcher(QObject):
    """Forwards ``applicationStateChanged`` as ActivityState transitions."""

    def __init__(self, app: QGuiApplication, on_change: Callable[[ActivityState], Any], parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._on_change = on_change
        self._last: Optional[ActivityState] = None
        app.applicationStateChanged.connect(self.handle_state)

    def handle_state(self, state: Qt.ApplicationState) -> None:
        activity = activity_from_qt_state(state)
        if activity is self._last:
            return
        self._last = activity
        try:
            self._on_change(activity)
        except Exception as exc:
            _CLIENT_LOGGER.warning("Activity change handler raised error: %s", exc)
