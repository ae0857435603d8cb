"""Small status window: listening address, running flag, history and restart."""
from __future__ import annotations

from typing import Any, Callable, List

from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtWidgets import QHBoxLayout, QLabel, QListWidget, QPushButton, QVBoxLayout, QWidget

from clipsync_client.history import RESTART_TOAST
from clipsync_client.qt_bridge import DeliveryBridge
from clipsync_server.messages import LocalAlert
from clipsync_server.server_state import ServerSnapshot
from version import version_label

TOAST_DURATION_MS = 1500


class StatusWindow(QWidget):
    def __init__(self, bridge: DeliveryBridge, on_restart: Callable[[], Any]) -> None:
        super().__init__()
        self._on_restart = on_restart
        self.setWindowTitle(f"ClipSync {version_label()}")

        self._address_label = QLabel("Server not running")
        self._address_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        self._restart_button = QPushButton("Restart")
        self._restart_button.clicked.connect(self._handle_restart)
        self._clear_button = QPushButton("Clear")
        self._clear_button.clicked.connect(bridge.clear_history)
        self._history_list = QListWidget()
        self._toast_label = QLabel("")
        self._toast_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._toast_label.hide()

        self._toast_timer = QTimer(self)
        self._toast_timer.setSingleShot(True)
        self._toast_timer.timeout.connect(self._toast_label.hide)

        header = QHBoxLayout()
        header.addWidget(self._address_label, 1)
        header.addWidget(self._restart_button)
        header.addWidget(self._clear_button)
        layout = QVBoxLayout(self)
        layout.addLayout(header)
        layout.addWidget(self._history_list, 1)
        layout.addWidget(self._toast_label)

        bridge.history_changed.connect(self.set_history)
        bridge.toast_requested.connect(self.show_toast)
        bridge.alert_raised.connect(self._handle_alert)
        bridge.server_state_changed.connect(self.set_server_state)

    def set_server_state(self, snapshot: ServerSnapshot) -> None:
        if snapshot.running:
            self._address_label.setText(f"Listening on {snapshot.endpoint_url}")
        else:
            self._address_label.setText("Server not running")

    def set_history(self, entries: List[str]) -> None:
        self._history_list.clear()
        self._history_list.addItems(entries)

    def show_toast(self, text: str) -> None:
        self._toast_label.setText(text)
        self._toast_label.show()
        self._toast_timer.start(TOAST_DURATION_MS)

    def _handle_alert(self, alert: LocalAlert) -> None:
        self.show_toast(f"{alert.title}: {alert.body}")

    def _handle_restart(self) -> None:
        self.show_toast(RESTART_TOAST)
        self._on_restart()
