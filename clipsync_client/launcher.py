from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Sequence

from PyQt6.QtWidgets import QApplication

from app import _AppRuntime, _configure_logger, build_arg_parser, load_preferences
from clipsync_client.qt_bridge import ApplicationStateWatcher, DeliveryBridge, QtInteractionContext
from clipsync_client.status_window import StatusWindow

_CLIENT_LOGGER = logging.getLogger("ClipSync.client")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    preferences = load_preferences(args)
    _configure_logger(preferences.log_level or None)
    _CLIENT_LOGGER.info("Starting ClipSync desktop host (pid=%s)", os.getpid())
    _CLIENT_LOGGER.debug("Using data directory %s", preferences.data_dir)

    app = QApplication(sys.argv[:1])
    context = QtInteractionContext()
    runtime = _AppRuntime(preferences.data_dir, preferences, interaction=context)
    bridge = DeliveryBridge(toast_max_chars=preferences.toast_max_chars)
    runtime.deliveries.subscribe(bridge.handle_delivery)
    runtime.alerts.subscribe(bridge.handle_alert)
    runtime.server_state_changed.subscribe(bridge.handle_server_state)

    window = StatusWindow(bridge, on_restart=runtime.restart)
    watcher = ApplicationStateWatcher(app, runtime.set_activity)

    snapshot = runtime.start()
    window.set_server_state(snapshot)
    window.show()

    exit_code = app.exec()
    runtime.stop()
    del watcher
    _CLIENT_LOGGER.info("ClipSync desktop host exiting with code %s", exit_code)
    return int(exit_code)


if __name__ == "__main__":
    raise SystemExit(main())
