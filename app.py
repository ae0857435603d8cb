"""ClipSync runtime: wires the listener, router, store and lifecycle bridge together."""
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from clipsync_server.delivery import DeliveryRouter
from clipsync_server.errors import BindError
from clipsync_server.handlers import ClipSyncHandlers
from clipsync_server.http_dispatcher import RequestDispatcher
from clipsync_server.interaction import EventChannel, InteractionContext
from clipsync_server.landing_page import LandingPage
from clipsync_server.lifecycle import LifecycleBridge
from clipsync_server.listener import ConnectionListener
from clipsync_server.logging_utils import (
    LOGGER_NAME,
    MESSAGE_LOG_FILE_NAME,
    MESSAGE_LOG_MAX_BYTES,
    MESSAGE_LOGGER_NAME,
    build_rotating_message_handler,
    install_console_handler,
)
from clipsync_server.messages import ActivityState, DeliveryEvent, LocalAlert
from clipsync_server.network import resolve_bind_host
from clipsync_server.pending_store import PendingStore, resolve_pending_path
from clipsync_server.preferences import ENV_LOG_LEVEL, Preferences, resolve_data_dir
from clipsync_server.scheduler import TaskScheduler, TimerTaskScheduler
from clipsync_server.server_state import ServerSnapshot, ServerState
from version import DEV_MODE_ENV_VAR, __version__ as CLIPSYNC_VERSION, is_dev_build, version_label

APP_NAME = "ClipSync"
PORT_FILE_NAME = "port.json"
DEV_BUILD = is_dev_build()

LOGGER = logging.getLogger(LOGGER_NAME)

_DEV_LOG_LEVEL_OVERRIDE_EMITTED = False


def _resolve_log_level(explicit: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    """Map the first usable level name (explicit, then env) onto a logging level."""

    env = os.environ if environ is None else environ
    for candidate in (explicit, env.get(ENV_LOG_LEVEL)):
        token = (candidate or "").strip().upper()
        if not token:
            continue
        level = logging.getLevelName(token)
        if isinstance(level, int):
            return level
    return logging.INFO


def _effective_log_level(level: int) -> int:
    if DEV_BUILD and level > logging.DEBUG:
        return logging.DEBUG
    return level


def _configure_logger(level_name: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> logging.Logger:
    global _DEV_LOG_LEVEL_OVERRIDE_EMITTED

    logger = install_console_handler(logging.getLogger(LOGGER_NAME))
    requested = _resolve_log_level(level_name, environ)
    effective = _effective_log_level(requested)
    logger.setLevel(effective)
    if DEV_BUILD and effective < requested and not _DEV_LOG_LEVEL_OVERRIDE_EMITTED:
        _DEV_LOG_LEVEL_OVERRIDE_EMITTED = True
        logger.info(
            "Running ClipSync dev build (%s); logger forced to DEBUG. Override via %s=0.",
            CLIPSYNC_VERSION,
            DEV_MODE_ENV_VAR,
        )
    return logger


class _AppRuntime:
    """Owns every server-side component and the port file for one process."""

    def __init__(
        self,
        data_dir: Path,
        preferences: Optional[Preferences] = None,
        *,
        scheduler: Optional[TaskScheduler] = None,
        interaction: Optional[Any] = None,
        resolve_host: Optional[Callable[[Optional[str]], str]] = None,
        landing_page: Optional[LandingPage] = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.preferences = preferences or Preferences(self.data_dir)
        prefs = self.preferences
        self._lock = threading.Lock()
        self._started = False

        self.state = ServerState(port=prefs.port)
        self.interaction = interaction or InteractionContext()
        self.deliveries: EventChannel[DeliveryEvent] = EventChannel("delivery", self.interaction)
        self.alerts: EventChannel[LocalAlert] = EventChannel("alert", self.interaction)
        self.server_state_changed: EventChannel[ServerSnapshot] = EventChannel("server_state", self.interaction)

        self.scheduler = scheduler or TimerTaskScheduler()
        self.store = PendingStore(resolve_pending_path(self.data_dir), capacity=prefs.pending_capacity)
        self.lifecycle = LifecycleBridge(self.store, self.deliveries.publish, self.scheduler)
        register = getattr(self.scheduler, "register", None)
        if callable(register):
            register(self.lifecycle.handle_execution_window)

        self._message_logger: Optional[logging.Logger] = None
        self._message_log_handler: Optional[logging.Handler] = None
        if prefs.log_messages:
            self._configure_message_logger()

        self.router = DeliveryRouter(
            self.store,
            self.deliveries.publish,
            alert=self.alerts.publish,
            scheduler=self.scheduler,
            activity=lambda: self.lifecycle.activity,
            message_logger=self._message_logger,
            park=self.lifecycle.park,
        )
        self.handlers = ClipSyncHandlers(self.state, self.router.ingest, landing_page)
        self.listener = ConnectionListener(
            state=self.state,
            dispatcher_factory=self._new_dispatcher,
            port=prefs.port,
            preferred_host=prefs.host or None,
            shutdown_timeout=prefs.shutdown_timeout_seconds,
            restart_grace=prefs.restart_grace_seconds,
            resolve_host=resolve_host or resolve_bind_host,
        )
        self._unsubscribe_state = self.state.subscribe(self._on_server_state_changed)

    # Lifecycle -------------------------------------------------------------

    def start(self) -> ServerSnapshot:
        """Start the interaction context and the listener; bind failures are logged.

        Messages restored from a previous run are drained once the interaction
        context is up, provided the host is ACTIVE.
        """

        first_start = False
        with self._lock:
            if not self._started:
                self.interaction.start()
                self._started = True
                first_start = True
        if first_start and self.lifecycle.activity is ActivityState.ACTIVE:
            self.lifecycle.drain()
        try:
            return self.listener.start()
        except BindError as exc:
            LOGGER.error("ClipSync server failed to start: %s", exc)
            return self.state.snapshot()

    def stop(self) -> None:
        try:
            self.listener.stop()
        except Exception as exc:
            LOGGER.warning("Error while stopping listener: %s", exc)
        cancel = getattr(self.scheduler, "cancel_all", None)
        if callable(cancel):
            cancel()
        with self._lock:
            started = self._started
            self._started = False
        if started:
            self.interaction.stop()
        self._close_message_logger()
        self._delete_port_file()

    def restart(self) -> "Future[ServerSnapshot]":
        LOGGER.info("Restarting ClipSync server")
        return self.listener.restart()

    def set_activity(self, state: ActivityState) -> List[DeliveryEvent]:
        return self.lifecycle.set_activity(state)

    # Internal helpers ------------------------------------------------------

    def _new_dispatcher(self) -> RequestDispatcher:
        return RequestDispatcher(self.handlers, max_body_bytes=self.preferences.max_body_bytes)

    def _on_server_state_changed(self, snapshot: ServerSnapshot) -> None:
        if snapshot.running:
            self._write_port_file(snapshot)
        else:
            self._delete_port_file()
        self.server_state_changed.publish(snapshot)

    def _write_port_file(self, snapshot: ServerSnapshot) -> None:
        target = self.data_dir / PORT_FILE_NAME
        data: Dict[str, Any] = {
            "host": snapshot.host,
            "port": snapshot.port,
            "url": snapshot.endpoint_url,
            "version": CLIPSYNC_VERSION,
        }
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Failed to write %s: %s", target, exc)
            return
        LOGGER.debug("Wrote %s with %s:%s", PORT_FILE_NAME, snapshot.host, snapshot.port)

    def _delete_port_file(self) -> None:
        try:
            (self.data_dir / PORT_FILE_NAME).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.warning("Failed to remove %s: %s", PORT_FILE_NAME, exc)

    def _configure_message_logger(self) -> None:
        log_dir = self.data_dir / "logs"
        try:
            handler = build_rotating_message_handler(
                log_dir,
                MESSAGE_LOG_FILE_NAME,
                retention=self.preferences.message_log_retention,
                max_bytes=MESSAGE_LOG_MAX_BYTES,
            )
        except Exception as exc:
            LOGGER.warning("Failed to initialise message log at %s: %s", log_dir, exc)
            return
        message_logger = logging.getLogger(MESSAGE_LOGGER_NAME)
        message_logger.setLevel(logging.DEBUG)
        message_logger.propagate = False
        message_logger.addHandler(handler)
        self._message_logger = message_logger
        self._message_log_handler = handler
        LOGGER.debug(
            "Message logging initialised: path=%s retention=%d",
            log_dir / MESSAGE_LOG_FILE_NAME,
            self.preferences.message_log_retention,
        )

    def _close_message_logger(self) -> None:
        handler = self._message_log_handler
        if handler is None or self._message_logger is None:
            return
        self._message_logger.removeHandler(handler)
        handler.close()
        self._message_log_handler = None


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clipsync", description="Receive clipboard text over the local network.")
    parser.add_argument("--host", help="Address to bind (default: Wi-Fi IPv4, else 0.0.0.0)")
    parser.add_argument("--port", type=int, help="TCP port to listen on (default: 8080)")
    parser.add_argument("--data-dir", type=Path, help="Directory for settings, pending messages and logs")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Write the effective settings back to clipsync_settings.json",
    )
    return parser


def load_preferences(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> Preferences:
    """Preferences file, then environment, then command-line flags."""

    data_dir = resolve_data_dir(args.data_dir, environ)
    preferences = Preferences(data_dir)
    preferences.apply_environment(environ)
    overrides: Dict[str, Any] = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.log_level:
        overrides["log_level"] = args.log_level
    if overrides:
        preferences.apply_overrides(overrides)
    if getattr(args, "save_settings", False):
        preferences.save()
    return preferences


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    preferences = load_preferences(args)
    logger = _configure_logger(preferences.log_level or None)

    runtime = _AppRuntime(preferences.data_dir, preferences)
    runtime.deliveries.subscribe(
        lambda event: logger.info("Delivered %s message (%d chars)", event.kind.value, len(event.text))
    )
    snapshot = runtime.start()
    if not snapshot.running:
        runtime.stop()
        return 1
    logger.info("ClipSync %s: send clipboard text to %s", version_label(), snapshot.endpoint_url)
    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda _signum, _frame: stop_event.set())
    exit_code = 0
    try:
        while not stop_event.wait(1.0):
            if not runtime.listener.is_running:
                logger.error("ClipSync listener stopped unexpectedly")
                exit_code = 1
                break
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        runtime.stop()
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
