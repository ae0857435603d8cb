"""Background execution windows and deferred processing requests.

Mobile hosts hand out short execution windows when an app is suspended; the
desktop host has no such constraint, so :class:`TimerTaskScheduler` emulates
them with timers. Both the delivery router and the lifecycle bridge only talk
to the :class:`TaskScheduler` protocol, which keeps a platform host free to
plug in its own implementation.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Protocol

TASK_IDENTIFIER = "com.clipsync.clipboardProcessing"
DEFAULT_EARLIEST_BEGIN = 1.0
DEFAULT_WINDOW_SECONDS = 30.0

LOGGER = logging.getLogger("ClipSync.scheduler")


class ExecutionWindow:
    """A span of granted background time that must be completed exactly once."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        self.expiration_handler: Optional[Callable[[], None]] = None
        self._lock = threading.Lock()
        self._completed = False
        self._success: Optional[bool] = None
        self._on_complete: List[Callable[["ExecutionWindow"], None]] = []

    @property
    def completed(self) -> bool:
        with self._lock:
            return self._completed

    @property
    def success(self) -> Optional[bool]:
        with self._lock:
            return self._success

    def add_completion_callback(self, callback: Callable[["ExecutionWindow"], None]) -> None:
        with self._lock:
            self._on_complete.append(callback)

    def complete(self, success: bool) -> bool:
        """Mark the window finished; only the first call has any effect."""

        with self._lock:
            if self._completed:
                return False
            self._completed = True
            self._success = bool(success)
            callbacks = list(self._on_complete)
        for callback in callbacks:
            try:
                callback(self)
            except Exception as exc:
                LOGGER.warning("Execution window callback raised error: %s", exc)
        return True

    def expire(self) -> None:
        """Called by the host when the granted time runs out."""

        if self.completed:
            return
        handler = self.expiration_handler
        if handler is not None:
            try:
                handler()
            except Exception as exc:
                LOGGER.warning("Expiration handler for %s raised error: %s", self.identifier, exc)
        self.complete(False)


class TaskScheduler(Protocol):
    def request_extra_time(self, reason: str) -> ExecutionWindow:
        ...

    def schedule_processing(self, earliest_begin: float = DEFAULT_EARLIEST_BEGIN) -> bool:
        ...


WindowHandler = Callable[[ExecutionWindow], None]


class TimerTaskScheduler:
    """Timer-backed scheduler for hosts without a native background task API."""

    def __init__(self, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> None:
        self._window_seconds = max(0.1, float(window_seconds))
        self._lock = threading.Lock()
        self._handler: Optional[WindowHandler] = None
        self._processing_timer: Optional[threading.Timer] = None
        self._expiry_timers: List[threading.Timer] = []

    def register(self, handler: WindowHandler) -> None:
        """Install the callable invoked when a scheduled processing task fires."""

        with self._lock:
            self._handler = handler

    def request_extra_time(self, reason: str) -> ExecutionWindow:
        LOGGER.debug("Requesting background execution time: %s", reason)
        return self._grant(reason)

    def schedule_processing(self, earliest_begin: float = DEFAULT_EARLIEST_BEGIN) -> bool:
        """Arm the processing task; returns False when one is already pending."""

        delay = max(0.0, float(earliest_begin))
        with self._lock:
            if self._processing_timer is not None and self._processing_timer.is_alive():
                return False
            timer = threading.Timer(delay, self._run_processing)
            timer.daemon = True
            self._processing_timer = timer
        try:
            timer.start()
        except RuntimeError as exc:
            LOGGER.warning("Could not schedule background processing: %s", exc)
            with self._lock:
                self._processing_timer = None
            return False
        LOGGER.debug("Scheduled %s in %.1fs", TASK_IDENTIFIER, delay)
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._expiry_timers)
            self._expiry_timers.clear()
            if self._processing_timer is not None:
                timers.append(self._processing_timer)
            self._processing_timer = None
        for timer in timers:
            timer.cancel()

    def _run_processing(self) -> None:
        with self._lock:
            self._processing_timer = None
            handler = self._handler
        if handler is None:
            LOGGER.debug("Background processing fired with no handler registered")
            return
        window = self._grant(TASK_IDENTIFIER)
        try:
            handler(window)
        except Exception as exc:
            LOGGER.warning("Background processing handler raised error: %s", exc)
            window.complete(False)

    def _grant(self, identifier: str) -> ExecutionWindow:
        window = ExecutionWindow(identifier)
        timer = threading.Timer(self._window_seconds, window.expire)
        timer.daemon = True

        def _release(_window: ExecutionWindow) -> None:
            timer.cancel()
            with self._lock:
                try:
                    self._expiry_timers.remove(timer)
                except ValueError:
                    pass

        window.add_completion_callback(_release)
        with self._lock:
            self._expiry_timers.append(timer)
        timer.start()
        return window
