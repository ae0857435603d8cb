"""Serial execution context for UI-visible side effects."""
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar

LOGGER = logging.getLogger("ClipSync.interaction")

T = TypeVar("T")
_Job = Tuple[Callable[..., Any], Tuple[Any, ...]]


class InteractionContext:
    """Runs posted callables one at a time, in order, on a dedicated thread."""

    def __init__(self, name: str = "ClipSync-Interaction") -> None:
        self._name = name
        self._queue: "queue.Queue[Optional[_Job]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            worker = self._thread
            self._thread = None
        if worker is None:
            return
        self._queue.put(None)
        worker.join(timeout=timeout)
        if worker.is_alive():
            LOGGER.warning("Interaction thread still running after %.1fs; abandoning join", timeout)

    def post(self, func: Callable[..., Any], *args: Any) -> bool:
        """Queue ``func(*args)``; returns False when the context is not running."""

        if not self.running:
            return False
        self._queue.put((func, args))
        return True

    def flush(self, timeout: float = 5.0) -> bool:
        """Block until everything queued so far has run."""

        done = threading.Event()
        if not self.post(done.set):
            return False
        return done.wait(timeout)

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                break
            func, args = job
            try:
                func(*args)
            except Exception as exc:
                LOGGER.warning("Interaction callback %r raised error: %s", func, exc)


class EventChannel(Generic[T]):
    """Typed publish/subscribe channel whose callbacks run on an interaction context."""

    def __init__(self, name: str, context: InteractionContext) -> None:
        self.name = name
        self._context = context
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, value: T) -> bool:
        """Queue ``value`` for every subscriber; True when at least one job was accepted."""

        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            LOGGER.debug("No subscribers for %s event", self.name)
            return False
        accepted = False
        for callback in subscribers:
            if self._context.post(callback, value):
                accepted = True
        if not accepted:
            LOGGER.warning("Dropping %s event; interaction context is not running", self.name)
        return accepted
