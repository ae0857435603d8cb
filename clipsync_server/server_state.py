"""Process-wide view of the listener's address and running flag."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
INGEST_PATH = "/send"

LOGGER = logging.getLogger("ClipSync.state")


@dataclass(frozen=True)
class ServerSnapshot:
    host: str
    port: int
    running: bool

    @property
    def endpoint_url(self) -> str:
        return f"http://{self.host}:{self.port}{INGEST_PATH}"


StateObserver = Callable[[ServerSnapshot], None]


class ServerState:
    """Holds ``host``/``port``/``running`` for the listener.

    Only the connection listener calls :meth:`apply`; everyone else reads a
    :class:`ServerSnapshot` or subscribes for running-flag transitions.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        self._lock = threading.Lock()
        self._host = host
        self._port = int(port)
        self._running = False
        self._observers: List[StateObserver] = []

    @property
    def host(self) -> str:
        with self._lock:
            return self._host

    @property
    def port(self) -> int:
        with self._lock:
            return self._port

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def snapshot(self) -> ServerSnapshot:
        with self._lock:
            return ServerSnapshot(self._host, self._port, self._running)

    @property
    def endpoint_url(self) -> str:
        return self.snapshot().endpoint_url

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register ``observer`` for running transitions; returns an unsubscribe callable."""

        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._observers.remove(observer)
                except ValueError:
                    pass

        return _unsubscribe

    def apply(
        self,
        *,
        host: Optional[str] = None,
        port: Optional[int] = None,
        running: Optional[bool] = None,
    ) -> bool:
        """Update the state; returns True when the running flag changed."""

        with self._lock:
            if host is not None:
                self._host = host
            if port is not None:
                self._port = int(port)
            changed = running is not None and bool(running) != self._running
            if running is not None:
                self._running = bool(running)
            snapshot = ServerSnapshot(self._host, self._port, self._running)
            observers = list(self._observers) if changed else []
        for observer in observers:
            try:
                observer(snapshot)
            except Exception as exc:
                LOGGER.warning("Server state observer raised error: %s", exc)
        return changed
