"""Threaded asyncio HTTP listener that feeds per-connection dispatchers."""
from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional, Set

from clipsync_server.errors import BindError
from clipsync_server.http_dispatcher import RequestDispatcher
from clipsync_server.network import resolve_bind_host
from clipsync_server.server_state import DEFAULT_PORT, ServerSnapshot, ServerState

DEFAULT_BACKLOG = 256

LOGGER = logging.getLogger("ClipSync.listener")


def _default_workers() -> int:
    return max(1, os.cpu_count() or 1)


@dataclass
class ConnectionListener:
    """Owns the listening socket and the event loop thread serving it.

    ``start``/``stop``/``restart`` are serialised by one lifecycle lock, and the
    shared :class:`ServerState` only reports ``running`` while a socket is bound.
    """

    state: ServerState
    dispatcher_factory: Callable[[], RequestDispatcher]
    port: int = DEFAULT_PORT
    preferred_host: Optional[str] = None
    backlog: int = DEFAULT_BACKLOG
    ready_timeout: float = 5.0
    shutdown_timeout: float = 5.0
    restart_grace: float = 0.5
    workers: int = field(default_factory=_default_workers)
    resolve_host: Callable[[Optional[str]], str] = resolve_bind_host
    read_size: int = 64 * 1024
    _lifecycle_lock: threading.RLock = field(default_factory=threading.RLock, init=False)
    _loop: Optional[asyncio.AbstractEventLoop] = field(default=None, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)
    _server: Optional[asyncio.AbstractServer] = field(default=None, init=False)
    _stop_signal: Optional[asyncio.Event] = field(default=None, init=False)
    _ready_event: threading.Event = field(default_factory=threading.Event, init=False)
    _executor: Optional[ThreadPoolExecutor] = field(default=None, init=False)
    _clients: Set[asyncio.StreamWriter] = field(default_factory=set, init=False)
    _start_error: Optional[BaseException] = field(default=None, init=False)
    _bound_port: Optional[int] = field(default=None, init=False)

    def start(self, preferred_host: Optional[str] = None, port: Optional[int] = None) -> ServerSnapshot:
        """Bind and serve on a background thread.

        Raises :class:`BindError` when the socket cannot be bound or the loop
        does not become ready within ``ready_timeout`` seconds.
        """
        with self._lifecycle_lock:
            if self._thread is not None and self._thread.is_alive():
                return self.state.snapshot()
            if preferred_host is not None:
                self.preferred_host = preferred_host
            if port is not None:
                self.port = int(port)
            host = self.resolve_host(self.preferred_host)
            bind_port = self.port

            self._ready_event.clear()
            self._start_error = None
            self._bound_port = None
            self._stop_signal = None
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, int(self.workers)),
                thread_name_prefix="ClipSync-Dispatch",
            )
            self._thread = threading.Thread(
                target=self._run,
                args=(host, bind_port),
                name="ClipSync-Listener",
                daemon=True,
            )
            self._thread.start()

            if not self._ready_event.wait(timeout=self.ready_timeout):
                LOGGER.error("Listener did not signal readiness within %.1fs; shutting down", self.ready_timeout)
                self._shutdown_locked()
                raise BindError(host, bind_port, f"not ready within {self.ready_timeout:.1f}s")
            if self._start_error is not None or self._bound_port is None:
                error = self._start_error
                LOGGER.error("Failed to start server on %s:%s: %s", host, bind_port, error)
                self._shutdown_locked()
                raise BindError(host, bind_port, error) from error

            self.state.apply(host=host, port=self._bound_port, running=True)
            LOGGER.info("Server started at %s:%s", host, self._bound_port)
            return self.state.snapshot()

    def stop(self) -> None:
        """Close the listening socket and open connections; safe when not running."""
        with self._lifecycle_lock:
            self._shutdown_locked()

    def restart(self) -> "Future[ServerSnapshot]":
        """Stop, wait ``restart_grace`` seconds, then start again off the calling thread."""
        result: "Future[ServerSnapshot]" = Future()

        def _worker() -> None:
            try:
                self.stop()
                time.sleep(max(0.0, self.restart_grace))
                result.set_result(self.start())
            except Exception as exc:
                LOGGER.error("Server restart failed: %s", exc)
                result.set_exception(exc)

        threading.Thread(target=_worker, name="ClipSync-Restart", daemon=True).start()
        return result

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and self.state.running

    # Internal helpers -----------------------------------------------------

    def _shutdown_locked(self) -> None:
        worker = self._thread
        if worker is not None:
            loop = self._loop
            signal = self._stop_signal
            if loop is not None and signal is not None:
                try:
                    loop.call_soon_threadsafe(signal.set)
                except RuntimeError:
                    pass
            worker.join(timeout=self.shutdown_timeout)
            if worker.is_alive():
                LOGGER.warning(
                    "Listener thread still running after %.1fs; abandoning join",
                    self.shutdown_timeout,
                )
        executor = self._executor
        if executor is not None:
            try:
                executor.shutdown(wait=False, cancel_futures=True)
            except Exception as exc:
                LOGGER.warning("Failed to shut down dispatch workers: %s", exc)
        self._executor = None
        self._thread = None
        self._loop = None
        self._server = None
        self._stop_signal = None
        self._clients.clear()
        if self.state.apply(running=False):
            LOGGER.info("Server stopped")

    def _run(self, host: str, port: int) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._serve(host, port))
        except Exception as exc:
            if self._ready_event.is_set():
                LOGGER.error("Listener loop terminated with error: %s", exc)
            else:
                self._start_error = exc
        finally:
            self._ready_event.set()
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    async def _serve(self, host: str, port: int) -> None:
        stop_signal = asyncio.Event()
        self._stop_signal = stop_signal
        server = await asyncio.start_server(
            self._handle_client,
            host,
            port,
            backlog=self.backlog,
            reuse_address=True,
        )
        self._server = server
        sockets = server.sockets or []
        if sockets:
            self._bound_port = sockets[0].getsockname()[1]
        self._ready_event.set()

        try:
            await stop_signal.wait()
        finally:
            server.close()
            for writer in list(self._clients):
                try:
                    writer.close()
                except Exception:
                    pass
            try:
                await asyncio.wait_for(server.wait_closed(), timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                LOGGER.warning("Timed out waiting for connections to close")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        self._clients.add(writer)
        dispatcher = self.dispatcher_factory()
        loop = asyncio.get_running_loop()
        try:
            while not dispatcher.closed:
                try:
                    data = await reader.read(self.read_size)
                except (ConnectionError, OSError):
                    break
                if not data:
                    break
                responses = await loop.run_in_executor(self._executor, dispatcher.feed, data)
                for response in responses:
                    writer.write(response.to_bytes())
                if responses:
                    await writer.drain()
        except Exception as exc:
            LOGGER.debug("Connection %s closed with error: %s", peer, exc)
        finally:
            self._clients.discard(writer)
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass
