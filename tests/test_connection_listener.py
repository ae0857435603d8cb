from __future__ import annotations

import json
import socket
import threading
import time
from typing import List

import pytest

from clipsync_server.errors import BindError
from clipsync_server.handlers import ClipSyncHandlers
from clipsync_server.http_dispatcher import RequestDispatcher
from clipsync_server.listener import ConnectionListener
from clipsync_server.messages import InboundMessage
from clipsync_server.server_state import ServerState

LOCALHOST = "127.0.0.1"


def _make_listener(received: List[InboundMessage], **kwargs) -> ConnectionListener:
    state = ServerState()
    handlers = ClipSyncHandlers(state, received.append)
    options = {
        "port": 0,
        "preferred_host": LOCALHOST,
        "restart_grace": 0.05,
        "shutdown_timeout": 2.0,
        "workers": 2,
    }
    options.update(kwargs)
    return ConnectionListener(
        state=state,
        dispatcher_factory=lambda: RequestDispatcher(handlers, max_body_bytes=1024),
        **options,
    )


def _recv_response(sock: socket.socket) -> bytes:
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            return data
        data += chunk
    head, _, body = data.partition(b"\r\n\r\n")
    length = 0
    for line in head.split(b"\r\n")[1:]:
        name, _, value = line.partition(b":")
        if name.strip().lower() == b"content-length":
            length = int(value.strip())
    while len(body) < length:
        chunk = sock.recv(4096)
        if not chunk:
            break
        body += chunk
    return head + b"\r\n\r\n" + body


def _post_message(port: int, text: str) -> bytes:
    body = json.dumps({"message": text}).encode("utf-8")
    request = (
        f"POST /send HTTP/1.1\r\nHost: {LOCALHOST}\r\nContent-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n\r\n"
    ).encode("ascii") + body
    with socket.create_connection((LOCALHOST, port), timeout=5.0) as sock:
        sock.sendall(request)
        return _recv_response(sock)


@pytest.fixture
def received() -> List[InboundMessage]:
    return []


@pytest.fixture
def listener(received):
    instance = _make_listener(received)
    yield instance
    instance.stop()


def test_start_binds_and_marks_running(listener) -> None:
    snapshot = listener.start()

    assert snapshot.running is True
    assert snapshot.host == LOCALHOST
    assert snapshot.port > 0
    assert listener.state.running is True


def test_post_over_socket_delivers_message(listener, received) -> None:
    snapshot = listener.start()

    response = _post_message(snapshot.port, "over the wire")

    assert response.startswith(b"HTTP/1.1 200 OK")
    assert b'"status": "success"' in response
    assert [message.text for message in received] == ["over the wire"]


def test_keep_alive_serves_sequential_requests(listener) -> None:
    snapshot = listener.start()
    request = f"GET /ping HTTP/1.1\r\nHost: {LOCALHOST}\r\n\r\n".encode("ascii")

    with socket.create_connection((LOCALHOST, snapshot.port), timeout=5.0) as sock:
        sock.sendall(request)
        first = _recv_response(sock)
        sock.sendall(request)
        second = _recv_response(sock)

    assert first.endswith(b"Hello from ClipSync Web Server!")
    assert second.endswith(b"Hello from ClipSync Web Server!")


def test_stop_is_idempotent_and_clears_running(listener) -> None:
    listener.stop()
    listener.start()

    listener.stop()
    listener.stop()

    assert listener.state.running is False


def test_bind_failure_raises_and_stays_stopped(received) -> None:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind((LOCALHOST, 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]
    listener = _make_listener(received, port=port)
    try:
        with pytest.raises(BindError) as excinfo:
            listener.start()
        assert excinfo.value.port == port
        assert listener.state.running is False
    finally:
        listener.stop()
        blocker.close()

    snapshot = listener.start(port=0)
    try:
        assert snapshot.running is True
    finally:
        listener.stop()


def test_restart_replaces_listening_socket(listener, received) -> None:
    transitions = []
    listener.state.subscribe(lambda snapshot: transitions.append(snapshot.running))
    listener.start()
    old_server = listener._server
    assert old_server is not None and old_server.is_serving()

    snapshot = listener.restart().result(timeout=10.0)

    assert snapshot.running is True
    assert listener._server is not old_server
    assert not old_server.is_serving()
    assert transitions == [True, False, True]
    response = _post_message(snapshot.port, "after restart")
    assert response.startswith(b"HTTP/1.1 200")
    assert [message.text for message in received] == ["after restart"]


def test_stop_closes_open_connections(listener) -> None:
    snapshot = listener.start()
    sock = socket.create_connection((LOCALHOST, snapshot.port), timeout=5.0)
    try:
        time.sleep(0.1)
        listener.stop()
        sock.settimeout(5.0)
        try:
            data = sock.recv(1024)
        except ConnectionResetError:
            data = b""
        assert data == b""
    finally:
        sock.close()


def test_restart_during_start_waits_for_it(received) -> None:
    resolving = threading.Event()
    release = threading.Event()
    resolved: List[str] = []

    def _slow_resolve(preferred):
        resolved.append(preferred)
        if len(resolved) == 1:
            resolving.set()
            release.wait(timeout=5.0)
        return LOCALHOST

    listener = _make_listener(received, resolve_host=_slow_resolve)
    transitions = []
    listener.state.subscribe(lambda snapshot: transitions.append(snapshot.running))
    starter = threading.Thread(target=listener.start, name="test-starter")
    try:
        starter.start()
        assert resolving.wait(timeout=5.0)

        pending = listener.restart()
        time.sleep(0.1)
        assert not pending.done()
        assert transitions == []

        release.set()
        starter.join(timeout=5.0)
        snapshot = pending.result(timeout=10.0)

        assert snapshot.running is True
        assert listener.is_running
        assert transitions == [True, False, True]
        assert len(resolved) == 2
        assert listener._server is not None and len(listener._server.sockets) == 1
        assert _post_message(snapshot.port, "after racing restart").startswith(b"HTTP/1.1 200")
    finally:
        release.set()
        listener.stop()

    assert not listener.is_running
