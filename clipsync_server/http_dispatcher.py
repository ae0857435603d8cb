"""Incremental HTTP/1.1 request framing and routing for one connection.

The dispatcher never touches a socket. The listener feeds it whatever bytes
arrive and writes back the responses it returns, so any split of head, body
and terminator across reads produces the same result.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Protocol

from clipsync_server.errors import BodyTooLarge, MalformedRequest

DEFAULT_MAX_BODY_BYTES = 1024 * 1024
DEFAULT_MAX_HEAD_BYTES = 32 * 1024
ROOT_PATH = "/"
INGEST_PATH = "/send"
_HEAD_TERMINATOR = b"\r\n\r\n"

LOGGER = logging.getLogger("ClipSync.dispatcher")


class DispatcherState(Enum):
    AWAITING_HEAD = "awaiting_head"
    ACCUMULATING_BODY = "accumulating_body"
    DISPATCHING = "dispatching"
    CLOSED = "closed"


@dataclass(frozen=True)
class RequestHead:
    method: str
    target: str
    version: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def path(self) -> str:
        path = self.target.split("?", 1)[0].split("#", 1)[0]
        return path or ROOT_PATH

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def keep_alive(self) -> bool:
        tokens = {token.strip().lower() for token in self.header("connection").split(",") if token.strip()}
        if self.version == "HTTP/1.0":
            return "keep-alive" in tokens
        return "close" not in tokens


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    close: bool = False

    @classmethod
    def text(cls, status: int, body: str, content_type: str = "text/plain; charset=utf-8", **kwargs: Any) -> "HttpResponse":
        return cls(status, {"Content-Type": content_type}, body.encode("utf-8"), **kwargs)

    @classmethod
    def json(cls, status: int, payload: Dict[str, Any], **kwargs: Any) -> "HttpResponse":
        encoded = json.dumps(payload).encode("utf-8")
        return cls(status, {"Content-Type": "application/json"}, encoded, **kwargs)

    @property
    def reason(self) -> str:
        try:
            return HTTPStatus(self.status).phrase
        except ValueError:
            return "Unknown"

    def to_bytes(self) -> bytes:
        lines = [f"HTTP/1.1 {self.status} {self.reason}"]
        for name, value in self.headers.items():
            if name.lower() in {"content-length", "connection"}:
                continue
            lines.append(f"{name}: {value}")
        lines.append(f"Content-Length: {len(self.body)}")
        lines.append("Connection: close" if self.close else "Connection: keep-alive")
        head = "\r\n".join(lines) + "\r\n\r\n"
        return head.encode("latin-1") + self.body


class RequestHandlers(Protocol):
    def preflight(self, head: RequestHead) -> HttpResponse:
        ...

    def root(self, head: RequestHead) -> HttpResponse:
        ...

    def ingest(self, head: RequestHead, body: bytes) -> HttpResponse:
        ...

    def fallback(self, head: RequestHead) -> HttpResponse:
        ...


def parse_head(raw: bytes) -> RequestHead:
    """Parse a request line plus header block (without the blank terminator line)."""

    try:
        text = raw.decode("iso-8859-1")
    except UnicodeDecodeError as exc:  # pragma: no cover - latin-1 accepts every byte
        raise MalformedRequest(str(exc)) from exc
    lines = text.split("\r\n")
    parts = lines[0].split(" ")
    if len(parts) != 3:
        raise MalformedRequest(f"Invalid request line: {lines[0]!r}")
    method, target, version = parts
    if not method or not method.isalpha() or not method.isupper():
        raise MalformedRequest(f"Invalid method: {method!r}")
    if not target:
        raise MalformedRequest("Empty request target")
    if version not in {"HTTP/1.0", "HTTP/1.1"}:
        raise MalformedRequest(f"Unsupported protocol version: {version!r}")
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        if line[0] in " \t":
            raise MalformedRequest("Obsolete header line folding")
        name, sep, value = line.partition(":")
        name = name.strip().lower()
        if not sep or not name or " " in name:
            raise MalformedRequest(f"Invalid header line: {line!r}")
        value = value.strip()
        if name in headers:
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value
    return RequestHead(method=method, target=target, version=version, headers=headers)


class RequestDispatcher:
    """Per-connection state machine: head, body, dispatch, repeat."""

    def __init__(
        self,
        handlers: RequestHandlers,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        max_head_bytes: int = DEFAULT_MAX_HEAD_BYTES,
    ) -> None:
        self._handlers = handlers
        self._max_body_bytes = max(0, int(max_body_bytes))
        self._max_head_bytes = max(1024, int(max_head_bytes))
        self._buffer = bytearray()
        self._state = DispatcherState.AWAITING_HEAD
        self._reset_request()

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is DispatcherState.CLOSED

    def _reset_request(self) -> None:
        self._head: Optional[RequestHead] = None
        self._body = bytearray()
        self._content_length = 0
        self._chunked = False
        self._chunk_phase = "size"
        self._chunk_remaining = 0

    def feed(self, data: bytes) -> List[HttpResponse]:
        """Consume ``data`` and return responses for every request it completes."""

        if self._state is DispatcherState.CLOSED:
            return []
        self._buffer.extend(data)
        responses: List[HttpResponse] = []
        while self._state is not DispatcherState.CLOSED:
            if self._state is DispatcherState.AWAITING_HEAD:
                failure = self._read_head()
                if failure is not None:
                    responses.append(self._fail(failure))
                    break
                if self._head is None:
                    break
            elif self._state is DispatcherState.ACCUMULATING_BODY:
                try:
                    complete = self._read_body()
                except BodyTooLarge as exc:
                    LOGGER.warning("Rejecting %s %s: %s", self._head.method, self._head.path, exc)
                    responses.append(self._fail(HttpResponse.text(413, "Payload Too Large")))
                    break
                except MalformedRequest as exc:
                    LOGGER.warning("Rejecting malformed request body: %s", exc)
                    responses.append(self._fail(HttpResponse.text(400, "Bad Request")))
                    break
                if not complete:
                    break
                self._state = DispatcherState.DISPATCHING
            else:
                responses.append(self._dispatch_current())
        return responses

    def _fail(self, response: HttpResponse) -> HttpResponse:
        response.close = True
        self._state = DispatcherState.CLOSED
        self._buffer.clear()
        self._reset_request()
        return response

    def _read_head(self) -> Optional[HttpResponse]:
        while self._buffer[:2] == b"\r\n":
            del self._buffer[:2]
        index = self._buffer.find(_HEAD_TERMINATOR)
        if index < 0:
            if len(self._buffer) > self._max_head_bytes:
                LOGGER.warning("Request head exceeds %d bytes; closing connection", self._max_head_bytes)
                return HttpResponse.text(431, "Request Header Fields Too Large")
            return None
        if index > self._max_head_bytes:
            LOGGER.warning("Request head exceeds %d bytes; closing connection", self._max_head_bytes)
            return HttpResponse.text(431, "Request Header Fields Too Large")
        raw_head = bytes(self._buffer[:index])
        del self._buffer[: index + len(_HEAD_TERMINATOR)]
        try:
            head = parse_head(raw_head)
        except MalformedRequest as exc:
            LOGGER.warning("Malformed request head: %s", exc)
            return HttpResponse.text(400, "Bad Request")

        self._reset_request()
        transfer_encoding = head.header("transfer-encoding").lower()
        if transfer_encoding:
            if transfer_encoding.split(",")[-1].strip() != "chunked":
                LOGGER.warning("Unsupported transfer encoding %r", transfer_encoding)
                return HttpResponse.text(501, "Not Implemented")
            self._chunked = True
        else:
            raw_length = head.header("content-length")
            if raw_length:
                try:
                    length = int(raw_length)
                except ValueError:
                    length = -1
                if length < 0:
                    LOGGER.warning("Invalid Content-Length %r", raw_length)
                    return HttpResponse.text(400, "Bad Request")
                if length > self._max_body_bytes:
                    LOGGER.warning(
                        "Rejecting %s %s: %s",
                        head.method,
                        head.path,
                        BodyTooLarge(self._max_body_bytes, length),
                    )
                    return HttpResponse.text(413, "Payload Too Large")
                self._content_length = length
        self._head = head
        self._state = DispatcherState.ACCUMULATING_BODY
        return None

    def _read_body(self) -> bool:
        if self._chunked:
            return self._read_chunked()
        needed = self._content_length - len(self._body)
        if needed > 0:
            take = self._buffer[:needed]
            self._body.extend(take)
            del self._buffer[: len(take)]
        return len(self._body) >= self._content_length

    def _read_chunked(self) -> bool:
        while True:
            if self._chunk_phase == "size":
                index = self._buffer.find(b"\r\n")
                if index < 0:
                    if len(self._buffer) > self._max_head_bytes:
                        raise MalformedRequest("Chunk size line too long")
                    return False
                line = bytes(self._buffer[:index]).split(b";", 1)[0].strip()
                del self._buffer[: index + 2]
                try:
                    size = int(line, 16)
                except ValueError as exc:
                    raise MalformedRequest(f"Invalid chunk size {line!r}") from exc
                if size < 0:
                    raise MalformedRequest(f"Invalid chunk size {line!r}")
                if size == 0:
                    self._chunk_phase = "trailer"
                    continue
                if len(self._body) + size > self._max_body_bytes:
                    raise BodyTooLarge(self._max_body_bytes, len(self._body) + size)
                self._chunk_remaining = size
                self._chunk_phase = "data"
            elif self._chunk_phase == "data":
                if self._chunk_remaining:
                    take = self._buffer[: self._chunk_remaining]
                    self._body.extend(take)
                    del self._buffer[: len(take)]
                    self._chunk_remaining -= len(take)
                    if self._chunk_remaining:
                        return False
                if len(self._buffer) < 2:
                    return False
                if self._buffer[:2] != b"\r\n":
                    raise MalformedRequest("Chunk data not terminated by CRLF")
                del self._buffer[:2]
                self._chunk_phase = "size"
            else:
                index = self._buffer.find(b"\r\n")
                if index < 0:
                    if len(self._buffer) > self._max_head_bytes:
                        raise MalformedRequest("Chunked trailer too long")
                    return False
                del self._buffer[: index + 2]
                if index == 0:
                    return True

    def _dispatch_current(self) -> HttpResponse:
        head = self._head
        body = bytes(self._body)
        assert head is not None
        response = self._route(head, body)
        keep_alive = head.keep_alive and not response.close
        response.close = not keep_alive
        self._reset_request()
        self._state = DispatcherState.AWAITING_HEAD if keep_alive else DispatcherState.CLOSED
        if not keep_alive:
            self._buffer.clear()
        return response

    def _route(self, head: RequestHead, body: bytes) -> HttpResponse:
        method = head.method
        path = head.path
        if method != "OPTIONS":
            LOGGER.debug("Received request for path: %s %s", method, path)
        try:
            if method == "OPTIONS":
                return self._handlers.preflight(head)
            if method == "GET" and path == ROOT_PATH:
                return self._handlers.root(head)
            if method == "POST" and path == INGEST_PATH:
                return self._handlers.ingest(head, body)
            return self._handlers.fallback(head)
        except Exception as exc:
            LOGGER.error("Handler for %s %s raised error: %s", method, path, exc)
            return HttpResponse.text(500, "Internal Server Error")
