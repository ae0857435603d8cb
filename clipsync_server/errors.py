"""Exception types shared by the ClipSync server components."""
from __future__ import annotations

from typing import Any


class ClipSyncError(Exception):
    """Base class for ClipSync failures."""


class BindError(ClipSyncError):
    """Raised when the listener cannot bind or listen on its socket."""

    def __init__(self, host: str, port: int, reason: Any) -> None:
        super().__init__(f"Failed to bind {host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class BodyTooLarge(ClipSyncError):
    """Raised when a request body exceeds the configured cap."""

    def __init__(self, limit: int, received: int) -> None:
        super().__init__(f"Request body exceeds limit ({received} > {limit} bytes)")
        self.limit = limit
        self.received = received


class MalformedBody(ClipSyncError, ValueError):
    """Raised when an ingestion body cannot be turned into a message."""


class TemplateMissing(ClipSyncError):
    """Raised when the landing page template cannot be read."""


class MalformedRequest(ClipSyncError):
    """Raised when request framing (request line, headers, chunks) is invalid."""
