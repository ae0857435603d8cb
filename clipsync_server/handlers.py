"""Concrete handlers for the four routes served by the dispatcher."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict

from clipsync_server.errors import MalformedBody, TemplateMissing
from clipsync_server.http_dispatcher import HttpResponse, RequestHead
from clipsync_server.landing_page import LandingPage
from clipsync_server.messages import InboundMessage
from clipsync_server.server_state import ServerState

ACK_MESSAGE = "Data received"
FALLBACK_BODY = "Hello from ClipSync Web Server!"
SERVER_ERROR_BODY = "Internal Server Error"

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

IngestFunc = Callable[[InboundMessage], Any]

LOGGER = logging.getLogger("ClipSync.handlers")


def extract_message(body: bytes, content_type: str = "") -> str:
    """Return the message text carried by an ingestion body.

    JSON objects must carry a non-empty ``message`` string. Anything that does
    not look like JSON is taken verbatim as long as it is not empty.
    Whitespace is real clipboard content and is kept as-is.
    """

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedBody(f"Body is not valid UTF-8: {exc}") from exc
    stripped = text.strip()
    looks_like_json = stripped[:1] in {"{", "["} or "json" in content_type.lower()
    if looks_like_json:
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise MalformedBody(f"Invalid JSON body: {exc.msg}") from exc
        if not isinstance(payload, dict):
            raise MalformedBody("JSON body must be an object")
        message = payload.get("message")
        if not isinstance(message, str):
            raise MalformedBody("JSON body is missing a 'message' string")
        if message == "":
            raise MalformedBody("Message is empty")
        return message
    if not text:
        raise MalformedBody("Message is empty")
    return text


class ClipSyncHandlers:
    """Route handlers bound to the shared server state and the delivery router."""

    def __init__(
        self,
        state: ServerState,
        ingest: IngestFunc,
        landing_page: LandingPage | None = None,
    ) -> None:
        self._state = state
        self._ingest = ingest
        self._landing_page = landing_page or LandingPage()

    def preflight(self, head: RequestHead) -> HttpResponse:
        return HttpResponse(200, dict(CORS_HEADERS), b"")

    def root(self, head: RequestHead) -> HttpResponse:
        target_url = self._state.endpoint_url
        try:
            page = self._landing_page.render(target_url)
        except TemplateMissing as exc:
            LOGGER.error("%s", exc)
            return HttpResponse.text(500, SERVER_ERROR_BODY, content_type="text/plain")
        return HttpResponse.text(200, page, content_type="text/html; charset=utf-8")

    def ingest(self, head: RequestHead, body: bytes) -> HttpResponse:
        try:
            text = extract_message(body, head.header("content-type"))
        except MalformedBody as exc:
            LOGGER.warning("Ignoring malformed message body (%d bytes): %s", len(body), exc)
            return HttpResponse.json(200, {"status": "error", "message": str(exc)})
        self._ingest(InboundMessage(text=text))
        return HttpResponse.json(200, {"status": "success", "message": ACK_MESSAGE})

    def fallback(self, head: RequestHead) -> HttpResponse:
        return HttpResponse.text(200, FALLBACK_BODY, content_type="text/plain")
