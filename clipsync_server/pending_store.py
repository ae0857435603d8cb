"""Durable holding area for messages that arrive while the app is backgrounded."""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional

from clipsync_server.messages import InboundMessage

PENDING_FILENAME = "pending_message.json"
_STORE_VERSION = 1


def _default_state() -> Dict[str, Any]:
    return {"version": _STORE_VERSION, "messages": []}


def _decode_messages(raw: Any) -> List[InboundMessage]:
    if not isinstance(raw, dict):
        return []
    entries = raw.get("messages")
    if not isinstance(entries, list):
        return []
    decoded: List[InboundMessage] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        message = InboundMessage.from_payload(entry)
        if message is not None:
            decoded.append(message)
    return decoded


class PendingStore:
    """Holds undelivered messages and writes every change through to disk.

    With ``capacity=1`` (the default) a new message replaces whatever was
    pending. Larger capacities keep a FIFO queue and drop the oldest entry
    once the bound is reached.
    """

    def __init__(
        self,
        path: Path,
        capacity: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._path = path
        self._capacity = max(1, int(capacity))
        self._logger = logger or logging.getLogger("ClipSync.pending")
        self._lock = threading.Lock()
        self._messages: Deque[InboundMessage] = deque()
        self._ensure_parent()
        self._load_existing()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def capacity(self) -> int:
        return self._capacity

    def _ensure_parent(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._logger.warning("Unable to create pending store directory %s: %s", self._path.parent, exc)

    def _load_existing(self) -> None:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.warning("Failed to load pending messages from %s: %s", self._path, exc)
            return
        messages = _decode_messages(raw)
        if len(messages) > self._capacity:
            messages = messages[-self._capacity:]
        with self._lock:
            self._messages.extend(messages)
        if messages:
            self._logger.debug("Restored %d pending message(s) from %s", len(messages), self._path)

    def put(self, message: InboundMessage) -> Optional[InboundMessage]:
        """Store ``message``; returns the entry it displaced, if any."""

        displaced: Optional[InboundMessage] = None
        with self._lock:
            if len(self._messages) >= self._capacity:
                displaced = self._messages.popleft()
            self._messages.append(message)
            snapshot = self._serialise_locked()
        if displaced is not None:
            if self._capacity == 1:
                self._logger.debug("Pending message replaced by newer content")
            else:
                self._logger.warning(
                    "Pending queue full (%d); dropping oldest message received at %s",
                    self._capacity,
                    displaced.received_at.isoformat(),
                )
        self._write_snapshot(snapshot)
        return displaced

    def snapshot(self) -> List[InboundMessage]:
        with self._lock:
            return list(self._messages)

    def peek(self) -> Optional[InboundMessage]:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def discard(self, messages: Iterable[InboundMessage]) -> int:
        """Remove the given entries, leaving anything stored since untouched."""

        targets = list(messages)
        removed = 0
        with self._lock:
            for target in targets:
                try:
                    self._messages.remove(target)
                except ValueError:
                    continue
                removed += 1
            snapshot = self._serialise_locked() if removed else None
        if snapshot is not None:
            self._write_snapshot(snapshot)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
            snapshot = self._serialise_locked()
        self._write_snapshot(snapshot)

    def is_empty(self) -> bool:
        with self._lock:
            return not self._messages

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def _serialise_locked(self) -> Dict[str, Any]:
        state = _default_state()
        state["messages"] = [message.to_payload() for message in self._messages]
        return state

    def _write_snapshot(self, snapshot: Mapping[str, Any]) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(snapshot, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self._path)
            return True
        except Exception as exc:
            self._logger.warning("Failed to write pending messages to %s: %s", self._path, exc)
            return False


def resolve_pending_path(root: Path) -> Path:
    """Return the pending-message file rooted at the given data folder."""

    return root / PENDING_FILENAME
