"""Clipboard history model and toast text helpers for the desktop host."""
from __future__ import annotations

import threading
from typing import List

DEFAULT_TOAST_MAX_CHARS = 15
RESTART_TOAST = "Restarting service..."


def toast_text(message: str, max_chars: int = DEFAULT_TOAST_MAX_CHARS) -> str:
    """Return ``message`` shortened to ``max_chars`` characters plus an ellipsis."""

    limit = max(1, int(max_chars))
    if len(message) <= limit:
        return message
    return message[:limit] + "..."


class ClipboardHistory:
    """Newest-first list of copied snippets without exact duplicates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: List[str] = []

    def add(self, text: str) -> bool:
        """Insert ``text`` at the top; returns False if it was already recorded."""

        with self._lock:
            if text in self._entries:
                return False
            self._entries.insert(0, text)
            return True

    def entries(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, text: object) -> bool:
        with self._lock:
            return text in self._entries
