"""Preferences management for the ClipSync server."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

PREFERENCES_FILE = "clipsync_settings.json"
DEFAULT_PORT = 8080
DEFAULT_MAX_BODY_BYTES = 1024 * 1024
MAX_BODY_BYTES_LIMIT = 64 * 1024 * 1024
PENDING_CAPACITY_MAX = 50
MESSAGE_LOG_RETENTION_MIN = 1
MESSAGE_LOG_RETENTION_MAX = 20
DEFAULT_MESSAGE_LOG_RETENTION = 5
LOG_LEVEL_NAMES = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

ENV_HOST = "CLIPSYNC_HOST"
ENV_PORT = "CLIPSYNC_PORT"
ENV_DATA_DIR = "CLIPSYNC_DATA_DIR"
ENV_LOG_LEVEL = "CLIPSYNC_LOG_LEVEL"

LOGGER = logging.getLogger("ClipSync.preferences")


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in {"1", "true", "yes", "on"}:
            return True
        if token in {"0", "false", "no", "off"}:
            return False
    return default


def _coerce_int(value: Any, default: int, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        numeric = default
    else:
        try:
            numeric = int(value)
        except (TypeError, ValueError):
            numeric = default
    if minimum is not None:
        numeric = max(minimum, numeric)
    if maximum is not None:
        numeric = min(maximum, numeric)
    return numeric


def _coerce_float(value: Any, default: float, *, minimum: Optional[float] = None, maximum: Optional[float] = None) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        numeric = default
    if numeric != numeric:
        numeric = default
    if minimum is not None:
        numeric = max(minimum, numeric)
    if maximum is not None:
        numeric = min(maximum, numeric)
    return numeric


def _coerce_str(
    value: Any,
    default: str,
    *,
    allowed: Optional[set[str]] = None,
    transform: Callable[[str], str] | None = None,
    allow_empty: bool = False,
) -> str:
    if value is None:
        return default
    try:
        text = str(value)
    except Exception:
        return default
    text = text.strip()
    if transform:
        text = transform(text)
    if allowed and text not in allowed:
        return default
    if allow_empty:
        return text
    return text or default


def resolve_data_dir(explicit: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the directory holding preferences, the pending file and logs."""

    if explicit is not None:
        return Path(explicit).expanduser()
    env = os.environ if environ is None else environ
    override = (env.get(ENV_DATA_DIR) or "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".clipsync"


@dataclass
class Preferences:
    """Simple JSON-backed preferences store."""

    data_dir: Path
    host: str = ""
    port: int = DEFAULT_PORT
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    pending_capacity: int = 1
    restart_grace_seconds: float = 0.5
    shutdown_timeout_seconds: float = 5.0
    log_level: str = ""
    log_messages: bool = False
    message_log_retention: int = DEFAULT_MESSAGE_LOG_RETENTION
    toast_max_chars: int = 15

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        self._path = self.data_dir / PREFERENCES_FILE
        self._load_from_json()

    @property
    def path(self) -> Path:
        return self._path

    # Persistence ---------------------------------------------------------

    def _load_from_json(self) -> None:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError):
            LOGGER.debug("%s is not valid JSON; ignoring contents.", PREFERENCES_FILE)
            return
        if isinstance(data, Mapping):
            self._apply_raw_data(data)

    def _apply_raw_data(self, data: Mapping[str, Any]) -> None:
        self.host = _coerce_str(data.get("host"), self.host, allow_empty=True)
        self.port = _coerce_int(data.get("port"), self.port, minimum=0, maximum=65535)
        self.max_body_bytes = _coerce_int(
            data.get("max_body_bytes"),
            self.max_body_bytes,
            minimum=1,
            maximum=MAX_BODY_BYTES_LIMIT,
        )
        self.pending_capacity = _coerce_int(
            data.get("pending_capacity"),
            self.pending_capacity,
            minimum=1,
            maximum=PENDING_CAPACITY_MAX,
        )
        self.restart_grace_seconds = _coerce_float(
            data.get("restart_grace_seconds"),
            self.restart_grace_seconds,
            minimum=0.0,
            maximum=10.0,
        )
        self.shutdown_timeout_seconds = _coerce_float(
            data.get("shutdown_timeout_seconds"),
            self.shutdown_timeout_seconds,
            minimum=0.1,
            maximum=60.0,
        )
        self.log_level = _coerce_str(
            data.get("log_level"),
            self.log_level,
            allowed=LOG_LEVEL_NAMES | {""},
            transform=str.upper,
            allow_empty=True,
        )
        self.log_messages = _coerce_bool(data.get("log_messages"), self.log_messages)
        self.message_log_retention = _coerce_int(
            data.get("message_log_retention"),
            self.message_log_retention,
            minimum=MESSAGE_LOG_RETENTION_MIN,
            maximum=MESSAGE_LOG_RETENTION_MAX,
        )
        self.toast_max_chars = _coerce_int(data.get("toast_max_chars"), self.toast_max_chars, minimum=1)

    def apply_overrides(self, overrides: Mapping[str, Any]) -> None:
        """Apply explicit values (command-line flags) with the same coercion as the file."""

        if overrides:
            self._apply_raw_data(overrides)

    def apply_environment(self, environ: Optional[Mapping[str, str]] = None) -> None:
        """Overlay ``CLIPSYNC_*`` environment variables on the loaded values."""

        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        if env.get(ENV_HOST) is not None:
            overrides["host"] = env[ENV_HOST]
        if env.get(ENV_PORT):
            overrides["port"] = env[ENV_PORT]
        if env.get(ENV_LOG_LEVEL):
            overrides["log_level"] = env[ENV_LOG_LEVEL]
        if overrides:
            LOGGER.debug("Applying environment overrides: %s", ", ".join(sorted(overrides)))
            self._apply_raw_data(overrides)

    def save(self) -> None:
        payload = self._payload()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            LOGGER.warning("Failed to write %s: %s", self._path, exc)

    def _payload(self) -> Dict[str, Any]:
        return {
            "host": str(self.host or ""),
            "port": int(self.port),
            "max_body_bytes": int(self.max_body_bytes),
            "pending_capacity": int(self.pending_capacity),
            "restart_grace_seconds": float(self.restart_grace_seconds),
            "shutdown_timeout_seconds": float(self.shutdown_timeout_seconds),
            "log_level": str(self.log_level or ""),
            "log_messages": bool(self.log_messages),
            "message_log_retention": int(self.message_log_retention),
            "toast_max_chars": int(self.toast_max_chars),
        }
