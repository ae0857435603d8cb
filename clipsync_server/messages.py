"""Value types passed between the listener, the router and the UI collaborator."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

UTC = getattr(datetime, "UTC", timezone.utc)

ALERT_TITLE = "New content received"
ALERT_BODY_PREFIX = "Tap to copy: "
ALERT_THREAD_ID = "clipboard"
ALERT_NOTIFICATION_TYPE = "clipboard"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ActivityState(Enum):
    ACTIVE = "active"
    BACKGROUND = "background"


class DeliveryKind(Enum):
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class InboundMessage:
    """A text snippet accepted on the ingestion endpoint."""

    text: str
    received_at: datetime = field(default_factory=_utc_now)

    def to_payload(self) -> Dict[str, Any]:
        return {"text": self.text, "received_at": self.received_at.isoformat()}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Optional["InboundMessage"]:
        text = payload.get("text")
        if not isinstance(text, str) or not text:
            return None
        raw_ts = payload.get("received_at")
        received_at: Optional[datetime] = None
        if isinstance(raw_ts, str):
            try:
                received_at = datetime.fromisoformat(raw_ts)
            except ValueError:
                received_at = None
        if received_at is None:
            received_at = _utc_now()
        elif received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=UTC)
        return cls(text=text, received_at=received_at)


@dataclass(frozen=True)
class DeliveryEvent:
    """One-shot signal telling the UI collaborator a message is ready."""

    kind: DeliveryKind
    text: str

    @classmethod
    def immediate(cls, text: str) -> "DeliveryEvent":
        return cls(DeliveryKind.IMMEDIATE, text)

    @classmethod
    def deferred(cls, text: str) -> "DeliveryEvent":
        return cls(DeliveryKind.DEFERRED, text)

    @property
    def is_immediate(self) -> bool:
        return self.kind is DeliveryKind.IMMEDIATE


@dataclass(frozen=True)
class LocalAlert:
    """Local notification raised when a message is parked for later."""

    title: str
    body: str
    thread_id: str = ALERT_THREAD_ID
    user_info: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def for_message(cls, text: str) -> "LocalAlert":
        return cls(
            title=ALERT_TITLE,
            body=f"{ALERT_BODY_PREFIX}{text}",
            user_info={"notification_type": ALERT_NOTIFICATION_TYPE, "message": text},
        )
