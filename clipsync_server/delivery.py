"""Routes freshly ingested messages based on the application's activity state."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from clipsync_server.messages import ActivityState, DeliveryEvent, InboundMessage, LocalAlert
from clipsync_server.pending_store import PendingStore
from clipsync_server.scheduler import TaskScheduler

DeliveryCallback = Callable[[DeliveryEvent], Optional[bool]]
AlertCallback = Callable[[LocalAlert], None]
ActivityProvider = Callable[[], ActivityState]
ParkCallback = Callable[[InboundMessage], bool]

LOGGER = logging.getLogger("ClipSync.delivery")


class DeliveryRouter:
    """Turns an :class:`InboundMessage` into exactly one :class:`DeliveryEvent`.

    ACTIVE messages are handed straight to the UI collaborator. BACKGROUND
    messages are written to the pending store before anything else happens,
    then announced through a local alert while a short extra execution window
    is held open. When ``park`` is given it owns the store write and may refuse
    it, in which case the message is delivered immediately.
    """

    def __init__(
        self,
        store: PendingStore,
        emit: DeliveryCallback,
        *,
        alert: Optional[AlertCallback] = None,
        scheduler: Optional[TaskScheduler] = None,
        activity: Optional[ActivityProvider] = None,
        message_logger: Optional[logging.Logger] = None,
        park: Optional[ParkCallback] = None,
    ) -> None:
        self._store = store
        self._emit = emit
        self._alert = alert
        self._scheduler = scheduler
        self._activity = activity
        self._message_logger = message_logger
        self._park = park

    def ingest(self, message: InboundMessage) -> DeliveryEvent:
        """Route ``message`` using the current activity reported by the host."""

        state = self._activity() if self._activity is not None else ActivityState.ACTIVE
        return self.route(message, state)

    def route(self, message: InboundMessage, activity: ActivityState) -> DeliveryEvent:
        self._record(message)
        if activity is ActivityState.ACTIVE:
            event = DeliveryEvent.immediate(message.text)
            LOGGER.debug("Delivering message immediately (%d chars)", len(message.text))
            self._dispatch(event)
            return event

        window = None
        if self._scheduler is not None:
            try:
                window = self._scheduler.request_extra_time("clipsync.deliver")
            except Exception as exc:
                LOGGER.warning("Could not obtain background execution time: %s", exc)
        try:
            if not self._park_message(message):
                event = DeliveryEvent.immediate(message.text)
                LOGGER.debug("App became active before the message was parked; delivering now")
                self._dispatch(event)
                return event
            event = DeliveryEvent.deferred(message.text)
            LOGGER.debug("App in background; message parked for later delivery")
            self._dispatch(event)
            if self._alert is not None:
                try:
                    self._alert(LocalAlert.for_message(message.text))
                except Exception as exc:
                    LOGGER.warning("Local alert callback raised error: %s", exc)
        finally:
            if window is not None:
                window.complete(True)
        return event

    def _dispatch(self, event: DeliveryEvent) -> None:
        try:
            self._emit(event)
        except Exception as exc:
            LOGGER.warning("Delivery callback raised error for %s event: %s", event.kind.value, exc)

    def _park_message(self, message: InboundMessage) -> bool:
        if self._park is not None:
            return self._park(message)
        self._store.put(message)
        return True

    def _record(self, message: InboundMessage) -> None:
        if self._message_logger is None:
            return
        self._message_logger.info("%s %s", message.received_at.isoformat(), message.text)
