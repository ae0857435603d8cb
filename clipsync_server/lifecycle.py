"""Bridges host activity transitions to the pending-message drain."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from clipsync_server.messages import ActivityState, DeliveryEvent, InboundMessage
from clipsync_server.pending_store import PendingStore
from clipsync_server.scheduler import DEFAULT_EARLIEST_BEGIN, ExecutionWindow, TaskScheduler

LOGGER = logging.getLogger("ClipSync.lifecycle")


class LifecycleBridge:
    """Tracks foreground/background state and drains parked messages on wake.

    Draining happens on every transition to ACTIVE and whenever the scheduler
    grants a background execution window; both paths share :meth:`drain`.
    """

    def __init__(
        self,
        store: PendingStore,
        emit: Callable[[DeliveryEvent], Optional[bool]],
        scheduler: Optional[TaskScheduler] = None,
        initial: ActivityState = ActivityState.ACTIVE,
    ) -> None:
        self._store = store
        self._emit = emit
        self._scheduler = scheduler
        self._state_lock = threading.Lock()
        self._drain_lock = threading.Lock()
        self._activity = initial

    @property
    def activity(self) -> ActivityState:
        with self._state_lock:
            return self._activity

    def set_activity(self, state: ActivityState) -> List[DeliveryEvent]:
        """Record a host transition; returns any events produced by draining."""

        with self._state_lock:
            previous = self._activity
            self._activity = state
        if previous is not state:
            LOGGER.debug("Activity changed: %s -> %s", previous.value, state.value)
        if state is ActivityState.ACTIVE:
            return self.drain()
        if previous is not state:
            self._schedule()
        return []

    def park(self, message: InboundMessage) -> bool:
        """Store ``message`` for later unless the host is already ACTIVE.

        Runs under the drain lock so a wake-up can never slip in between the
        activity check and the store write. Returns False when the caller
        should deliver immediately instead.
        """

        with self._drain_lock:
            if self.activity is ActivityState.ACTIVE:
                return False
            self._store.put(message)
            return True

    def drain(self) -> List[DeliveryEvent]:
        """Deliver everything pending as Immediate events and clear what was delivered.

        A message is kept when the emit callback explicitly returns False
        (nobody accepted it). A callback that raises counts as delivered.
        """

        with self._drain_lock:
            pending = self._store.snapshot()
            if not pending:
                return []
            events: List[DeliveryEvent] = []
            delivered: List[InboundMessage] = []
            for message in pending:
                event = DeliveryEvent.immediate(message.text)
                try:
                    accepted = self._emit(event)
                except Exception as exc:
                    LOGGER.warning("Delivery callback raised error while draining: %s", exc)
                    accepted = True
                if accepted is False:
                    continue
                events.append(event)
                delivered.append(message)
            self._store.discard(delivered)
        kept = len(pending) - len(delivered)
        if kept:
            LOGGER.warning("%d pending message(s) not accepted by any receiver; keeping them", kept)
        LOGGER.debug("Drained %d pending message(s)", len(events))
        return events

    def handle_execution_window(self, window: ExecutionWindow) -> None:
        """Scheduler entry point for a granted processing window."""

        window.expiration_handler = lambda: window.complete(False)
        try:
            self.drain()
        except Exception as exc:
            LOGGER.warning("Background drain failed: %s", exc)
            window.complete(False)
        else:
            window.complete(True)
        if self.activity is ActivityState.BACKGROUND:
            self._schedule()

    def _schedule(self) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.schedule_processing(DEFAULT_EARLIEST_BEGIN)
        except Exception as exc:
            LOGGER.warning("Could not schedule background processing: %s", exc)
