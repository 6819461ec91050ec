"""Event emitters for the scheduler."""

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Iterable, List

from fleet_scheduler.core.events_model import SlotEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "slot.bound",
    "slot.status_applied",
    "slot.retired",
    "slot.stale_discarded",
    "slot.unhealthy",
    "task.kill_requested",
    "task.orphan_killed",
    "task.launch_requested",
    "reconcile.started",
    "reconcile.applied",
    "reconcile.superseded",
    "desired.reconfigured",
}


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[SlotEvent]) -> None:
        """Emit one or more events."""
        pass


class LogEventEmitter(EventEmitter):
    """Logs events at DEBUG and keeps the most recent ``max_events`` in memory."""

    def __init__(self, max_events: int = 1000):
        self.events: Deque[SlotEvent] = deque(maxlen=max_events)

    def emit(self, events: Iterable[SlotEvent]) -> None:
        for event in events:
            if event.event_type not in ALLOWED_EVENTS:
                raise ValueError(f"Invalid event type: {event.event_type}")

            self.events.append(event)

            logger.debug(
                f"[event] {event.event_type} | slot={event.slot_id} task={event.task_id} {event.metadata}"
            )

    def of_type(self, event_type: str) -> List[SlotEvent]:
        return [e for e in self.events if e.event_type == event_type]


class MultiEventEmitter(EventEmitter):
    """Fan-out to multiple emitters."""

    def __init__(self, emitters: Iterable[EventEmitter]):
        self._emitters = list(emitters)

    def emit(self, events: Iterable[SlotEvent]) -> None:
        events = list(events)
        for emitter in self._emitters:
            emitter.emit(events)


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[SlotEvent]) -> None:
        pass
