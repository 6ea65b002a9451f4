"""Domain events emitted by the tracker and a small publish/subscribe bus.

Mutating operations take an optional ``bus`` argument and publish to it after
their write has been committed. Presentation code subscribes to the event
classes it cares about; nothing here is process-wide.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityToggled:
    learner_id: str
    phase_id: str
    day: int
    hour: int
    activity_title: str
    done: bool
    status: str


@dataclass(frozen=True)
class LessonCompleted:
    learner_id: str
    phase_id: str
    day: int
    hour: int
    completed_at: str


@dataclass(frozen=True)
class ProgressUpdated:
    learner_id: str
    phase_id: str
    day: int
    hour: int
    status: str


@dataclass(frozen=True)
class PlanUpdated:
    learner_id: str
    plan_date: str
    action: str
    session_count: int


@dataclass(frozen=True)
class ConflictIgnored:
    learner_id: str
    key: str
    incoming_at: str
    stored_at: str


class EventBus:
    def __init__(self):
        self._handlers: dict[type, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Callable) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Callable) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    def publish(self, event) -> None:
        handlers = list(self._handlers[type(event)])
        logger.debug("Publishing %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            handler(event)


def emit(bus: Optional[EventBus], event) -> None:
    """Publish ``event`` when a bus was supplied."""
    if bus is not None:
        bus.publish(event)
