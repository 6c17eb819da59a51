"""Side-channel events for the presentation layer."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from threading import Lock

logger = logging.getLogger(__name__)


class StoreEventType(StrEnum):
    """Event types published by the core."""

    PERSISTENCE_FAILED = "persistence_failed"
    STORE_RECREATED = "store_recreated"
    SYNC_COMPLETED = "sync_completed"


@dataclass(frozen=True)
class StoreEvent:
    type: StoreEventType
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


Subscriber = Callable[[StoreEvent], None]


class EventBus:
    """In-process publish/subscribe channel.

    Publishing never fails the caller: subscriber errors are logged and
    the remaining subscribers still run.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event_type: StoreEventType, data: dict | None = None) -> StoreEvent:
        """Publish an event to every subscriber.

        Args:
            event_type: Type of event
            data: Optional event payload
        """
        event = StoreEvent(type=event_type, data=data or {})
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                # Don't fail the operation if a subscriber breaks
                logger.error(f"Event subscriber failed for {event_type}: {e}")
        logger.debug(f"Published {event_type} to {len(subscribers)} subscriber(s)")
        return event
