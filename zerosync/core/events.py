"""
Sequencer event channel.

The sequencer publishes what happens to transactions and batches here; the API
layer, loggers and tests subscribe instead of the sequencer reaching into them.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Sequencer event types"""
    TRANSACTION_ADDED = "transaction_added"
    BATCH_CREATED = "batch_created"
    BATCH_PROVEN = "batch_proven"
    BATCH_FAILED = "batch_failed"
    BATCH_ANCHORED = "batch_anchored"
    ANCHOR_FAILED = "anchor_failed"


@dataclass
class SequencerEvent:
    """Notification published by the sequencer"""
    event_type: EventType
    payload: dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary"""
        return {
            "event": self.event_type.value,
            "payload": self.payload,
            "timestamp": self.timestamp
        }


Subscriber = Callable[[SequencerEvent], None]

WILDCARD = "*"


class EventBus:
    """
    Thread-safe publish/subscribe channel.

    Subscribers run synchronously on the publishing thread. A failing subscriber is
    logged and skipped so it can never break a batch cycle.
    """

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType | str, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback.

        Args:
            event_type: EventType to listen to, or "*" for every event
            callback: Called with the SequencerEvent

        Returns:
            Function that removes the subscription
        """
        key = event_type.value if isinstance(event_type, EventType) else event_type
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, event: SequencerEvent) -> None:
        """Deliver an event to its subscribers and to wildcard subscribers."""
        with self._lock:
            callbacks = list(self._subscribers.get(event.event_type.value, []))
            callbacks += self._subscribers.get(WILDCARD, [])

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.event_type.value}: {e}")

    def emit(self, event_type: EventType, **payload: Any) -> SequencerEvent:
        """Build and publish an event in one call."""
        event = SequencerEvent(event_type=event_type, payload=payload)
        self.publish(event)
        return event

    def subscriber_count(self) -> int:
        """Number of registered callbacks across all event types"""
        with self._lock:
            return sum(len(callbacks) for callbacks in self._subscribers.values())
