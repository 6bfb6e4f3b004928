"""Synchronous event bus broadcasting session events to subscribers.

Subscribers are called in subscription order, on the publisher's
stack. There is no queue and no replay: a subscriber that joins late
misses earlier events. Subscriber exceptions are logged and never
reach the publisher.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from lachesis.adapters.events import SessionEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[SessionEvent], None]


class EventBus:
    """Observer list for SessionEvents."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass  # already removed

    def publish(self, event: SessionEvent) -> None:
        """Deliver *event* to every current subscriber."""
        # Snapshot so subscribers may unsubscribe while being notified
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "EventBus subscriber %r failed on %s",
                    callback, event.event_type,
                )

    def clear(self) -> None:
        """Drop all subscribers."""
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
