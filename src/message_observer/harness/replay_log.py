from __future__ import annotations

from collections import deque
from collections.abc import Callable

import structlog

from message_observer.domain.models import ObservedMessage
from message_observer.observability.metrics import observer_evicted_total

log = structlog.get_logger(__name__)

Listener = Callable[[ObservedMessage], None]

DEFAULT_CAPACITY = 100


class Subscription:
    def __init__(self, owner: ReplayLog, listener: Listener) -> None:
        self._owner = owner
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        self._owner._discard(self)  # noqa: SLF001

    def _deliver(self, message: ObservedMessage) -> None:
        if not self._active:
            return
        try:
            self._listener(message)
        except Exception:
            log.exception("observer.listener_failed", message_id=message.message_id)
            self.close()


class ReplayLog:
    """
    Bounded, append-only history of observed messages with broadcast to listeners.

    Every subscriber first receives the retained history (oldest first) and then
    every later append. Delivery is synchronous: all listeners have run before
    `append` returns. Once more than `capacity` messages were appended, the oldest
    are evicted and no longer replayed to new subscribers.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._entries: deque[ObservedMessage] = deque(maxlen=self._capacity)
        self._subscriptions: list[Subscription] = []
        self._evicted_total = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted_total(self) -> int:
        return self._evicted_total

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def snapshot(self) -> tuple[ObservedMessage, ...]:
        return tuple(self._entries)

    def append(self, message: ObservedMessage) -> None:
        if len(self._entries) == self._capacity:
            self._evicted_total += 1
            observer_evicted_total.inc()
        self._entries.append(message)

        # Copy: listeners may close their subscription while being notified.
        for subscription in list(self._subscriptions):
            subscription._deliver(message)  # noqa: SLF001

    def subscribe(self, listener: Listener) -> Subscription:
        subscription = Subscription(self, listener)
        self._subscriptions.append(subscription)
        for message in tuple(self._entries):
            if not subscription.active:
                break
            subscription._deliver(message)  # noqa: SLF001
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
