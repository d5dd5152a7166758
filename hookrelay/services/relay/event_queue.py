"""Bounded multi-producer event queue with drop-oldest overflow."""

import threading
from collections import deque

from hookrelay.models.events import Event


class BoundedEventQueue:
    """FIFO of events that never applies backpressure to producers.

    When full, ``put`` discards the oldest queued event. The consumer learns
    how many events were discarded since its previous ``get``. One
    condition variable guards the deque; it is only held to append or pop.
    """

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self._items: deque[Event] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._closed = False
        self._dropped_since_get = 0
        self.dropped_total = 0
        self.rejected_total = 0

    def put(self, event: Event) -> Event | None:
        """Append ``event``. Returns the event dropped to make room, if any.

        After ``close()`` the event is rejected (counted, not queued) and
        returned as the dropped one.
        """
        with self._cond:
            if self._closed:
                self.rejected_total += 1
                return event
            dropped = None
            if len(self._items) >= self.maxsize:
                dropped = self._items.popleft()
                self._dropped_since_get += 1
                self.dropped_total += 1
            self._items.append(event)
            self._cond.notify()
        return dropped

    def get(self, timeout: float | None = None) -> tuple[Event, int] | None:
        """Pop the oldest event.

        Returns:
            ``(event, dropped_before)`` or None if nothing arrived within
            ``timeout`` (or the queue is closed and empty).
        """
        with self._cond:
            if not self._items and not self._closed:
                self._cond.wait(timeout)
            if not self._items:
                return None
            event = self._items.popleft()
            dropped, self._dropped_since_get = self._dropped_since_get, 0
        return event, dropped

    def requeue(self, event: Event) -> bool:
        """Put an unsent event back at the head if there is room."""
        with self._cond:
            if len(self._items) >= self.maxsize:
                self._dropped_since_get += 1
                self.dropped_total += 1
                return False
            self._items.appendleft(event)
            self._cond.notify()
        return True

    def close(self) -> None:
        """Reject further puts and wake the consumer."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)
