"""Request/response correlation table.

Maps correlation ids to the ``api_call`` events still waiting for their
response. Entries are pruned once they are older than the correlation
window or when the table grows past ``max_pending``; a pruned entry is
implicit data loss (its response will be emitted as unmatched), never an
error.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from hookrelay.exceptions import CorrelationTimeout
from hookrelay.models.events import Event

logger = logging.getLogger(__name__)


@dataclass
class PendingCall:
    """An emitted ``api_call`` awaiting its response."""

    event: Event
    registered_at: float


class CorrelationTable:
    """Thread-safe, insertion-ordered map of pending calls.

    The lock is only held while the mapping is mutated; nothing inside the
    critical section blocks or calls out.
    """

    def __init__(
        self,
        window_seconds: float = 300.0,
        max_pending: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_pending = max_pending
        self._clock = clock
        self._pending: OrderedDict[str, PendingCall] = OrderedDict()
        self._lock = threading.Lock()
        self.pruned_total = 0

    def allocate(self) -> str:
        """Return a fresh opaque correlation id."""
        return uuid4().hex

    def register(self, event: Event) -> None:
        """Record an emitted ``api_call`` under its correlation id."""
        if event.correlation_id is None:
            raise ValueError("Cannot register an event without a correlation id")
        with self._lock:
            now = self._clock()
            pruned = self._prune_locked(now)
            self._pending[event.correlation_id] = PendingCall(event, now)
            while len(self._pending) > self.max_pending:
                self._pending.popitem(last=False)
                pruned += 1
            self.pruned_total += pruned
        if pruned:
            logger.debug(f"Pruned {pruned} unmatched correlation entries")

    def resolve(self, correlation_id: str) -> PendingCall:
        """Remove and return the pending call for ``correlation_id``.

        Raises:
            CorrelationTimeout: If the entry was pruned or never registered.
        """
        with self._lock:
            pruned = self._prune_locked(self._clock())
            self.pruned_total += pruned
            pending = self._pending.pop(correlation_id, None)
        if pruned:
            logger.debug(f"Pruned {pruned} unmatched correlation entries")
        if pending is None:
            raise CorrelationTimeout(correlation_id)
        return pending

    def prune(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            pruned = self._prune_locked(self._clock())
            self.pruned_total += pruned
        if pruned:
            logger.debug(f"Pruned {pruned} unmatched correlation entries")
        return pruned

    def _prune_locked(self, now: float) -> int:
        # Insertion order is registration order, so expired entries are
        # always at the front.
        cutoff = now - self.window_seconds
        pruned = 0
        while self._pending:
            oldest = next(iter(self._pending.values()))
            if oldest.registered_at > cutoff:
                break
            self._pending.popitem(last=False)
            pruned += 1
        return pruned

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, correlation_id: str) -> bool:
        with self._lock:
            return correlation_id in self._pending
