"""
Relay Channel

Moves events from hook handlers to the Collector:
- ``emit`` is called inline on host threads and only appends to a bounded
  queue; when the queue is full the oldest event is dropped
- A daemon drain thread serializes events and writes them to the transport
- Lost connections are retried with capped exponential backoff while new
  events keep accumulating in the bounded queue
- The next event sent after a drop carries the drop count in
  ``dropped_before``
"""

import logging
import threading
import time

from hookrelay.exceptions import RelayDisconnected
from hookrelay.models.events import Event
from hookrelay.services.interception_engine import agent_code
from hookrelay.services.relay.event_queue import BoundedEventQueue
from hookrelay.services.relay.framing import DEFAULT_MAX_FRAME_BYTES, FrameTooLarge, encode_frame
from hookrelay.services.relay.transport import BaseTransport

logger = logging.getLogger(__name__)


class RelayChannel:
    """Non-blocking event relay to an out-of-process Collector."""

    def __init__(
        self,
        transport: BaseTransport,
        queue_size: int = 4096,
        backoff_initial: float = 0.5,
        backoff_max: float = 30.0,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        poll_interval: float = 0.2,
    ):
        self.transport = transport
        self.queue = BoundedEventQueue(queue_size)
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.max_frame_bytes = max_frame_bytes
        self.poll_interval = poll_interval

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._flush_deadline = 0.0
        self._carried_drops = 0
        self._has_connected = False

        self.sent_count = 0
        self.oversized_count = 0
        self.reconnect_count = 0

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def emit(self, event: Event) -> None:
        """Queue ``event`` for delivery. Never blocks on capacity, never raises."""
        dropped = self.queue.put(event)
        if dropped is event:
            logger.debug(
                f"Relay stopped; rejected {event.type.value} event from {event.source}"
            )
        elif dropped is not None:
            logger.debug(
                f"Relay queue full; dropped {dropped.type.value} event from {dropped.source}"
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="hookrelay-relay", daemon=True)
        self._thread.start()
        logger.info("Relay channel started")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop accepting events, flush what fits in ``timeout``, then close."""
        self.queue.close()
        thread = self._thread
        if thread is None:
            self.transport.close()
            return
        self._flush_deadline = time.monotonic() + timeout
        self._stop.set()
        thread.join(timeout + self.poll_interval)
        if thread.is_alive():
            logger.warning("Relay drain thread did not finish within the flush timeout")
        else:
            self._thread = None
        remaining = len(self.queue)
        if remaining:
            logger.warning(f"Relay stopped with {remaining} undelivered events")
        logger.info("Relay channel stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stats(self) -> dict:
        return {
            "running": self.running,
            "connected": self.transport.connected,
            "queued": len(self.queue),
            "sent": self.sent_count,
            "dropped": self.queue.dropped_total,
            "rejected": self.queue.rejected_total,
            "oversized": self.oversized_count,
            "reconnects": self.reconnect_count,
        }

    # ------------------------------------------------------------------
    # Drain side
    # ------------------------------------------------------------------

    def _run(self) -> None:
        with agent_code():
            while not self._stop.is_set():
                item = self.queue.get(timeout=self.poll_interval)
                if item is not None:
                    self._deliver(*item)
            self._flush()
            self.transport.close()

    def _stamp(self, event: Event, dropped_before: int) -> Event:
        dropped = dropped_before + self._carried_drops
        self._carried_drops = 0
        if not dropped:
            return event
        return event.model_copy(update={"dropped_before": event.dropped_before + dropped})

    def _deliver(self, event: Event, dropped_before: int) -> bool:
        event = self._stamp(event, dropped_before)
        try:
            frame = encode_frame(event, self.max_frame_bytes)
        except FrameTooLarge as e:
            logger.warning(f"Dropping event: {e}")
            self.oversized_count += 1
            self._carried_drops = event.dropped_before + 1
            return False

        attempt = 0
        while True:
            try:
                self._ensure_connected()
                self.transport.send(frame)
                self.sent_count += 1
                return True
            except RelayDisconnected as e:
                self.transport.close()
                delay = min(self.backoff_max, self.backoff_initial * (2 ** attempt))
                attempt += 1
                logger.warning(f"{e}; retrying in {delay:.1f}s")
                if self._stop.wait(delay):
                    # Stopping; keep the event for the final flush
                    self.queue.requeue(event)
                    return False

    def _ensure_connected(self) -> None:
        if self.transport.connected:
            return
        self.transport.connect()
        if self._has_connected:
            self.reconnect_count += 1
            logger.info("Relay reconnected to Collector")
        self._has_connected = True

    def _flush(self) -> None:
        while time.monotonic() < self._flush_deadline:
            item = self.queue.get(timeout=0)
            if item is None:
                return
            event = self._stamp(*item)
            try:
                self._ensure_connected()
                self.transport.send(encode_frame(event, self.max_frame_bytes))
                self.sent_count += 1
            except (RelayDisconnected, FrameTooLarge) as e:
                logger.warning(f"Flush abandoned: {e}")
                self.queue.requeue(event)
                return
