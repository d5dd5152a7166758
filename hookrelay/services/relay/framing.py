"""Collector wire format.

Each event travels as one frame: a 4-byte big-endian length followed by
that many bytes of UTF-8 JSON matching the ``Event`` schema. Frames are
independently deserializable; the Collector sends no acknowledgements.
"""

import struct

from hookrelay.exceptions import HookRelayError
from hookrelay.models.events import Event

HEADER = struct.Struct(">I")
DEFAULT_MAX_FRAME_BYTES = 16 * 1024 * 1024


class FrameTooLarge(HookRelayError):
    """Raised when a frame exceeds the configured maximum size."""

    pass


def encode_frame(event: Event, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES) -> bytes:
    """Serialize ``event`` into a length-prefixed frame."""
    body = event.model_dump_json().encode("utf-8")
    if len(body) > max_frame_bytes:
        raise FrameTooLarge(
            f"{event.type.value} event from {event.source} is {len(body)} bytes "
            f"(limit {max_frame_bytes})"
        )
    return HEADER.pack(len(body)) + body


def decode_frame(body: bytes) -> Event:
    """Deserialize a frame body (without its length prefix)."""
    return Event.model_validate_json(body)


class FrameDecoder:
    """Incremental decoder for a byte stream of frames."""

    def __init__(self, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES):
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[Event]:
        """Consume ``data`` and return every event completed by it."""
        self._buffer.extend(data)
        events = []
        while len(self._buffer) >= HEADER.size:
            (length,) = HEADER.unpack_from(self._buffer)
            if length > self.max_frame_bytes:
                raise FrameTooLarge(f"Incoming frame of {length} bytes exceeds {self.max_frame_bytes}")
            end = HEADER.size + length
            if len(self._buffer) < end:
                break
            body = bytes(self._buffer[HEADER.size:end])
            del self._buffer[:end]
            events.append(decode_frame(body))
        return events

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)
