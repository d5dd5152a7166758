"""Relay from the in-process agent to the out-of-process Collector."""

from hookrelay.services.relay.channel import RelayChannel
from hookrelay.services.relay.event_queue import BoundedEventQueue
from hookrelay.services.relay.framing import (
    FrameDecoder,
    FrameTooLarge,
    decode_frame,
    encode_frame,
)
from hookrelay.services.relay.transport import BaseTransport, SocketTransport

__all__ = [
    "BaseTransport",
    "BoundedEventQueue",
    "FrameDecoder",
    "FrameTooLarge",
    "RelayChannel",
    "SocketTransport",
    "decode_frame",
    "encode_frame",
]
