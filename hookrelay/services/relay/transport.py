"""Transports carrying frames to the Collector."""

import logging
import socket
from abc import ABC, abstractmethod

from hookrelay.exceptions import RelayDisconnected

logger = logging.getLogger(__name__)


class BaseTransport(ABC):
    """A persistent duplex byte stream to the Collector."""

    @abstractmethod
    def connect(self) -> None:
        """Open the stream. Raises RelayDisconnected on failure."""
        pass

    @abstractmethod
    def send(self, frame: bytes) -> None:
        """Write one whole frame. Raises RelayDisconnected on failure."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass


class SocketTransport(BaseTransport):
    """TCP stream to ``host:port``."""

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 3.0,
        send_timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.send_timeout = send_timeout
        self._sock: socket.socket | None = None

    def connect(self) -> None:
        self.close()
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except OSError as e:
            raise RelayDisconnected(f"Cannot reach Collector at {self.host}:{self.port}: {e}") from e
        sock.settimeout(self.send_timeout)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._sock = sock
        logger.info(f"Connected to Collector at {self.host}:{self.port}")

    def send(self, frame: bytes) -> None:
        if self._sock is None:
            raise RelayDisconnected("Not connected to the Collector")
        try:
            self._sock.sendall(frame)
        except OSError as e:
            self.close()
            raise RelayDisconnected(f"Collector connection lost: {e}") from e

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.debug(f"Error closing Collector socket: {e}")

    @property
    def connected(self) -> bool:
        return self._sock is not None
