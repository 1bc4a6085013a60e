"""Bookkeeping for clients subscribed to the MJPEG stream."""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Optional, Protocol

from mjpeg_relay.service.event_bus import EventBus, EventType

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_WRITE_BACKLOG = 2 * 1024 * 1024


class ConnectionState(Enum):
    OPEN = "open"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamConnection(Protocol):
    """What the registry and the broadcaster need from a subscriber."""

    peer: str

    def mark_streaming(self) -> None: ...

    def is_connected(self) -> bool: ...

    def write(self, payload: bytes) -> int: ...

    def close(self) -> None: ...


class ClientConnection:
    """A stream subscriber backed by an asyncio ``StreamWriter``.

    Writes never wait for the peer. The transport buffers outgoing bytes on
    its own; once the bytes still pending for this peer plus a new payload
    would exceed ``max_backlog``, the payload is refused and ``write`` reports
    zero bytes accepted.
    """

    def __init__(
        self,
        writer: asyncio.StreamWriter,
        peer: str,
        max_backlog: int = DEFAULT_MAX_WRITE_BACKLOG,
    ) -> None:
        self._writer = writer
        self.peer = peer
        self._max_backlog = max_backlog
        self._state = ConnectionState.OPEN
        self._state_lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def mark_streaming(self) -> None:
        with self._state_lock:
            if self._state is ConnectionState.OPEN:
                self._state = ConnectionState.STREAMING

    def is_connected(self) -> bool:
        if self._state is not ConnectionState.STREAMING:
            return False
        return not self._writer.transport.is_closing()

    def write(self, payload: bytes) -> int:
        if self._state is not ConnectionState.STREAMING:
            raise ConnectionError(f"connection to {self.peer} is {self._state.value}")
        transport = self._writer.transport
        if transport.is_closing():
            raise ConnectionResetError(f"transport to {self.peer} is closing")
        pending = transport.get_write_buffer_size()
        if pending and pending + len(payload) > self._max_backlog:
            LOGGER.debug(
                "Client %s has %d bytes pending; refusing %d byte payload",
                self.peer,
                pending,
                len(payload),
            )
            return 0
        try:
            self._writer.write(payload)
        except RuntimeError as exc:
            raise ConnectionError(f"write to {self.peer} failed: {exc}") from exc
        return len(payload)

    def close(self) -> None:
        with self._state_lock:
            if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                return
            self._state = ConnectionState.CLOSING
        try:
            transport = self._writer.transport
            if transport.get_write_buffer_size():
                # Drop the unsent backlog instead of draining it to a stalled peer.
                transport.abort()
            else:
                self._writer.close()
        finally:
            self._state = ConnectionState.CLOSED


class ConnectionRegistry:
    """Tracks live stream subscribers; safe to mutate during a broadcast pass."""

    def __init__(self, event_bus: Optional[EventBus] = None) -> None:
        self._connections: dict[int, StreamConnection] = {}
        self._lock = threading.Lock()
        self._event_bus = event_bus

    def add(self, connection: StreamConnection) -> bool:
        with self._lock:
            key = id(connection)
            if key in self._connections:
                return False
            self._connections[key] = connection
            connection.mark_streaming()
            count = len(self._connections)
        LOGGER.info("MJPEG client connected from %s (%d subscribed)", connection.peer, count)
        self._emit(EventType.CLIENT_CONNECTED, connection.peer)
        return True

    def remove(self, connection: StreamConnection) -> bool:
        with self._lock:
            removed = self._connections.pop(id(connection), None)
        if removed is None:
            return False
        try:
            connection.close()
        except Exception:
            LOGGER.warning("Failed to close MJPEG client %s cleanly", connection.peer, exc_info=True)
        LOGGER.info("MJPEG client disconnected from %s", connection.peer)
        self._emit(EventType.CLIENT_DISCONNECTED, connection.peer)
        return True

    def snapshot(self) -> list[StreamConnection]:
        with self._lock:
            return list(self._connections.values())

    def close_all(self) -> int:
        closed = 0
        for connection in self.snapshot():
            if self.remove(connection):
                closed += 1
        return closed

    def size(self) -> int:
        with self._lock:
            return len(self._connections)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, connection: object) -> bool:
        with self._lock:
            return self._connections.get(id(connection)) is connection

    def _emit(self, event_type: EventType, message: str) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, message)


__all__ = [
    "ClientConnection",
    "ConnectionRegistry",
    "ConnectionState",
    "DEFAULT_MAX_WRITE_BACKLOG",
    "StreamConnection",
]
