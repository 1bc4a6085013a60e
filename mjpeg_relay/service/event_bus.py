"""In-process publish/subscribe bus for server notifications."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class EventType(Enum):
    STARTED = auto()
    STOPPED = auto()
    CLIENT_CONNECTED = auto()
    CLIENT_DISCONNECTED = auto()
    ERROR = auto()


@dataclass(frozen=True)
class ServerEvent:
    """Notification emitted by the stream server.

    ``message`` carries the peer address for client events, the bound port for
    ``STARTED`` and a human readable description for ``ERROR``.
    """

    type: EventType
    message: str
    timestamp: float

    @classmethod
    def now(cls, event_type: EventType, message: str = "") -> "ServerEvent":
        return cls(event_type, message, time.time())


class EventBus:
    """Thread-safe pub-sub queue with graceful shutdown semantics."""

    def __init__(self, maxsize: int = 1024) -> None:
        self._maxsize = maxsize
        self._subscribers: list["queue.Queue[ServerEvent]"] = []
        self._lock = threading.RLock()
        self._stopped = threading.Event()

    def publish(self, event: ServerEvent) -> None:
        if self._stopped.is_set():
            return
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                # Slow subscribers lose their oldest event.
                try:
                    q.get_nowait()
                except queue.Empty:
                    pass
                try:
                    q.put_nowait(event)
                except queue.Full:
                    continue

    def emit(self, event_type: EventType, message: str = "") -> None:
        self.publish(ServerEvent.now(event_type, message))

    def subscribe(self, maxsize: Optional[int] = None) -> "EventSubscription":
        queue_size = maxsize or self._maxsize
        subscriber_queue: "queue.Queue[ServerEvent]" = queue.Queue(maxsize=queue_size)
        with self._lock:
            self._subscribers.append(subscriber_queue)
        return EventSubscription(self, subscriber_queue)

    def _unsubscribe(self, subscriber_queue: "queue.Queue[ServerEvent]") -> None:
        with self._lock:
            if subscriber_queue in self._subscribers:
                self._subscribers.remove(subscriber_queue)

    def stop(self) -> None:
        self._stopped.set()
        with self._lock:
            self._subscribers.clear()


class EventSubscription:
    """Handle returned to components consuming events from the bus."""

    def __init__(self, bus: EventBus, queue_ref: "queue.Queue[ServerEvent]") -> None:
        self._bus = bus
        self._queue = queue_ref
        self._stopped = False

    def get(self, timeout: float | None = 1.0) -> Optional[ServerEvent]:
        if self._stopped:
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if not self._stopped:
            self._bus._unsubscribe(self._queue)
            self._stopped = True


__all__ = ["EventBus", "EventSubscription", "EventType", "ServerEvent"]
