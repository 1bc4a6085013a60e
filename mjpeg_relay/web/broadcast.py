"""Fixed-rate fan-out of the latest frame to every stream subscriber."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import numpy as np

from mjpeg_relay.web.registry import ConnectionRegistry, StreamConnection
from mjpeg_relay.web.streaming import (
    DEFAULT_BOUNDARY,
    DEFAULT_JPEG_QUALITY,
    FrameBuffer,
    build_multipart_part,
    encode_jpeg,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.033

Encoder = Callable[[np.ndarray, int], bytes]


class BroadcastScheduler:
    """Encode the current frame once per tick and push it to all subscribers.

    A subscriber that is no longer connected, whose write raises, or whose
    write is only partially accepted is evicted once the pass over the
    registry snapshot has finished. Nothing is retried or queued per client.
    """

    def __init__(
        self,
        frame_buffer: FrameBuffer,
        registry: ConnectionRegistry,
        interval: float = DEFAULT_INTERVAL,
        quality: int = DEFAULT_JPEG_QUALITY,
        encoder: Encoder = encode_jpeg,
        boundary: bytes = DEFAULT_BOUNDARY,
    ) -> None:
        if interval <= 0:
            raise ValueError("broadcast interval must be positive")
        self._frames = frame_buffer
        self._registry = registry
        self._interval = interval
        self._quality = quality
        self._encoder = encoder
        self._boundary = boundary
        self.ticks = 0
        self.frames_sent = 0

    def broadcast_once(self) -> int:
        """Run a single tick; returns how many subscribers got the frame."""
        frame = self._frames.current_frame()
        if frame is None or self._registry.size() == 0:
            return 0
        self.ticks += 1
        try:
            jpeg = self._encoder(frame, self._quality)
        except Exception:
            LOGGER.warning("Failed to encode frame for MJPEG broadcast", exc_info=True)
            return 0
        payload = build_multipart_part(jpeg, self._boundary)

        delivered = 0
        stale: list[StreamConnection] = []
        for connection in self._registry.snapshot():
            if connection not in self._registry:
                # Removal already decided elsewhere during this pass.
                continue
            if not connection.is_connected():
                LOGGER.debug("Client %s no longer connected", connection.peer)
                stale.append(connection)
                continue
            try:
                written = connection.write(payload)
            except OSError:
                LOGGER.debug("Failed to push MJPEG frame to client %s", connection.peer, exc_info=True)
                stale.append(connection)
                continue
            if written < len(payload):
                LOGGER.debug(
                    "Partial write to client %s: %d of %d bytes",
                    connection.peer,
                    written,
                    len(payload),
                )
                stale.append(connection)
                continue
            delivered += 1

        for connection in stale:
            self._registry.remove(connection)
        self.frames_sent += delivered
        return delivered

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        LOGGER.info(
            "MJPEG broadcaster started (interval=%.3fs, quality=%d)",
            self._interval,
            self._quality,
        )
        deadline = loop.time()
        while True:
            try:
                self.broadcast_once()
            except Exception:  # pragma: no cover - keep the timer alive
                LOGGER.exception("MJPEG broadcast tick failed")
            deadline += self._interval
            now = loop.time()
            if deadline < now:
                # Fell behind; skip the missed ticks instead of bursting.
                deadline = now
            await asyncio.sleep(deadline - now)


__all__ = ["BroadcastScheduler", "DEFAULT_INTERVAL", "Encoder"]
