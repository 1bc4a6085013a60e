"""Shared fixtures: in-memory stand-ins for stream subscribers."""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import pytest


class FakeConnection:
    """Records payloads; ``accept`` caps how many bytes a write takes."""

    def __init__(
        self,
        peer: str,
        accept: Optional[int] = None,
        connected: bool = True,
        error: Optional[Exception] = None,
    ) -> None:
        self.peer = peer
        self.accept = accept
        self.connected = connected
        self.error = error
        self.streaming = False
        self.received: list[bytes] = []
        self.close_calls = 0
        self.on_write: Optional[Callable[[], None]] = None

    def mark_streaming(self) -> None:
        self.streaming = True

    def is_connected(self) -> bool:
        return self.connected and self.close_calls == 0

    def write(self, payload: bytes) -> int:
        if self.on_write is not None:
            self.on_write()
        if self.error is not None:
            raise self.error
        accepted = len(payload) if self.accept is None else min(self.accept, len(payload))
        self.received.append(payload[:accepted])
        return accepted

    def close(self) -> None:
        self.close_calls += 1


@pytest.fixture
def make_connection() -> Callable[..., FakeConnection]:
    counter = iter(range(1, 10_000))

    def _factory(**kwargs) -> FakeConnection:
        return FakeConnection(f"10.0.0.{next(counter)}:5000", **kwargs)

    return _factory


@pytest.fixture
def sample_frame() -> np.ndarray:
    frame = np.zeros((48, 64, 3), dtype=np.uint8)
    frame[:, :32] = (0, 128, 255)
    frame[10:20, 40:60] = (255, 255, 255)
    return frame
