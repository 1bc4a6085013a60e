"""Latest-frame store and MJPEG part encoding helpers."""

from __future__ import annotations

import threading
from typing import Optional

import cv2
import numpy as np

DEFAULT_BOUNDARY = b"--boundary"
DEFAULT_JPEG_QUALITY = 85


class FrameBuffer:
    """Holds the most recently published image behind a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None

    def publish(self, frame: Optional[np.ndarray]) -> None:
        if frame is None or frame.size == 0:
            return
        # Own a copy so the producer can reuse its array after publishing.
        snapshot = np.array(frame, copy=True)
        snapshot.flags.writeable = False
        with self._lock:
            self._frame = snapshot

    def current_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._frame


def encode_jpeg(frame: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Encode a BGR or grayscale image to JPEG bytes."""
    if not 1 <= quality <= 100:
        raise ValueError(f"JPEG quality must be within 1..100, got {quality}")
    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValueError("JPEG encoder rejected frame")
    return buffer.tobytes()


def build_multipart_part(jpeg: bytes, boundary: bytes = DEFAULT_BOUNDARY) -> bytes:
    return (
        boundary
        + b"\r\n"
        + b"Content-Type: image/jpeg\r\n"
        + b"Content-Length: "
        + str(len(jpeg)).encode("ascii")
        + b"\r\n\r\n"
        + jpeg
        + b"\r\n"
    )


__all__ = [
    "DEFAULT_BOUNDARY",
    "DEFAULT_JPEG_QUALITY",
    "FrameBuffer",
    "build_multipart_part",
    "encode_jpeg",
]
