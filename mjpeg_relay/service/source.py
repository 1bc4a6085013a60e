"""Video producers that publish frames into the stream server."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import cv2
import numpy as np

from mjpeg_relay.service.config import SourceSettings

LOGGER = logging.getLogger(__name__)

FrameSink = Callable[[np.ndarray], None]

TEST_PATTERN = "test-pattern"


class _ThreadedSource:
    """Runs ``_run`` on a daemon thread until ``stop`` is called."""

    name = "frame-source"

    def __init__(self, sink: FrameSink) -> None:
        self._sink = sink
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.frames_published = 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            LOGGER.warning("%s already running", self.name)
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _emit(self, frame: np.ndarray) -> None:
        self._sink(frame)
        self.frames_published += 1

    def _run(self) -> None:  # pragma: no cover - overridden
        raise NotImplementedError


class TestPatternSource(_ThreadedSource):
    """Synthetic feed: a sweeping bar with a frame counter."""

    name = "test-pattern"

    def __init__(self, sink: FrameSink, width: int = 640, height: int = 480, fps: float = 30.0) -> None:
        super().__init__(sink)
        self._width = width
        self._height = height
        self._period = 1.0 / max(fps, 0.1)

    def render(self, index: int) -> np.ndarray:
        frame = np.zeros((self._height, self._width, 3), dtype=np.uint8)
        frame[:, :] = (48, 32, 16)
        bar_width = max(self._width // 16, 4)
        x = (index * 4) % max(self._width - bar_width, 1)
        frame[:, x : x + bar_width] = (0, 200, 255)
        cv2.putText(
            frame,
            f"frame {index}",
            (16, self._height - 24),
            cv2.FONT_HERSHEY_SIMPLEX,
            1.0,
            (255, 255, 255),
            2,
            cv2.LINE_AA,
        )
        return frame

    def _run(self) -> None:
        index = 0
        next_due = time.monotonic()
        while not self._stop_event.is_set():
            self._emit(self.render(index))
            index += 1
            next_due += self._period
            delay = next_due - time.monotonic()
            if delay < 0:
                next_due = time.monotonic()
                delay = 0
            self._stop_event.wait(delay)


class CaptureSource(_ThreadedSource):
    """Reads frames from an OpenCV capture (camera index, file or URL)."""

    name = "capture"

    def __init__(
        self,
        sink: FrameSink,
        location: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        fps: Optional[float] = None,
        reconnect_delay: float = 1.0,
    ) -> None:
        super().__init__(sink)
        self._location = location
        self._width = width
        self._height = height
        self._reconnect_delay = reconnect_delay
        # Cameras pace themselves; files and streams are throttled to ``fps``.
        self._period = 1.0 / fps if fps and not location.isdigit() else 0.0

    def _open(self) -> Optional[cv2.VideoCapture]:
        target: int | str = int(self._location) if self._location.isdigit() else self._location
        capture = cv2.VideoCapture(target)
        if not capture.isOpened():
            capture.release()
            LOGGER.warning("Unable to open video source %s", self._location)
            return None
        if self._width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        if self._height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        LOGGER.info("Opened video source %s", self._location)
        return capture

    def _run(self) -> None:
        capture: Optional[cv2.VideoCapture] = None
        try:
            while not self._stop_event.is_set():
                if capture is None:
                    capture = self._open()
                    if capture is None:
                        self._stop_event.wait(self._reconnect_delay)
                        continue
                started = time.monotonic()
                ok, frame = capture.read()
                if not ok or frame is None:
                    # End of file or a camera hiccup; reopen to loop or recover.
                    LOGGER.debug("Video source %s returned no frame; reopening", self._location)
                    capture.release()
                    capture = None
                    self._stop_event.wait(self._reconnect_delay)
                    continue
                self._emit(frame)
                if self._period:
                    self._stop_event.wait(max(0.0, self._period - (time.monotonic() - started)))
        finally:
            if capture is not None:
                capture.release()


def create_source(settings: SourceSettings, sink: FrameSink) -> _ThreadedSource:
    if settings.source == TEST_PATTERN:
        return TestPatternSource(sink, settings.width, settings.height, settings.fps)
    return CaptureSource(
        sink,
        settings.source,
        width=settings.width,
        height=settings.height,
        fps=settings.fps,
        reconnect_delay=settings.reconnect_delay,
    )


__all__ = ["CaptureSource", "FrameSink", "TEST_PATTERN", "TestPatternSource", "create_source"]
