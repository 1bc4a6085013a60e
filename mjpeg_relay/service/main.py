"""Main entry point wiring a video source to the MJPEG stream server."""

from __future__ import annotations

import argparse
import logging
import threading
import time
from typing import Any, Dict, Optional

from mjpeg_relay.service.config import AppConfig, resolve_config
from mjpeg_relay.service.event_bus import EventBus, EventSubscription, EventType, ServerEvent
from mjpeg_relay.service.source import create_source
from mjpeg_relay.web.errors import StreamServerError
from mjpeg_relay.web.mjpeg import MJPEGStreamServer

LOGGER = logging.getLogger(__name__)


class EventLogger:
    """Mirrors server notifications into the application log."""

    def __init__(self, event_bus: EventBus) -> None:
        self._subscription: EventSubscription = event_bus.subscribe()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="event-logger", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._subscription.close()
        self._thread.join(timeout=2.0)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            event = self._subscription.get(timeout=0.5)
            if not event:
                continue
            self._handle_event(event)

    def _handle_event(self, event: ServerEvent) -> None:
        if event.type == EventType.CLIENT_CONNECTED:
            LOGGER.info("Viewer joined: %s", event.message)
        elif event.type == EventType.CLIENT_DISCONNECTED:
            LOGGER.info("Viewer left: %s", event.message)
        elif event.type == EventType.ERROR:
            LOGGER.error("Server error: %s", event.message)
        elif event.type == EventType.STARTED:
            LOGGER.info("Server started on port %s", event.message)
        elif event.type == EventType.STOPPED:
            LOGGER.info("Server stopped")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve a live video feed as an MJPEG stream")
    parser.add_argument("--config", help="Path to application configuration JSON")
    parser.add_argument("--host", help="Address to bind (default from config: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to bind; 0 picks any free port")
    parser.add_argument("--quality", type=int, help="JPEG quality 1-100")
    parser.add_argument("--fps", type=float, help="Broadcast rate in frames per second")
    parser.add_argument(
        "--source",
        help="'test-pattern', a camera index, or a video file/URL readable by OpenCV",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def apply_overrides(app_config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Fold command-line flags over the loaded configuration."""
    stream: Dict[str, Any] = {}
    if args.host is not None:
        stream["host"] = args.host
    if args.port is not None:
        stream["port"] = args.port
    if args.quality is not None:
        stream["jpeg_quality"] = args.quality
    if args.fps is not None:
        stream["frame_interval_ms"] = max(1, round(1000.0 / args.fps))
    source: Dict[str, Any] = {}
    if args.source is not None:
        source["source"] = args.source
    if not stream and not source:
        return app_config
    # Re-validate so flag values get the same bounds checks as the file.
    data = app_config.model_dump()
    data["stream"].update(stream)
    data["source"].update(source)
    return AppConfig.from_dict(data)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    app_config = apply_overrides(resolve_config(args.config), args)
    LOGGER.info("Using video source %s", app_config.source.source)

    event_bus = EventBus()
    event_logger = EventLogger(event_bus)
    server = MJPEGStreamServer(app_config.stream, event_bus)
    try:
        server.start()
    except StreamServerError as exc:
        LOGGER.critical("%s", exc)
        event_logger.stop()
        event_bus.stop()
        return 1
    LOGGER.info("Open %s in a browser to watch the stream", server.server_url())

    source = create_source(app_config.source, server.publish)
    source.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        LOGGER.info("Shutdown requested")
    finally:
        source.stop()
        server.stop()
        event_logger.stop()
        event_bus.stop()
        LOGGER.info("Shutdown complete")
    return 0


if __name__ == "__main__":  # pragma: no cover - entry point guard
    raise SystemExit(main())
