"""Minimal HTTP server broadcasting the latest frame as an MJPEG stream."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Optional, Set

import numpy as np

from mjpeg_relay.service.config import StreamSettings
from mjpeg_relay.service.event_bus import EventBus, EventType
from mjpeg_relay.service.network import build_server_url
from mjpeg_relay.web.broadcast import BroadcastScheduler, Encoder
from mjpeg_relay.web.errors import StreamServerError
from mjpeg_relay.web.registry import ClientConnection, ConnectionRegistry
from mjpeg_relay.web.routes import (
    NOT_FOUND_RESPONSE,
    Route,
    index_response,
    parse_request_line,
    resolve_route,
    stream_response_header,
)
from mjpeg_relay.web.streaming import FrameBuffer, encode_jpeg

LOGGER = logging.getLogger(__name__)

REQUEST_READ_LIMIT = 4096
STARTUP_TIMEOUT = 5.0
SHUTDOWN_TIMEOUT = 3.0


def _format_peer(peername: Any) -> str:
    if isinstance(peername, (tuple, list)) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername) if peername else "unknown"


class MJPEGStreamServer:
    """Serve a viewer page and an MJPEG stream fed from a single frame slot.

    The asyncio loop runs on its own daemon thread. ``publish`` may be called
    from any thread at any rate; the broadcast timer always sends whatever
    frame is current when it fires.
    """

    def __init__(
        self,
        settings: Optional[StreamSettings] = None,
        event_bus: Optional[EventBus] = None,
        encoder: Encoder = encode_jpeg,
    ) -> None:
        self._settings = settings or StreamSettings()
        self._events = event_bus or EventBus()
        self._boundary = self._settings.boundary.encode("ascii")
        self._frames = FrameBuffer()
        self._registry = ConnectionRegistry(self._events)
        self._scheduler = BroadcastScheduler(
            self._frames,
            self._registry,
            interval=self._settings.frame_interval,
            quality=self._settings.jpeg_quality,
            encoder=encoder,
            boundary=self._boundary,
        )
        self._lifecycle_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._broadcaster_task: Optional[asyncio.Task[None]] = None
        self._handler_tasks: Set[asyncio.Task[Any]] = set()
        self._port = 0

    @property
    def events(self) -> EventBus:
        return self._events

    def publish(self, frame: Optional[np.ndarray]) -> None:
        self._frames.publish(frame)

    def current_frame(self) -> Optional[np.ndarray]:
        return self._frames.current_frame()

    def is_running(self) -> bool:
        return self._loop is not None

    def server_port(self) -> int:
        return self._port

    def server_url(self) -> str:
        if not self.is_running():
            return ""
        return build_server_url(self._port)

    def client_count(self) -> int:
        return self._registry.size()

    def start(self, port: Optional[int] = None) -> int:
        """Bind the listener and start broadcasting; returns the bound port."""
        with self._lifecycle_lock:
            if self._loop is not None:
                LOGGER.warning("MJPEG server already running on port %d", self._port)
                return self._port
            bind_port = self._settings.port if port is None else port
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=self._run, args=(loop,), name="mjpeg-http", daemon=True)
            thread.start()
            future = asyncio.run_coroutine_threadsafe(self._open(bind_port), loop)
            try:
                bound_port = future.result(timeout=STARTUP_TIMEOUT)
            except Exception as exc:
                message = f"Unable to start MJPEG server on {self._settings.host}:{bind_port}: {exc}"
                LOGGER.error(message)
                self._events.emit(EventType.ERROR, message)
                self._stop_loop(loop, thread)
                raise StreamServerError(message) from exc
            self._loop = loop
            self._thread = thread
            self._port = bound_port
        LOGGER.info("MJPEG server listening on %s:%d", self._settings.host, bound_port)
        self._events.emit(EventType.STARTED, str(bound_port))
        return bound_port

    def stop(self) -> None:
        with self._lifecycle_lock:
            loop, thread = self._loop, self._thread
            if loop is None or thread is None:
                return
            LOGGER.info("Stopping MJPEG server")
            try:
                fut = asyncio.run_coroutine_threadsafe(self._shutdown(), loop)
                fut.result(timeout=SHUTDOWN_TIMEOUT)
            except Exception:
                LOGGER.exception("Failed to stop MJPEG server cleanly")
            self._stop_loop(loop, thread)
            self._loop = None
            self._thread = None
            self._port = 0
        LOGGER.info("MJPEG server stopped")
        self._events.emit(EventType.STOPPED)

    def _run(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop=loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()

    @staticmethod
    def _stop_loop(loop: asyncio.AbstractEventLoop, thread: threading.Thread) -> None:
        try:
            loop.call_soon_threadsafe(loop.stop)
        except RuntimeError:
            LOGGER.debug("MJPEG event loop already closed")
        thread.join(timeout=SHUTDOWN_TIMEOUT)
        if thread.is_alive():
            LOGGER.warning("MJPEG server thread did not exit within %.1fs", SHUTDOWN_TIMEOUT)

    async def _open(self, port: int) -> int:
        self._server = await asyncio.start_server(
            self._handle_connection,
            self._settings.host,
            port,
            reuse_address=True,
        )
        self._broadcaster_task = asyncio.ensure_future(self._scheduler.run())
        return self._server.sockets[0].getsockname()[1]

    async def _shutdown(self) -> None:
        if self._broadcaster_task is not None:
            self._broadcaster_task.cancel()
            try:
                await self._broadcaster_task
            except asyncio.CancelledError:
                pass
            except Exception:
                LOGGER.exception("MJPEG broadcaster task failed during shutdown")
            self._broadcaster_task = None

        closed = self._registry.close_all()
        if closed:
            LOGGER.info("Disconnected %d MJPEG client(s)", closed)

        handlers = [task for task in self._handler_tasks if not task.done()]
        for task in handlers:
            task.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)
        self._handler_tasks.clear()

        if self._server is not None:
            server, self._server = self._server, None
            try:
                server.close()
                await asyncio.wait_for(server.wait_closed(), timeout=1.0)
            except asyncio.TimeoutError:
                LOGGER.warning("Timed out waiting for MJPEG listener to close")
            except Exception:
                LOGGER.exception("Failed to close MJPEG listener")

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._handler_tasks.add(task)
        peer = _format_peer(writer.get_extra_info("peername"))
        connection: Optional[ClientConnection] = None
        try:
            try:
                data = await reader.read(REQUEST_READ_LIMIT)
            except ConnectionError:
                data = b""
            request = parse_request_line(data)
            if request is None:
                LOGGER.debug("Malformed request from %s; disconnecting", peer)
                return
            LOGGER.debug("HTTP request %s %s from %s", request.method, request.path, peer)

            route = resolve_route(request.path)
            if route is Route.STREAM:
                writer.write(stream_response_header(self._boundary))
                connection = ClientConnection(writer, peer, self._settings.max_write_backlog)
                self._registry.add(connection)
                await self._watch_stream(reader, connection)
            elif route is Route.INDEX:
                writer.write(index_response())
            else:
                writer.write(NOT_FOUND_RESPONSE)
        finally:
            if connection is not None:
                self._registry.remove(connection)
            else:
                try:
                    writer.close()
                except Exception:
                    LOGGER.debug("Failed to close connection to %s", peer, exc_info=True)
            if task is not None:
                self._handler_tasks.discard(task)

    @staticmethod
    async def _watch_stream(reader: asyncio.StreamReader, connection: ClientConnection) -> None:
        # Anything a stream client sends after its request is ignored; EOF means it left.
        while connection.is_connected():
            try:
                chunk = await reader.read(REQUEST_READ_LIMIT)
            except ConnectionError:
                break
            if not chunk:
                break


__all__ = ["MJPEGStreamServer"]
