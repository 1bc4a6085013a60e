"""Connection registry and client connection behaviour tests."""

from __future__ import annotations

import pytest

from mjpeg_relay.service.event_bus import EventBus, EventType
from mjpeg_relay.web.registry import ClientConnection, ConnectionRegistry, ConnectionState


class _FakeTransport:
    def __init__(self) -> None:
        self.pending = 0
        self.closing = False
        self.aborted = False

    def is_closing(self) -> bool:
        return self.closing

    def get_write_buffer_size(self) -> int:
        return self.pending

    def abort(self) -> None:
        self.aborted = True
        self.closing = True


class _FakeWriter:
    def __init__(self) -> None:
        self.transport = _FakeTransport()
        self.written: list[bytes] = []
        self.close_calls = 0

    def write(self, data: bytes) -> None:
        self.written.append(data)

    def close(self) -> None:
        self.close_calls += 1
        self.transport.closing = True


def test_add_is_idempotent(make_connection) -> None:
    registry = ConnectionRegistry()
    connection = make_connection()

    assert registry.add(connection)
    assert not registry.add(connection)
    assert registry.size() == 1
    assert connection in registry
    assert connection.streaming


def test_remove_closes_exactly_once(make_connection) -> None:
    registry = ConnectionRegistry()
    connection = make_connection()
    registry.add(connection)

    assert registry.remove(connection)
    assert not registry.remove(connection)
    assert len(registry) == 0
    assert connection.close_calls == 1


def test_remove_unknown_connection_is_noop(make_connection) -> None:
    registry = ConnectionRegistry()
    connection = make_connection()
    assert not registry.remove(connection)
    assert connection.close_calls == 0


def test_registry_emits_connect_and_disconnect_events(make_connection) -> None:
    bus = EventBus()
    subscription = bus.subscribe()
    registry = ConnectionRegistry(bus)
    connection = make_connection()

    registry.add(connection)
    registry.add(connection)
    registry.remove(connection)

    connected = subscription.get(timeout=0.1)
    disconnected = subscription.get(timeout=0.1)
    assert connected is not None and connected.type == EventType.CLIENT_CONNECTED
    assert connected.message == connection.peer
    assert disconnected is not None and disconnected.type == EventType.CLIENT_DISCONNECTED
    assert subscription.get(timeout=0.05) is None
    bus.stop()


def test_close_all_continues_past_failing_close(make_connection) -> None:
    registry = ConnectionRegistry()
    broken = make_connection()
    healthy = make_connection()

    def _explode() -> None:
        broken.close_calls += 1
        raise OSError("socket already gone")

    broken.close = _explode
    registry.add(broken)
    registry.add(healthy)

    assert registry.close_all() == 2
    assert registry.size() == 0
    assert healthy.close_calls == 1


def test_snapshot_is_unaffected_by_later_changes(make_connection) -> None:
    registry = ConnectionRegistry()
    first, second = make_connection(), make_connection()
    registry.add(first)
    registry.add(second)

    snapshot = registry.snapshot()
    registry.remove(first)

    assert snapshot == [first, second]
    assert registry.snapshot() == [second]


def test_client_connection_state_machine() -> None:
    writer = _FakeWriter()
    connection = ClientConnection(writer, "127.0.0.1:4000")  # type: ignore[arg-type]
    assert connection.state is ConnectionState.OPEN
    assert not connection.is_connected()

    connection.mark_streaming()
    assert connection.state is ConnectionState.STREAMING
    assert connection.is_connected()

    connection.close()
    connection.close()
    assert connection.state is ConnectionState.CLOSED
    assert writer.close_calls == 1

    connection.mark_streaming()
    assert connection.state is ConnectionState.CLOSED


def test_client_connection_refuses_payload_beyond_backlog() -> None:
    writer = _FakeWriter()
    connection = ClientConnection(writer, "127.0.0.1:4000", max_backlog=100)  # type: ignore[arg-type]
    connection.mark_streaming()

    # An idle transport always takes a full frame, however large.
    assert connection.write(b"x" * 150) == 150

    writer.transport.pending = 60
    assert connection.write(b"y" * 50) == 0
    assert connection.write(b"z" * 40) == 40
    assert writer.written == [b"x" * 150, b"z" * 40]


def test_client_connection_write_fails_once_transport_closes() -> None:
    writer = _FakeWriter()
    connection = ClientConnection(writer, "127.0.0.1:4000")  # type: ignore[arg-type]
    connection.mark_streaming()
    writer.transport.closing = True

    assert not connection.is_connected()
    with pytest.raises(ConnectionError):
        connection.write(b"frame")


def test_client_connection_write_after_close_raises() -> None:
    writer = _FakeWriter()
    connection = ClientConnection(writer, "127.0.0.1:4000")  # type: ignore[arg-type]
    connection.mark_streaming()
    connection.close()

    with pytest.raises(ConnectionError):
        connection.write(b"frame")
    assert writer.written == []


def test_close_aborts_when_backlog_is_pending() -> None:
    writer = _FakeWriter()
    connection = ClientConnection(writer, "127.0.0.1:4000")  # type: ignore[arg-type]
    connection.mark_streaming()
    writer.transport.pending = 4096

    connection.close()

    assert writer.transport.aborted
    assert writer.close_calls == 0
    assert connection.state is ConnectionState.CLOSED
