"""Tests for the connection lifecycle."""

import asyncio

import anyio

import pytest

from legismcp.client import (
    ConnectionClosedError,
    ConnectionManager,
    ConnectionState,
    EventType,
    ProtocolError,
    RpcError,
    TransportError,
    reconnect_delay,
)

pytestmark = pytest.mark.anyio


@pytest.fixture
def manager(transport):
    """A connection manager with fast retries and a generous call deadline."""
    return ConnectionManager(transport, request_timeout=5, retry_attempts=3, retry_delay=0.01)


@pytest.fixture
def recorded(manager):
    """Every event emitted by the manager, in order."""
    events = []
    manager.events.register(events.append)
    return events


def event_types(events):
    return [event.event_type for event in events]


def test_reconnect_delay():
    """Test exponential backoff."""
    assert [reconnect_delay(n, 1000) for n in (1, 2, 3)] == [1000, 2000, 4000]
    assert reconnect_delay(1, 0.5) == 0.5


async def test_connect_handshake(manager, transport, recorded):
    """Test connect performs the handshake and opens the stream for the session."""
    await manager.connect()

    assert manager.connection_state == ConnectionState.CONNECTED
    assert manager.is_connected
    assert manager.state.session_id == "s1"
    assert manager.state.authenticated
    assert manager.state.subscription_tier == "pro"
    assert manager.state.usage_limit == 1000
    assert manager.state.monthly_usage_used == 5
    assert transport.stream_session_ids == ["s1"]

    request, _ = transport.requests[0]
    assert request["method"] == "initialize"
    assert request["params"]["protocolVersion"] == "2024-11-05"
    assert set(request["params"]["capabilities"]) == {"tools", "resources", "prompts"}
    assert request["params"]["clientInfo"]["name"] == "legismcp"

    assert event_types(recorded) == [
        EventType.CONNECTING,
        EventType.INITIALIZED,
        EventType.CONNECTED,
    ]

    await manager.disconnect()


async def test_connect_twice_is_noop(manager, transport):
    """Test a second connect on a live connection sends nothing."""
    await manager.connect()
    await manager.connect()

    assert len(transport.requests) == 1
    assert transport.stream_opens == 1

    await manager.disconnect()


async def test_handshake_rejected(manager, transport, recorded):
    """Test a handshake error reply leaves the client disconnected."""
    transport.init_error = {"code": -32000, "message": "Invalid API key"}

    with pytest.raises(RpcError, match="Initialize failed: Invalid API key") as exc_info:
        await manager.connect()

    assert exc_info.value.code == -32000
    assert manager.connection_state == ConnectionState.DISCONNECTED
    assert not manager.is_connected
    assert transport.stream_opens == 0
    assert EventType.ERROR in event_types(recorded)


async def test_handshake_reply_wrong_shape(manager, transport, recorded):
    """Test a handshake reply with wrong-typed fields is a protocol error."""
    transport.init_result = {"sessionId": "s1", "usageLimit": "lots"}

    with pytest.raises(ProtocolError, match="Initialize failed"):
        await manager.connect()

    assert manager.connection_state == ConnectionState.DISCONNECTED
    assert transport.stream_opens == 0
    assert recorded[-1].event_type == EventType.ERROR


async def test_handshake_transport_failure(manager, transport):
    """Test a failed handshake request is raised without retrying."""
    transport.init_error = TransportError("HTTP 401: Unauthorized")

    with pytest.raises(TransportError):
        await manager.connect()

    assert manager.connection_state == ConnectionState.DISCONNECTED
    assert len(transport.requests) == 1


async def test_stream_refused_on_connect(manager, transport):
    """Test an initial stream failure fails connect instead of reconnecting."""
    transport.fail_opens = 1

    with pytest.raises(TransportError, match="refused"):
        await manager.connect()

    await asyncio.sleep(0.05)
    assert manager.connection_state == ConnectionState.DISCONNECTED
    assert transport.stream_opens == 1


async def test_reconnect_after_stream_drop(manager, transport, recorded, wait_until):
    """Test a dropped stream is reopened after the first backoff delay."""
    await manager.connect()

    transport.drop_stream()
    await wait_until(lambda: transport.stream_opens == 2 and manager.is_connected)

    assert manager.connection_state == ConnectionState.CONNECTED
    assert manager.retry_count == 0
    assert transport.stream_session_ids == ["s1", "s1"]

    reconnecting = [e for e in recorded if e.event_type == EventType.RECONNECTING]
    assert [(e.attempt, e.delay) for e in reconnecting] == [(1, 0.01)]

    await manager.disconnect()


async def test_stream_closed_by_server_reconnects(manager, transport, wait_until):
    """Test a clean end of stream is treated like a failure."""
    await manager.connect()

    transport.close_stream()
    await wait_until(lambda: transport.stream_opens == 2 and manager.is_connected)

    await manager.disconnect()


async def test_reconnect_gives_up(manager, transport, recorded, wait_until):
    """Test bounded reconnection ends in connection_failed."""
    await manager.connect()
    pending = manager.table.register(manager.ids.next(), method="tools/list")

    transport.fail_opens = 100
    transport.drop_stream()
    await wait_until(lambda: manager.connection_state == ConnectionState.CONNECTION_FAILED)

    reconnecting = [e for e in recorded if e.event_type == EventType.RECONNECTING]
    assert [e.delay for e in reconnecting] == [0.01, 0.02, 0.04]
    assert transport.stream_opens == 4
    assert recorded[-1].event_type == EventType.CONNECTION_FAILED
    assert recorded[-1].attempts == 3
    assert not manager.is_connected

    with pytest.raises(ConnectionClosedError):
        await pending

    # No further attempts once failed
    await asyncio.sleep(0.1)
    assert transport.stream_opens == 4

    await manager.disconnect()
    assert manager.connection_state == ConnectionState.DISCONNECTED


async def test_connect_after_failure(manager, transport, wait_until):
    """Test an explicit connect recovers from connection_failed."""
    await manager.connect()
    transport.fail_opens = 3
    transport.drop_stream()
    await wait_until(lambda: manager.connection_state == ConnectionState.CONNECTION_FAILED)

    await manager.connect()

    assert manager.is_connected
    assert manager.retry_count == 0

    await manager.disconnect()


async def test_ids_not_reused_across_reconnect(manager, transport, wait_until):
    """Test the id sequence continues across reconnection."""
    await manager.connect()
    await manager.send_request("tools/list")

    transport.drop_stream()
    await wait_until(lambda: transport.stream_opens == 2 and manager.is_connected)
    await manager.send_request("tools/list")

    ids = transport.request_ids()
    assert len(ids) == 4
    assert len(set(ids)) == 4
    assert ids == sorted(ids)

    await manager.disconnect()


async def test_stream_frames_are_routed(manager, transport, recorded, wait_until):
    """Test stream frames update state and reach observers."""
    await manager.connect()

    transport.push({"type": "connection", "sessionId": "s2", "usageLimit": 2000})
    transport.push({"type": "ping"})
    transport.push({"type": "notification", "method": "progress", "params": {"pct": 10}})
    transport.push({"type": "mystery", "value": 1})
    transport.push("{not json")
    transport.push({"type": "ping", "seq": 2})

    await wait_until(
        lambda: any(
            e.event_type == EventType.PING and e.data.get("seq") == 2 for e in recorded
        )
    )

    assert manager.state.session_id == "s2"
    assert manager.state.usage_limit == 2000
    assert manager.state.last_activity is not None

    session = next(e for e in recorded if e.event_type == EventType.SESSION)
    assert session.session_id == "s2"
    notification = next(e for e in recorded if e.event_type == EventType.NOTIFICATION)
    assert notification.method == "progress"
    assert notification.params == {"pct": 10}
    message = next(e for e in recorded if e.event_type == EventType.MESSAGE)
    assert message.data == {"type": "mystery", "value": 1}
    error = next(e for e in recorded if e.event_type == EventType.ERROR)
    assert error.error_type == "FrameDecodeError"

    # A malformed frame does not take the stream down
    assert manager.is_connected
    assert transport.stream_opens == 1

    await manager.disconnect()


async def test_disconnect_drains_pending_calls(manager, transport, recorded):
    """Test disconnect fails pending calls and deletes the session."""
    await manager.connect()
    first = manager.table.register(manager.ids.next())
    second = manager.table.register(manager.ids.next())

    await manager.disconnect()

    for future in (first, second):
        with pytest.raises(ConnectionClosedError, match="Connection closed"):
            await future
    assert len(manager.table) == 0
    assert transport.deleted == ["s1"]
    assert not transport.connected
    assert manager.connection_state == ConnectionState.DISCONNECTED
    assert manager.state.session_id is None
    assert event_types(recorded)[-2:] == [EventType.DISCONNECTING, EventType.DISCONNECTED]


async def test_disconnect_ignores_session_cleanup_failure(manager, transport):
    """Test a failing session DELETE does not break disconnect."""
    await manager.connect()
    transport.delete_error = TransportError("HTTP 500: Internal Server Error")

    await manager.disconnect()

    assert transport.deleted == ["s1"]
    assert manager.connection_state == ConnectionState.DISCONNECTED


async def test_disconnect_stops_reconnection(manager, transport, wait_until):
    """Test disconnect during backoff cancels further attempts."""
    manager.retry_delay = 0.2
    await manager.connect()

    transport.drop_stream()
    await wait_until(lambda: manager.connection_state == ConnectionState.RECONNECTING)
    await manager.disconnect()
    await asyncio.sleep(0.3)

    assert transport.stream_opens == 1
    assert manager.connection_state == ConnectionState.DISCONNECTED


@pytest.mark.parametrize(
    "frame",
    [
        {"type": "notification", "method": 42},
        {"type": "connection", "sessionId": 123},
        {"type": "response", "id": {"nested": 1}, "result": {}},
    ],
)
async def test_wrong_typed_frame_keeps_stream(manager, transport, recorded, wait_until, frame):
    """Test a well-formed JSON frame with a wrong-typed field is dropped in place."""
    await manager.connect()

    transport.push(frame)
    transport.push({"type": "ping", "seq": 1})
    await wait_until(lambda: EventType.PING in event_types(recorded))

    assert transport.stream_opens == 1
    assert EventType.RECONNECTING not in event_types(recorded)
    error = next(e for e in recorded if e.event_type == EventType.ERROR)
    assert error.error_type == "FrameDecodeError"
    assert manager.state.session_id == "s1"
    assert manager.is_connected

    await manager.disconnect()


async def test_disconnect_bounds_session_cleanup(manager, transport, recorded):
    """Test a hung session DELETE does not stall disconnect."""
    manager.session_cleanup_timeout = 0.05
    await manager.connect()
    transport.delete_delay = 10

    with anyio.fail_after(1):
        await manager.disconnect()

    assert transport.deleted == ["s1"]
    assert manager.connection_state == ConnectionState.DISCONNECTED
    assert recorded[-1].event_type == EventType.DISCONNECTED
