"""Tests for the HTTP transport."""

import json

import httpx
import pytest

from legismcp.client import HTTPTransport, TransportError
from legismcp.client.transport import SESSION_HEADER, iter_sse_data

pytestmark = pytest.mark.anyio

SERVER_URL = "https://mcp.example.com/mcp"


def make_transport(handler):
    return HTTPTransport(SERVER_URL, "secret", timeout=5, transport=httpx.MockTransport(handler))


async def collect(iterator):
    return [item async for item in iterator]


async def lines(*items):
    for item in items:
        yield item


async def test_iter_sse_data():
    """Test SSE lines are assembled into event payloads."""
    payloads = await collect(
        iter_sse_data(
            lines(
                ": keep-alive",
                "event: message",
                'data: {"type": "ping"}',
                "",
                "data: first",
                "data:second",
                "id: 7",
                "",
                "",
                "data: trailing",
            )
        )
    )

    assert payloads == ['{"type": "ping"}', "first\nsecond", "trailing"]


async def test_send_request():
    """Test requests carry credentials and the session id."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "result": {"ok": True}},
            headers={SESSION_HEADER: "s2"},
        )

    async with make_transport(handler) as transport:
        response = await transport.send_request(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, session_id="s1"
        )

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == SERVER_URL
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers[SESSION_HEADER] == "s1"
    assert response.body["result"] == {"ok": True}
    assert response.session_id == "s2"


async def test_send_request_without_session():
    """Test no session header is sent before a session exists."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": {}})

    async with make_transport(handler) as transport:
        await transport.send_request({"id": 1, "method": "initialize"})

    assert SESSION_HEADER not in seen[0].headers


async def test_accepted_without_body():
    """Test a 202 reply yields an empty body."""

    async with make_transport(lambda request: httpx.Response(202)) as transport:
        response = await transport.send_request({"id": 1, "method": "tools/list"})

    assert response.body == {}


async def test_http_error_status():
    """Test non-2xx replies raise TransportError."""

    async with make_transport(lambda request: httpx.Response(500)) as transport:
        with pytest.raises(TransportError, match="HTTP 500: Internal Server Error"):
            await transport.send_request({"id": 1, "method": "tools/list"})


async def test_invalid_json_reply():
    """Test a reply that is not a JSON object raises TransportError."""

    async with make_transport(lambda request: httpx.Response(200, content=b"<html>")) as transport:
        with pytest.raises(TransportError):
            await transport.send_request({"id": 1, "method": "tools/list"})

    async with make_transport(lambda request: httpx.Response(200, json=[1, 2])) as transport:
        with pytest.raises(TransportError, match="list"):
            await transport.send_request({"id": 1, "method": "tools/list"})


async def test_network_failure():
    """Test network errors are wrapped in TransportError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_transport(handler) as transport:
        with pytest.raises(TransportError, match="connection refused"):
            await transport.send_request({"id": 1, "method": "tools/list"})


async def test_send_request_requires_connect():
    """Test requests fail before connect."""
    transport = make_transport(lambda request: httpx.Response(200))

    with pytest.raises(TransportError, match="not connected"):
        await transport.send_request({"id": 1, "method": "tools/list"})


async def test_open_stream():
    """Test the event stream yields frame payloads."""
    seen = []
    body = b'data: {"type": "connection", "sessionId": "s1"}\n\n: comment\n\ndata: {"type": "ping"}\n\n'

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    async with make_transport(handler) as transport:
        async with transport.open_stream("s1") as payloads:
            frames = [json.loads(payload) async for payload in payloads]

    assert seen[0].method == "GET"
    assert seen[0].headers["Accept"] == "text/event-stream"
    assert seen[0].headers[SESSION_HEADER] == "s1"
    assert frames == [{"type": "connection", "sessionId": "s1"}, {"type": "ping"}]


async def test_open_stream_rejected():
    """Test a non-200 stream reply raises TransportError on open."""

    async with make_transport(lambda request: httpx.Response(401)) as transport:
        with pytest.raises(TransportError, match="HTTP 401"):
            async with transport.open_stream("s1"):
                pass


async def test_delete_session():
    """Test session cleanup targets the session URL."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with make_transport(handler) as transport:
        await transport.delete_session("s1")

    assert seen[0].method == "DELETE"
    assert str(seen[0].url) == f"{SERVER_URL}/session/s1"
    assert seen[0].headers["Authorization"] == "Bearer secret"


async def test_delete_session_failure():
    """Test a failed cleanup raises TransportError."""

    async with make_transport(lambda request: httpx.Response(404)) as transport:
        with pytest.raises(TransportError):
            await transport.delete_session("s1")
