"""Shared fixtures: a scripted in-memory transport and a recording telemetry sink."""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import anyio
import pytest

from legismcp.client import McpClient, TransportError, TransportResponse
from legismcp.client.transport import Transport
from legismcp.telemetry import TelemetrySink

_CLOSE = object()

Handler = Callable[[Dict[str, Any]], Awaitable[TransportResponse]]


def reply(request: Dict[str, Any], result: Any = None, error: Optional[Dict[str, Any]] = None):
    """Build a direct JSON-RPC reply to ``request``."""
    body: Dict[str, Any] = {"jsonrpc": "2.0", "id": request["id"]}
    if error is not None:
        body["error"] = error
    else:
        body["result"] = result if result is not None else {}
    return TransportResponse(body=body)


class FakeTransport(Transport):
    """Transport whose replies and stream frames are scripted by the test."""

    def __init__(self, init_result: Optional[Dict[str, Any]] = None):
        self.init_result = init_result or {
            "sessionId": "s1",
            "subscriptionTier": "pro",
            "usageLimit": 1000,
            "monthlyUsageUsed": 5,
        }
        # An exception to raise, or a JSON-RPC error object to reply with
        self.init_error: Any = None
        self.handler: Optional[Handler] = None
        self.requests: List[Tuple[Dict[str, Any], Optional[str]]] = []
        self.stream_session_ids: List[Optional[str]] = []
        self.deleted: List[str] = []
        self.delete_error: Optional[Exception] = None
        self.delete_delay = 0.0
        self.fail_opens = 0
        self.connected = False
        self._queue: Optional[asyncio.Queue] = None

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    async def send_request(self, request, session_id=None) -> TransportResponse:
        self.requests.append((request, session_id))
        if request["method"] == "initialize":
            if isinstance(self.init_error, dict):
                return reply(request, error=self.init_error)
            if self.init_error is not None:
                raise self.init_error
            return reply(request, self.init_result)
        if self.handler is None:
            return reply(request, {})
        return await self.handler(request)

    @asynccontextmanager
    async def open_stream(self, session_id=None):
        self.stream_session_ids.append(session_id)
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise TransportError("Event stream refused")

        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue

        async def payloads():
            while True:
                item = await queue.get()
                if item is _CLOSE:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item

        yield payloads()

    async def delete_session(self, session_id: str) -> None:
        self.deleted.append(session_id)
        if self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        if self.delete_error is not None:
            raise self.delete_error

    @property
    def stream_opens(self) -> int:
        return len(self.stream_session_ids)

    def push(self, frame: Any) -> None:
        """Deliver a frame (dict or raw text) on the open stream."""
        payload = frame if isinstance(frame, str) else json.dumps(frame)
        self._queue.put_nowait(payload)

    def drop_stream(self) -> None:
        self._queue.put_nowait(TransportError("Event stream dropped"))

    def close_stream(self) -> None:
        self._queue.put_nowait(_CLOSE)

    def request_ids(self) -> List[Any]:
        return [request["id"] for request, _ in self.requests]


class RecordingSink(TelemetrySink):
    """Telemetry sink that keeps every record."""

    def __init__(self):
        self.successes: List[Tuple[str, Dict[str, Any], Any, float]] = []
        self.failures: List[Tuple[str, Dict[str, Any], str, float]] = []
        self.timeouts: List[Tuple[str, Dict[str, Any], float]] = []
        self.access_token: Optional[str] = None

    async def report_success(self, tool_name, arguments, result, elapsed_ms) -> None:
        self.successes.append((tool_name, arguments, result, elapsed_ms))

    async def report_failure(self, tool_name, arguments, error_message, elapsed_ms) -> None:
        self.failures.append((tool_name, arguments, error_message, elapsed_ms))

    async def report_timeout(self, tool_name, arguments, elapsed_ms) -> None:
        self.timeouts.append((tool_name, arguments, elapsed_ms))

    def set_access_token(self, token) -> None:
        self.access_token = token


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def client(transport, sink):
    """A client over the fake transport with short timeouts."""
    return McpClient(
        "https://mcp.example.com/mcp",
        "test-key",
        transport=transport,
        telemetry=sink,
        request_timeout=0.5,
        retry_attempts=3,
        retry_delay=0.01,
    )


@pytest.fixture
async def connected_client(client):
    await client.connect()
    yield client
    await client.disconnect()


@pytest.fixture
def wait_until():
    """Poll a condition until it holds or fail after a timeout."""

    async def _wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        with anyio.fail_after(timeout):
            while not condition():
                await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def make_reply():
    return reply
