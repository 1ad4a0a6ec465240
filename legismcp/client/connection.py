"""Connection lifecycle: handshake, event stream, reconnection and dispatch."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from pydantic import ValidationError

from .correlation import DEFAULT_REQUEST_TIMEOUT, CorrelationTable, RequestIdGenerator
from .errors import (
    ConnectionClosedError,
    McpClientError,
    NotConnectedError,
    ProtocolError,
    RequestTimeoutError,
    RpcError,
    TransportError,
)
from .events import (
    ConnectedEvent,
    ConnectingEvent,
    ConnectionFailedEvent,
    DisconnectedEvent,
    DisconnectingEvent,
    ErrorEvent,
    EventManager,
    InitializedEvent,
    ReconnectingEvent,
)
from .frames import ConnectionFrame, build_request, reply_frame
from .models import ClientState, ConnectionState, InitializeResult
from .router import FrameRouter
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_CAPABILITIES = {"tools": True, "resources": True, "prompts": True}
SESSION_CLEANUP_TIMEOUT = 5.0


def reconnect_delay(attempt: int, base_delay: float) -> float:
    """
    Backoff before a reconnection attempt.

    Args:
        attempt: 1-based attempt number
        base_delay: Delay before the first attempt

    Returns:
        ``base_delay * 2 ** (attempt - 1)``
    """
    return base_delay * (2 ** (attempt - 1))


async def _cancel_task(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    if task is asyncio.current_task():
        return
    try:
        await task
    except asyncio.CancelledError:
        pass


class ConnectionManager:
    """
    Owns the client state, the event stream and the reconnection policy.

    States move ``disconnected -> connecting -> initialized -> connected``.
    A stream failure after ``connected`` starts automatic reconnection with
    exponential backoff; once ``retry_attempts`` consecutive attempts have
    failed the manager settles in ``connection_failed`` and stops.
    """

    def __init__(
        self,
        transport: Transport,
        events: Optional[EventManager] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
        client_info: Optional[Dict[str, str]] = None,
        capabilities: Optional[Dict[str, Any]] = None,
        session_cleanup_timeout: float = SESSION_CLEANUP_TIMEOUT,
    ):
        """
        Initialize the connection manager.

        Args:
            transport: Hybrid request/stream transport
            events: Event manager receiving lifecycle events
            request_timeout: Per-call deadline in seconds (also bounds the handshake)
            retry_attempts: Reconnection attempts before giving up
            retry_delay: Delay before the first reconnection attempt in seconds
            protocol_version: Protocol version announced in the handshake
            client_info: ``name``/``version`` announced in the handshake
            capabilities: Capabilities announced in the handshake
            session_cleanup_timeout: Bound on the session DELETE during disconnect
        """
        self.transport = transport
        self.events = events or EventManager()
        self.request_timeout = request_timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.protocol_version = protocol_version
        self.client_info = client_info or {"name": "legismcp", "version": "0.1.0"}
        self.capabilities = capabilities if capabilities is not None else dict(DEFAULT_CAPABILITIES)
        self.session_cleanup_timeout = session_cleanup_timeout

        self.state = ClientState()
        self.connection_state = ConnectionState.DISCONNECTED
        self.retry_count = 0

        self.ids = RequestIdGenerator()
        self.table = CorrelationTable(timeout=request_timeout)
        self.router = FrameRouter(
            self.table,
            self.events,
            on_connection=self._apply_connection_frame,
            on_activity=self._touch,
        )

        self._connect_lock = asyncio.Lock()
        self._stream_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._dispatch_tasks: Set[asyncio.Task] = set()
        self._closing = False

    # State helpers

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state != self.connection_state:
            logger.debug(f"Connection state {self.connection_state.value} -> {new_state.value}")
            self.connection_state = new_state

    def _touch(self) -> None:
        self.state.last_activity = datetime.now()

    def _apply_session_header(self, session_id: Optional[str]) -> None:
        if session_id and session_id != self.state.session_id:
            logger.debug(f"Session id refreshed from reply header: {session_id}")
            self.state.session_id = session_id

    def _apply_connection_frame(self, frame: ConnectionFrame) -> None:
        if frame.session_id:
            self.state.session_id = frame.session_id
        if frame.subscription_tier is not None:
            self.state.subscription_tier = frame.subscription_tier
        if frame.usage_limit is not None:
            self.state.usage_limit = frame.usage_limit
        if frame.monthly_usage_used is not None:
            self.state.monthly_usage_used = frame.monthly_usage_used

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED and self.state.connected

    # Lifecycle

    async def connect(self) -> None:
        """
        Perform the handshake and open the event stream.

        Returns once the stream is open. Does not retry on failure.

        Raises:
            RpcError: If the server rejects the handshake
            TransportError: If the handshake request or the stream fails
            RequestTimeoutError: If the handshake gets no reply in time
            ProtocolError: If the handshake reply has the wrong shape
        """
        async with self._connect_lock:
            if self.is_connected:
                return

            self._closing = False
            # An explicit connect supersedes any pending automatic retry
            if self._reconnect_task is not asyncio.current_task():
                await _cancel_task(self._reconnect_task)
                self._reconnect_task = None

            try:
                await self._establish()
            except Exception as e:
                self._set_state(ConnectionState.DISCONNECTED)
                await self.events.emit(ErrorEvent(error_message=str(e), error_type=type(e).__name__))
                raise

    async def _establish(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        await self.events.emit(ConnectingEvent())

        await self.transport.connect()
        result = await self._handshake()
        self._set_state(ConnectionState.INITIALIZED)
        await self.events.emit(
            InitializedEvent(
                session_id=result.session_id,
                subscription_tier=result.subscription_tier,
                usage_limit=result.usage_limit,
                monthly_usage_used=result.monthly_usage_used,
            )
        )

        await self._open_stream()

        self.state.connected = True
        self.state.authenticated = True
        self.retry_count = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to MCP server (session {self.state.session_id})")
        await self.events.emit(ConnectedEvent(state=self.state.to_dict()))

    async def _handshake(self) -> InitializeResult:
        request = build_request(
            "initialize",
            {
                "protocolVersion": self.protocol_version,
                "capabilities": self.capabilities,
                "clientInfo": self.client_info,
            },
            self.ids.next(),
        )

        try:
            response = await asyncio.wait_for(
                self.transport.send_request(request, self.state.session_id),
                self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"Initialize timed out after {self.request_timeout}s"
            ) from e

        self._apply_session_header(response.session_id)
        frame = reply_frame(request["id"], response.body)
        if frame is None:
            raise TransportError("Initialize failed: malformed reply")
        if frame.is_error:
            error = RpcError.from_payload(frame.error)
            raise RpcError(f"Initialize failed: {error.message}", code=error.code, data=error.data)

        try:
            result = InitializeResult.model_validate(frame.result or {})
        except ValidationError as e:
            raise ProtocolError(f"Initialize failed: invalid reply: {e}") from e
        if result.session_id:
            self.state.session_id = result.session_id
        self.state.subscription_tier = result.subscription_tier
        self.state.usage_limit = result.usage_limit
        self.state.monthly_usage_used = result.monthly_usage_used
        self._touch()
        return result

    async def _open_stream(self) -> None:
        opened = asyncio.get_running_loop().create_future()
        self._stream_task = asyncio.create_task(self._run_stream(opened))

        try:
            await asyncio.wait_for(opened, self.request_timeout)
        except asyncio.TimeoutError as e:
            await _cancel_task(self._stream_task)
            self._stream_task = None
            raise TransportError(
                f"Event stream did not open within {self.request_timeout}s"
            ) from e
        except BaseException:
            await _cancel_task(self._stream_task)
            self._stream_task = None
            raise

    async def _run_stream(self, opened: asyncio.Future) -> None:
        try:
            async with self.transport.open_stream(self.state.session_id) as payloads:
                if not opened.done():
                    opened.set_result(None)
                async for payload in payloads:
                    await self.router.route_payload(payload)
            error: Exception = TransportError("Event stream closed by server")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        if not opened.done():
            opened.set_exception(error)
            return
        if self._closing or self._stream_task is not asyncio.current_task():
            return
        await self._on_stream_failure(error)

    async def _on_stream_failure(self, error: Exception) -> None:
        logger.warning(f"Event stream failed: {error}")
        self._stream_task = None
        self.state.connected = False
        self._set_state(ConnectionState.RECONNECTING)
        await self.events.emit(ErrorEvent(error_message=str(error), error_type=type(error).__name__))
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closing:
            if self.retry_count >= self.retry_attempts:
                await self._give_up()
                return

            self.retry_count += 1
            delay = reconnect_delay(self.retry_count, self.retry_delay)
            self._set_state(ConnectionState.RECONNECTING)
            logger.info(f"Reconnecting in {delay}s (attempt {self.retry_count}/{self.retry_attempts})")
            await self.events.emit(ReconnectingEvent(attempt=self.retry_count, delay=delay))
            await asyncio.sleep(delay)

            try:
                async with self._connect_lock:
                    if self._closing or self.is_connected:
                        return
                    await self._establish()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Reconnection attempt {self.retry_count} failed: {e}")
                await self.events.emit(
                    ErrorEvent(error_message=str(e), error_type=type(e).__name__)
                )

    async def _give_up(self) -> None:
        self.state.connected = False
        self.state.authenticated = False
        self._set_state(ConnectionState.CONNECTION_FAILED)
        failed = self.table.fail_all(ConnectionClosedError("Connection failed"))
        logger.error(
            f"Connection failed after {self.retry_count} reconnection attempts "
            f"({failed} pending calls failed)"
        )
        await self.events.emit(ConnectionFailedEvent(attempts=self.retry_count))

    async def disconnect(self) -> None:
        """
        Tear the connection down.

        Pending calls fail with ``ConnectionClosedError``. The server-side
        session is deleted on a best-effort basis.
        """
        await self.events.emit(DisconnectingEvent())
        self._closing = True

        await _cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await _cancel_task(self._stream_task)
        self._stream_task = None

        failed = self.table.fail_all(ConnectionClosedError("Connection closed"))
        if failed:
            logger.info(f"Failed {failed} pending calls on disconnect")
        for task in list(self._dispatch_tasks):
            task.cancel()

        if self.state.session_id and self.transport.is_connected():
            try:
                await asyncio.wait_for(
                    self.transport.delete_session(self.state.session_id),
                    self.session_cleanup_timeout,
                )
            except asyncio.TimeoutError:
                logger.debug(
                    f"Session cleanup gave up after {self.session_cleanup_timeout}s"
                )
            except Exception as e:
                logger.debug(f"Ignoring session cleanup failure: {e}")

        await self.transport.disconnect()

        self.state.connected = False
        self.state.authenticated = False
        self.state.session_id = None
        self._set_state(ConnectionState.DISCONNECTED)
        await self.events.emit(DisconnectedEvent())

    # Dispatch

    async def send_request(
        self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        """
        Send a correlated request and wait for its reply.

        Args:
            method: Remote method name
            params: Method parameters
            timeout: Deadline in seconds (defaults to ``request_timeout``)

        Returns:
            The ``result`` member of the reply

        Raises:
            NotConnectedError: If the connection is not ready; nothing is sent
            RpcError: If the server replies with an error object
            RequestTimeoutError: If no reply arrives before the deadline
            TransportError: If the request cannot be delivered
            ConnectionClosedError: If the connection is torn down first
        """
        if not self.is_connected:
            raise NotConnectedError("Not connected to MCP server")

        request_id = self.ids.next()
        request = build_request(method, params, request_id)
        future = self.table.register(request_id, method=method, timeout=timeout)

        task = asyncio.create_task(self._dispatch(request))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        # Stop the POST once the call is settled by another path
        future.add_done_callback(lambda _: task.cancel())

        return await future

    async def _dispatch(self, request: Dict[str, Any]) -> None:
        request_id = request["id"]
        try:
            response = await self.transport.send_request(request, self.state.session_id)
        except asyncio.CancelledError:
            raise
        except McpClientError as e:
            self.table.reject(request_id, e)
            return
        except Exception as e:
            self.table.reject(request_id, TransportError(f"Request failed: {e}"))
            return

        self._apply_session_header(response.session_id)
        frame = reply_frame(request_id, response.body)
        if frame is None:
            logger.debug(f"Request {request_id} accepted; waiting for reply on event stream")
            return
        self.router.resolve(frame)
