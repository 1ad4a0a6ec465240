"""MCP client for the legislative-data tool server."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError

from legismcp import __version__
from legismcp.config import Config
from legismcp.telemetry import NullTelemetrySink, TelemetrySink, UsageLogger

from .base import ToolClient
from .connection import DEFAULT_PROTOCOL_VERSION, ConnectionManager
from .correlation import DEFAULT_REQUEST_TIMEOUT
from .errors import ProtocolError, RequestTimeoutError
from .events import EventManager
from .models import (
    ClientState,
    ConnectionState,
    Prompt,
    PromptResult,
    Resource,
    ResourceContent,
    Tool,
    ToolResult,
    UsageInfo,
)
from .transport import HTTPTransport, Transport

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _parse(model: type[M], data: Any, method: str) -> M:
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        raise ProtocolError(f"Invalid {method} reply: {e}") from e


def _parse_items(model: type[M], result: Any, key: str, method: str) -> list[M]:
    """Parse the list under ``key``, skipping entries that do not validate."""
    if not isinstance(result, dict):
        return []
    items = result.get(key) or []
    if not isinstance(items, list):
        raise ProtocolError(f"Invalid {method} reply: {key!r} is not a list")

    parsed = []
    for item in items:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid {model.__name__} in {method} reply: {e}")
    return parsed


class McpClient(ToolClient):
    """
    Client for a tool server reached over JSON-RPC with an event stream.

    Every remote call carries a unique id and is matched to its reply by that
    id alone, so any number of calls can be in flight at once.
    ``call_tool`` reports each outcome to the telemetry sink without waiting
    for delivery.
    """

    def __init__(
        self,
        server_url: str,
        api_key: str,
        transport: Optional[Transport] = None,
        telemetry: Optional[TelemetrySink] = None,
        events: Optional[EventManager] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
        client_name: str = "legismcp",
        client_version: Optional[str] = None,
        access_token: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            server_url: Tool server endpoint
            api_key: Bearer credential for the tool server
            transport: Transport to use (defaults to ``HTTPTransport``)
            telemetry: Sink receiving tool-call records
            events: Event manager for lifecycle observers
            request_timeout: Per-call deadline in seconds
            retry_attempts: Reconnection attempts before giving up
            retry_delay: Delay before the first reconnection attempt in seconds
            protocol_version: Protocol version announced in the handshake
            client_name: Client name announced in the handshake
            client_version: Client version announced in the handshake
            access_token: Credential forwarded to the telemetry sink
        """
        self.server_url = server_url
        self.api_key = api_key
        self.telemetry = telemetry or NullTelemetrySink()
        if access_token:
            self.telemetry.set_access_token(access_token)

        self.connection = ConnectionManager(
            transport or HTTPTransport(server_url, api_key, timeout=request_timeout),
            events=events,
            request_timeout=request_timeout,
            retry_attempts=retry_attempts,
            retry_delay=retry_delay,
            protocol_version=protocol_version,
            client_info={"name": client_name, "version": client_version or __version__},
        )
        self._telemetry_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> "McpClient":
        """Create a client from loaded configuration."""
        server = config.server
        telemetry = kwargs.pop("telemetry", None)
        if telemetry is None and config.telemetry.enabled:
            telemetry = UsageLogger(
                config.telemetry.endpoint,
                access_token=config.telemetry.access_token,
                timeout=config.telemetry.timeout,
            )

        return cls(
            server.url,
            server.api_key,
            telemetry=telemetry,
            request_timeout=server.request_timeout,
            retry_attempts=server.retry_attempts,
            retry_delay=server.retry_delay,
            protocol_version=server.protocol_version,
            client_name=server.client_name,
            client_version=server.client_version,
            **kwargs,
        )

    @property
    def events(self) -> EventManager:
        return self.connection.events

    # Connection management

    async def connect(self) -> None:
        await self.connection.connect()

    async def disconnect(self) -> None:
        await self.connection.disconnect()
        await self.flush_telemetry()

    async def send_request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Send a raw request and return the ``result`` member of the reply."""
        return await self.connection.send_request(method, params)

    # Protocol methods

    async def list_tools(self) -> list[Tool]:
        result = await self.send_request("tools/list")
        return _parse_items(Tool, result, "tools", "tools/list")

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """
        Invoke a tool and report the outcome to the telemetry sink.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            Tool result
        """
        arguments = arguments or {}
        start = time.monotonic()

        try:
            result = await self.send_request("tools/call", {"name": name, "arguments": arguments})
            tool_result = _parse(ToolResult, result, "tools/call")
        except RequestTimeoutError:
            elapsed_ms = (time.monotonic() - start) * 1000
            self._report(self.telemetry.report_timeout, name, arguments, elapsed_ms)
            raise
        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            self._report(self.telemetry.report_failure, name, arguments, str(e), elapsed_ms)
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        self._report(self.telemetry.report_success, name, arguments, tool_result, elapsed_ms)
        return tool_result

    async def list_resources(self) -> list[Resource]:
        result = await self.send_request("resources/list")
        return _parse_items(Resource, result, "resources", "resources/list")

    async def read_resource(self, uri: str) -> ResourceContent:
        result = await self.send_request("resources/read", {"uri": uri})
        return _parse(ResourceContent, result, "resources/read")

    async def list_prompts(self) -> list[Prompt]:
        result = await self.send_request("prompts/list")
        return _parse_items(Prompt, result, "prompts", "prompts/list")

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> PromptResult:
        result = await self.send_request(
            "prompts/get", {"name": name, "arguments": arguments or {}}
        )
        return _parse(PromptResult, result, "prompts/get")

    # Telemetry

    def _report(self, method: Callable[..., Awaitable[None]], *args: Any) -> None:
        task = asyncio.create_task(self._deliver(method, *args))
        self._telemetry_tasks.add(task)
        task.add_done_callback(self._telemetry_tasks.discard)

    async def _deliver(self, method: Callable[..., Awaitable[None]], *args: Any) -> None:
        try:
            await method(*args)
        except Exception as e:
            logger.warning(f"Telemetry delivery failed: {e}")

    async def flush_telemetry(self) -> None:
        """Wait for outstanding telemetry reports."""
        if self._telemetry_tasks:
            await asyncio.gather(*list(self._telemetry_tasks), return_exceptions=True)

    # State accessors

    def get_state(self) -> ClientState:
        return self.connection.state.copy()

    def get_connection_state(self) -> ConnectionState:
        return self.connection.connection_state

    def is_connected(self) -> bool:
        return self.connection.is_connected

    def is_authenticated(self) -> bool:
        return self.connection.state.authenticated

    def get_session_id(self) -> Optional[str]:
        return self.connection.state.session_id

    def get_usage_info(self) -> Optional[UsageInfo]:
        """Monthly usage, or None until tier, limit and usage are all known."""
        state = self.connection.state
        if (
            state.monthly_usage_used is None
            or state.usage_limit is None
            or state.subscription_tier is None
        ):
            return None
        return UsageInfo(
            used=state.monthly_usage_used,
            limit=state.usage_limit,
            tier=state.subscription_tier,
        )

    def set_access_token(self, token: str) -> None:
        self.telemetry.set_access_token(token)


def create_client(
    config: Config, telemetry: Optional[TelemetrySink] = None, **kwargs: Any
) -> McpClient:
    """Create a client from configuration."""
    return McpClient.from_config(config, telemetry=telemetry, **kwargs)


def validate_connection_string(connection_string: str) -> bool:
    """Check that a connection string is an http(s) URL."""
    try:
        url = urlparse(connection_string)
    except ValueError:
        return False
    return url.scheme in ("http", "https") and bool(url.netloc)


def parse_connection_string(connection_string: str) -> tuple[str, str]:
    """
    Split a connection string into server URL and path.

    Returns:
        ``(scheme://host, path)`` with ``/mcp`` as the default path

    Raises:
        ValueError: If the string is not an http(s) URL
    """
    if not validate_connection_string(connection_string):
        raise ValueError(f"Invalid connection string: {connection_string}")
    url = urlparse(connection_string)
    path = url.path if url.path and url.path != "/" else "/mcp"
    return f"{url.scheme}://{url.netloc}", path
