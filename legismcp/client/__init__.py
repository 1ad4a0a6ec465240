"""Client for JSON-RPC tool servers with an event stream."""

from .base import ToolClient
from .client import McpClient, create_client, parse_connection_string, validate_connection_string
from .connection import ConnectionManager, reconnect_delay
from .correlation import CorrelationTable, PendingCall, RequestIdGenerator
from .errors import (
    ConnectionClosedError,
    FrameDecodeError,
    ProtocolError,
    McpClientError,
    NotConnectedError,
    RequestTimeoutError,
    RpcError,
    TransportError,
)
from .events import BaseEvent, EventManager, EventType
from .models import (
    ClientState,
    ConnectionState,
    InitializeResult,
    Prompt,
    PromptResult,
    Resource,
    ResourceContent,
    Tool,
    ToolResult,
    UsageInfo,
)
from .transport import HTTPTransport, Transport, TransportResponse

__all__ = [
    "McpClient",
    "ToolClient",
    "create_client",
    "parse_connection_string",
    "validate_connection_string",
    "ConnectionManager",
    "reconnect_delay",
    "CorrelationTable",
    "PendingCall",
    "RequestIdGenerator",
    "McpClientError",
    "NotConnectedError",
    "TransportError",
    "ConnectionClosedError",
    "RequestTimeoutError",
    "RpcError",
    "FrameDecodeError",
    "ProtocolError",
    "BaseEvent",
    "EventManager",
    "EventType",
    "ClientState",
    "ConnectionState",
    "InitializeResult",
    "Tool",
    "ToolResult",
    "Resource",
    "ResourceContent",
    "Prompt",
    "PromptResult",
    "UsageInfo",
    "Transport",
    "TransportResponse",
    "HTTPTransport",
]
