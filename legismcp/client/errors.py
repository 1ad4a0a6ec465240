"""Exceptions raised by the MCP client."""

from typing import Any


class McpClientError(Exception):
    """Base class for all client errors."""


class NotConnectedError(McpClientError):
    """Raised when a remote call is attempted before the connection is ready."""


class TransportError(McpClientError):
    """Raised when the HTTP request or the event stream fails."""


class ConnectionClosedError(McpClientError):
    """Raised for calls still pending when the connection is torn down."""


class RequestTimeoutError(McpClientError, TimeoutError):
    """Raised when no reply arrives before the per-call deadline."""


class FrameDecodeError(McpClientError):
    """Raised when an event-stream payload cannot be decoded."""


class RpcError(McpClientError):
    """Error object returned by the server in a JSON-RPC reply."""

    def __init__(self, message: str, code: int | None = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    @classmethod
    def from_payload(cls, payload: Any) -> "RpcError":
        """Build an error from a JSON-RPC ``error`` object."""
        if not isinstance(payload, dict):
            return cls(str(payload))
        return cls(
            str(payload.get("message", "Unknown error")),
            code=payload.get("code"),
            data=payload.get("data"),
        )


class ProtocolError(McpClientError):
    """Raised when a reply does not have the shape the method expects."""
