"""Base classes for the client transport layer."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Optional

SESSION_HEADER = "Mcp-Session-Id"


@dataclass
class TransportResponse:
    """Direct reply to a POSTed request."""

    body: Dict[str, Any]
    session_id: Optional[str] = None


class Transport(ABC):
    """
    Hybrid client transport.

    Requests go out on a request/response channel; server-pushed frames arrive
    on a one-way event stream. Both channels carry the same session id.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Acquire the underlying connection resources."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the underlying connection resources."""

    @abstractmethod
    async def send_request(
        self, request: Dict[str, Any], session_id: Optional[str] = None
    ) -> TransportResponse:
        """
        Send a JSON-RPC request and return the server's direct reply.

        Args:
            request: JSON-RPC request envelope
            session_id: Session id to attach, if any

        Returns:
            Decoded reply body and any session id the server returned

        Raises:
            TransportError: If the request fails or the reply is not JSON
        """

    @abstractmethod
    def open_stream(self, session_id: Optional[str] = None) -> AsyncContextManager[AsyncIterator[str]]:
        """
        Open the event stream.

        Entering the returned context waits until the stream is open and
        yields an iterator over raw frame payloads. Iteration ends when the
        server closes the stream.

        Raises:
            TransportError: If the stream cannot be opened or fails mid-way
        """

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Ask the server to discard a session."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if transport is connected."""

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
