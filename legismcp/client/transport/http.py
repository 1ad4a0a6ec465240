"""HTTP transport: JSON-RPC over POST plus a Server-Sent-Events stream."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..errors import TransportError
from .base import SESSION_HEADER, Transport, TransportResponse

logger = logging.getLogger(__name__)


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Assemble Server-Sent-Events lines into event payloads.

    ``data:`` lines are joined with newlines and yielded when a blank line
    ends the event. Comments and other fields are ignored.
    """
    buffer: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            buffer.append(value)

    if buffer:
        yield "\n".join(buffer)


class HTTPTransport(Transport):
    """Client-side HTTP transport."""

    def __init__(
        self,
        server_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP transport.

        Args:
            server_url: Endpoint accepting POSTed requests and serving the event stream
            api_key: Bearer credential sent with every request
            timeout: Timeout for POST and DELETE requests in seconds
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        """
        self.server_url = server_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def is_connected(self) -> bool:
        return self._client is not None and not self._client.is_closed

    def _headers(self, session_id: Optional[str], accept: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": accept,
        }
        if session_id:
            headers[SESSION_HEADER] = session_id
        return headers

    def _require_client(self) -> httpx.AsyncClient:
        if not self.is_connected():
            raise TransportError("Transport is not connected")
        return self._client

    async def send_request(
        self, request: Dict[str, Any], session_id: Optional[str] = None
    ) -> TransportResponse:
        client = self._require_client()
        headers = self._headers(session_id, "application/json")
        headers["Content-Type"] = "application/json"

        try:
            response = await client.post(self.server_url, json=request, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP request failed: {e}") from e

        if not response.is_success:
            raise TransportError(f"HTTP {response.status_code}: {response.reason_phrase}")

        session = response.headers.get(SESSION_HEADER)
        # Accepted without a body: the reply follows on the event stream
        if response.status_code == 202 or not response.content:
            return TransportResponse(body={}, session_id=session)

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON in reply: {e}") from e
        if not isinstance(body, dict):
            raise TransportError(f"Unexpected reply type: {type(body).__name__}")

        return TransportResponse(body=body, session_id=session)

    @asynccontextmanager
    async def open_stream(self, session_id: Optional[str] = None) -> AsyncIterator[AsyncIterator[str]]:
        client = self._require_client()
        headers = self._headers(session_id, "text/event-stream")
        headers["Cache-Control"] = "no-cache"

        try:
            async with client.stream(
                "GET",
                self.server_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout, read=None),
            ) as response:
                if response.status_code != 200:
                    raise TransportError(
                        f"Event stream rejected: HTTP {response.status_code}: {response.reason_phrase}"
                    )
                logger.debug(f"Event stream open at {self.server_url}")
                yield iter_sse_data(response.aiter_lines())
        except httpx.HTTPError as e:
            raise TransportError(f"Event stream failed: {e}") from e

    async def delete_session(self, session_id: str) -> None:
        client = self._require_client()
        url = f"{self.server_url.rstrip('/')}/session/{session_id}"
        headers = self._headers(None, "application/json")
        headers["Content-Type"] = "application/json"

        try:
            response = await client.delete(url, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Session delete failed: {e}") from e
        if not response.is_success:
            raise TransportError(f"Session delete failed: HTTP {response.status_code}")
