"""Usage logger that posts tool-call records to the usage-tracking API."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from .base import TelemetrySink

logger = logging.getLogger(__name__)

LOGS_PATH = "/api/mcp/logs"


class CallStatus(str, Enum):
    """Outcome of a logged tool call."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


class ToolCallLog(BaseModel):
    """One usage record."""

    tool_name: str
    request_data: Dict[str, Any] | None = None
    response_data: Dict[str, Any] | None = None
    status: CallStatus
    error_message: str | None = None
    response_time_ms: float | None = None


def _as_payload(result: Any) -> Dict[str, Any] | None:
    if result is None:
        return None
    if isinstance(result, BaseModel):
        return result.model_dump(by_alias=True, exclude_none=True)
    if isinstance(result, dict):
        return result
    return {"value": result}


class UsageLogger(TelemetrySink):
    """Posts tool-call records to ``{endpoint}/api/mcp/logs``.

    Delivery problems are logged and never raised. Records are skipped while
    no access token is set.
    """

    def __init__(
        self,
        endpoint: str,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport

    def set_access_token(self, token: Optional[str]) -> None:
        self.access_token = token

    async def log_tool_call(self, entry: ToolCallLog) -> bool:
        """
        Deliver one record.

        Args:
            entry: Record to deliver

        Returns:
            True if the server accepted the record
        """
        if not self.access_token:
            logger.warning("UsageLogger: no access token set, skipping log")
            return False

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.endpoint}{LOGS_PATH}",
                    headers=headers,
                    json=entry.model_dump(mode="json", exclude_none=True),
                )
        except httpx.HTTPError as e:
            logger.error(f"Error logging MCP usage: {e}")
            return False

        if not response.is_success:
            logger.error(f"Failed to log MCP usage: {response.status_code} {response.text}")
            return False
        return True

    async def report_success(
        self, tool_name: str, arguments: Dict[str, Any], result: Any, elapsed_ms: float
    ) -> None:
        await self.log_tool_call(
            ToolCallLog(
                tool_name=tool_name,
                request_data=arguments,
                response_data=_as_payload(result),
                status=CallStatus.SUCCESS,
                response_time_ms=elapsed_ms,
            )
        )

    async def report_failure(
        self, tool_name: str, arguments: Dict[str, Any], error_message: str, elapsed_ms: float
    ) -> None:
        await self.log_tool_call(
            ToolCallLog(
                tool_name=tool_name,
                request_data=arguments,
                status=CallStatus.ERROR,
                error_message=error_message,
                response_time_ms=elapsed_ms,
            )
        )

    async def report_timeout(
        self, tool_name: str, arguments: Dict[str, Any], elapsed_ms: float
    ) -> None:
        await self.log_tool_call(
            ToolCallLog(
                tool_name=tool_name,
                request_data=arguments,
                status=CallStatus.TIMEOUT,
                response_time_ms=elapsed_ms,
            )
        )
