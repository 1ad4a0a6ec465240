"""Telemetry sink interface for tool-call usage records."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class TelemetrySink(ABC):
    """Receives one record per tool call. Implementations must not raise."""

    @abstractmethod
    async def report_success(
        self, tool_name: str, arguments: Dict[str, Any], result: Any, elapsed_ms: float
    ) -> None:
        """Record a successful tool call."""

    @abstractmethod
    async def report_failure(
        self, tool_name: str, arguments: Dict[str, Any], error_message: str, elapsed_ms: float
    ) -> None:
        """Record a failed tool call."""

    async def report_timeout(
        self, tool_name: str, arguments: Dict[str, Any], elapsed_ms: float
    ) -> None:
        """Record a tool call that got no reply before its deadline."""
        await self.report_failure(tool_name, arguments, "Request timed out", elapsed_ms)

    def set_access_token(self, token: Optional[str]) -> None:
        """Update the credential used to deliver records."""


class NullTelemetrySink(TelemetrySink):
    """Discards every record."""

    async def report_success(self, tool_name, arguments, result, elapsed_ms) -> None:
        return None

    async def report_failure(self, tool_name, arguments, error_message, elapsed_ms) -> None:
        return None
