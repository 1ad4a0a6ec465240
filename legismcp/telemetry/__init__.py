"""Tool-call telemetry."""

from .base import NullTelemetrySink, TelemetrySink
from .usage_logger import CallStatus, ToolCallLog, UsageLogger

__all__ = [
    "TelemetrySink",
    "NullTelemetrySink",
    "UsageLogger",
    "ToolCallLog",
    "CallStatus",
]
