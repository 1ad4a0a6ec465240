"""Transport layer for talking to the tool server."""

from .base import SESSION_HEADER, Transport, TransportResponse
from .http import HTTPTransport, iter_sse_data

__all__ = [
    "SESSION_HEADER",
    "Transport",
    "TransportResponse",
    "HTTPTransport",
    "iter_sse_data",
]
