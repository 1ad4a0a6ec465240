"""JSON-RPC envelopes and event-stream frame decoding.

Every payload received from the server is decoded once into one of the frame
dataclasses below. Downstream code dispatches on the frame class, never on the
raw ``type`` string.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import FrameDecodeError

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


class FrameType(str, Enum):
    """Values of the ``type`` tag on stream frames."""

    CONNECTION = "connection"
    PING = "ping"
    RESPONSE = "response"
    ERROR = "error"
    NOTIFICATION = "notification"


def build_request(method: str, params: Optional[Dict[str, Any]], request_id: RequestId) -> Dict[str, Any]:
    """Build a JSON-RPC request envelope."""
    request: Dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
    }
    if params is not None:
        request["params"] = params
    return request


@dataclass(frozen=True)
class ConnectionFrame:
    """Carries a new or refreshed session id, optionally with usage figures."""

    session_id: Optional[str]
    subscription_tier: Optional[str] = None
    usage_limit: Optional[int] = None
    monthly_usage_used: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PingFrame:
    """Liveness signal."""

    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ResponseFrame:
    """Reply to a correlated request, carrying either a result or an error."""

    id: RequestId
    result: Any = None
    error: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class NotificationFrame:
    """Unsolicited server event. Never correlated with a request."""

    method: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class UnknownFrame:
    """Any frame the client does not recognize."""

    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


Frame = Union[ConnectionFrame, PingFrame, ResponseFrame, NotificationFrame, UnknownFrame]


def _int_or_none(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _str_or_none(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise FrameDecodeError(f"Frame field {key!r} must be a string, got {type(value).__name__}")
    return value


def _response_from(data: Dict[str, Any]) -> Frame:
    request_id = data.get("id")
    if request_id is None:
        return UnknownFrame(raw=data)
    if isinstance(request_id, bool) or not isinstance(request_id, (int, str)):
        raise FrameDecodeError(f"Frame id must be a string or integer, got {type(request_id).__name__}")
    error = data.get("error")
    if error is not None and not isinstance(error, dict):
        error = {"message": str(error)}
    return ResponseFrame(id=request_id, result=data.get("result"), error=error, raw=data)


def reply_frame(request_id: RequestId, body: Dict[str, Any]) -> Optional[ResponseFrame]:
    """
    Build a reply frame from the direct reply to a POSTed request.

    Returns:
        The frame, or None when the body carries neither result nor error
        (the reply will arrive on the event stream instead)
    """
    if "result" not in body and "error" not in body:
        return None
    frame = _response_from({**body, "id": request_id})
    return frame if isinstance(frame, ResponseFrame) else None


def classify(data: Dict[str, Any]) -> Frame:
    """
    Classify a decoded JSON object into a frame.

    Args:
        data: Decoded JSON object

    Returns:
        The matching frame; ``UnknownFrame`` when nothing matches

    Raises:
        FrameDecodeError: If a recognized frame carries a field of the wrong type
    """
    frame_type = data.get("type")

    if frame_type == FrameType.CONNECTION.value:
        return ConnectionFrame(
            session_id=_str_or_none(data, "sessionId"),
            subscription_tier=_str_or_none(data, "subscriptionTier"),
            usage_limit=_int_or_none(data.get("usageLimit")),
            monthly_usage_used=_int_or_none(
                data.get("monthlyUsageUsed", data.get("monthlyUsage"))
            ),
            raw=data,
        )
    if frame_type == FrameType.PING.value:
        return PingFrame(raw=data)
    if frame_type in (FrameType.RESPONSE.value, FrameType.ERROR.value):
        return _response_from(data)
    if frame_type == FrameType.NOTIFICATION.value:
        params = data.get("params")
        return NotificationFrame(
            method=_str_or_none(data, "method"),
            params=params if isinstance(params, dict) else {},
            raw=data,
        )

    # Untagged JSON-RPC messages
    if frame_type is None and data.get("jsonrpc") == JSONRPC_VERSION:
        if "id" in data and ("result" in data or "error" in data):
            return _response_from(data)
        if "method" in data and "id" not in data:
            params = data.get("params")
            return NotificationFrame(
                method=_str_or_none(data, "method"),
                params=params if isinstance(params, dict) else {},
                raw=data,
            )

    return UnknownFrame(raw=data)


def decode_frame(payload: Union[str, bytes]) -> Frame:
    """
    Decode a raw payload into a frame.

    Args:
        payload: JSON text of one frame

    Returns:
        Decoded frame

    Raises:
        FrameDecodeError: If the payload is not a JSON object
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FrameDecodeError(f"Failed to parse frame: {e}") from e

    if not isinstance(data, dict):
        raise FrameDecodeError(f"Frame is not a JSON object: {type(data).__name__}")

    return classify(data)
