"""Lifecycle events emitted by the client."""

import asyncio
import inspect
import logging
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Client event types."""

    CONNECTING = "connecting"
    INITIALIZED = "initialized"
    CONNECTED = "connected"
    SESSION = "session"
    PING = "ping"
    NOTIFICATION = "notification"
    MESSAGE = "message"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    CONNECTION_FAILED = "connection_failed"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"


class BaseEvent(BaseModel):
    """Base event class for all client events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=datetime.now)


class ConnectingEvent(BaseEvent):
    event_type: EventType = EventType.CONNECTING


class InitializedEvent(BaseEvent):
    """Emitted when the handshake succeeds."""

    event_type: EventType = EventType.INITIALIZED
    session_id: str | None = None
    subscription_tier: str | None = None
    usage_limit: int | None = None
    monthly_usage_used: int | None = None


class ConnectedEvent(BaseEvent):
    """Emitted once the event stream is open."""

    event_type: EventType = EventType.CONNECTED
    state: dict[str, Any] = Field(default_factory=dict)


class SessionEvent(BaseEvent):
    """Emitted when the server assigns or refreshes the session id."""

    event_type: EventType = EventType.SESSION
    session_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class PingEvent(BaseEvent):
    event_type: EventType = EventType.PING
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationEvent(BaseEvent):
    """Unsolicited server notification."""

    event_type: EventType = EventType.NOTIFICATION
    method: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)


class MessageEvent(BaseEvent):
    """A frame of a type the client does not recognize."""

    event_type: EventType = EventType.MESSAGE
    data: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseEvent):
    event_type: EventType = EventType.ERROR
    error_message: str
    error_type: str | None = None


class ReconnectingEvent(BaseEvent):
    """Emitted before each reconnection attempt."""

    event_type: EventType = EventType.RECONNECTING
    attempt: int
    delay: float


class ConnectionFailedEvent(BaseEvent):
    """Emitted when reconnection gives up. No further automatic action follows."""

    event_type: EventType = EventType.CONNECTION_FAILED
    attempts: int


class DisconnectingEvent(BaseEvent):
    event_type: EventType = EventType.DISCONNECTING


class DisconnectedEvent(BaseEvent):
    event_type: EventType = EventType.DISCONNECTED


EventCallback = Callable[[BaseEvent], None | Awaitable[None]]


class EventManager:
    """Observer registry keyed by event type."""

    def __init__(self):
        # Event type -> list of callbacks
        self._callbacks: dict[EventType, list[EventCallback]] = defaultdict(list)
        # Global callbacks (subscribe to all events)
        self._global_callbacks: list[EventCallback] = []

    def register(
        self,
        callback: EventCallback,
        event_types: list[EventType] | EventType | None = None,
    ) -> None:
        """Register an event callback.

        Args:
            callback: Callback function that receives a BaseEvent parameter
            event_types: Event types to subscribe to, None means all events
        """
        if event_types is None:
            self._global_callbacks.append(callback)
        elif isinstance(event_types, EventType):
            self._callbacks[event_types].append(callback)
        else:
            for event_type in event_types:
                self._callbacks[event_type].append(callback)

    def unregister(
        self,
        callback: EventCallback,
        event_types: list[EventType] | EventType | None = None,
    ) -> None:
        """Remove an event callback.

        Args:
            callback: The callback to remove
            event_types: Event types to unsubscribe from, None means global callbacks
        """
        if event_types is None:
            if callback in self._global_callbacks:
                self._global_callbacks.remove(callback)
        elif isinstance(event_types, EventType):
            if callback in self._callbacks[event_types]:
                self._callbacks[event_types].remove(callback)
        else:
            for event_type in event_types:
                if callback in self._callbacks[event_type]:
                    self._callbacks[event_type].remove(callback)

    async def emit(self, event: BaseEvent) -> None:
        """Emit an event to every matching callback.

        Callback failures are logged and never reach the emitter.

        Args:
            event: The event object to emit
        """
        callbacks_to_call = list(self._global_callbacks)
        if event.event_type in self._callbacks:
            callbacks_to_call.extend(self._callbacks[event.event_type])

        tasks = []
        for callback in callbacks_to_call:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    tasks.append(result)
            except Exception as e:
                logger.error(f"Error calling event callback: {e}", exc_info=True)

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Error in async event callback: {result}")

    def clear(self) -> None:
        """Clear all callbacks."""
        self._callbacks.clear()
        self._global_callbacks.clear()

    def get_callback_count(self, event_type: EventType | None = None) -> int:
        """Get the number of registered callbacks.

        Args:
            event_type: Event type to count, None means all callbacks

        Returns:
            Number of registered callbacks
        """
        if event_type is None:
            return len(self._global_callbacks) + sum(len(cbs) for cbs in self._callbacks.values())
        return len(self._callbacks.get(event_type, []))
