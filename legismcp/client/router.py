"""Routing of decoded event-stream frames."""

import logging
from typing import Callable

from pydantic import ValidationError

from .correlation import CorrelationTable
from .errors import FrameDecodeError, RpcError
from .events import (
    ErrorEvent,
    EventManager,
    MessageEvent,
    NotificationEvent,
    PingEvent,
    SessionEvent,
)
from .frames import (
    ConnectionFrame,
    Frame,
    NotificationFrame,
    PingFrame,
    ResponseFrame,
    decode_frame,
)

logger = logging.getLogger(__name__)


class FrameRouter:
    """Dispatches frames to the correlation table, client state and observers."""

    def __init__(
        self,
        table: CorrelationTable,
        events: EventManager,
        on_connection: Callable[[ConnectionFrame], None],
        on_activity: Callable[[], None],
    ):
        self.table = table
        self.events = events
        self._on_connection = on_connection
        self._on_activity = on_activity

    async def route_payload(self, payload: str) -> None:
        """Decode and route one raw payload. Never raises on bad input."""
        try:
            frame = decode_frame(payload)
        except FrameDecodeError as e:
            logger.warning(f"Dropping undecodable frame: {e}")
            await self._report(e)
            return

        try:
            await self.route(frame)
        except (ValidationError, TypeError) as e:
            logger.warning(f"Dropping frame that could not be routed: {e}")
            await self._report(e)

    async def _report(self, error: Exception) -> None:
        await self.events.emit(ErrorEvent(error_message=str(error), error_type=type(error).__name__))

    async def route(self, frame: Frame) -> None:
        self._on_activity()

        if isinstance(frame, ConnectionFrame):
            event = SessionEvent(session_id=frame.session_id, data=frame.raw)
            self._on_connection(frame)
            await self.events.emit(event)
        elif isinstance(frame, PingFrame):
            await self.events.emit(PingEvent(data=frame.raw))
        elif isinstance(frame, ResponseFrame):
            self.resolve(frame)
        elif isinstance(frame, NotificationFrame):
            await self.events.emit(
                NotificationEvent(method=frame.method, params=frame.params, data=frame.raw)
            )
        else:
            await self.events.emit(MessageEvent(data=frame.raw))

    def resolve(self, frame: ResponseFrame) -> bool:
        """
        Complete the pending call matching a reply.

        Shared by stream frames and direct HTTP replies. The first reply for an
        id wins; later ones are dropped.

        Returns:
            True if a pending call was completed
        """
        if frame.is_error:
            return self.table.reject(frame.id, RpcError.from_payload(frame.error))
        return self.table.resolve(frame.id, frame.result)
