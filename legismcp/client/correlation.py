"""Correlation of outstanding requests with their replies."""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import RequestTimeoutError
from .frames import RequestId

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


class RequestIdGenerator:
    """Monotonically increasing request ids, scoped to one client instance."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self.last: Optional[int] = None

    def next(self) -> int:
        self.last = next(self._counter)
        return self.last


@dataclass
class PendingCall:
    """A dispatched request waiting for its reply."""

    id: RequestId
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None
    method: str = ""
    dispatched_at: float = field(default_factory=time.monotonic)


class CorrelationTable:
    """
    Maps request ids to waiting callers.

    An entry is removed exactly once: by a reply, by its deadline, or by a
    bulk failure on teardown. Whichever comes second finds nothing and is a
    no-op.
    """

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        """
        Initialize the table.

        Args:
            timeout: Default per-call deadline in seconds
        """
        self.timeout = timeout
        self._pending: Dict[RequestId, PendingCall] = {}

    def __contains__(self, request_id: RequestId) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def ids(self) -> List[RequestId]:
        return list(self._pending)

    def register(
        self, request_id: RequestId, method: str = "", timeout: Optional[float] = None
    ) -> asyncio.Future:
        """
        Register a pending call and arm its deadline.

        Args:
            request_id: Id of the dispatched request
            method: Remote method name, for diagnostics
            timeout: Deadline in seconds (defaults to the table timeout)

        Returns:
            Future completed with the result or failed with an error

        Raises:
            ValueError: If the id is already pending
        """
        if request_id in self._pending:
            raise ValueError(f"Request id {request_id!r} is already pending")

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        deadline = self.timeout if timeout is None else timeout
        timer = loop.call_later(deadline, self._expire, request_id, deadline)

        self._pending[request_id] = PendingCall(
            id=request_id, future=future, timer=timer, method=method
        )
        # A caller that stops waiting must not leave its entry behind
        future.add_done_callback(lambda f: self._discard(request_id, f))
        return future

    def resolve(self, request_id: RequestId, result: Any) -> bool:
        """
        Complete a pending call with a result.

        Returns:
            True if a pending call was completed, False if none matched
        """
        call = self._pop(request_id)
        if call is None:
            logger.debug(f"Dropping reply for unknown or completed request {request_id!r}")
            return False
        if not call.future.done():
            call.future.set_result(result)
        return True

    def reject(self, request_id: RequestId, error: BaseException) -> bool:
        """
        Fail a pending call.

        Returns:
            True if a pending call was failed, False if none matched
        """
        call = self._pop(request_id)
        if call is None:
            logger.debug(f"Dropping error for unknown or completed request {request_id!r}")
            return False
        if not call.future.done():
            call.future.set_exception(error)
        return True

    def fail_all(self, error: BaseException) -> int:
        """
        Fail every pending call with a copy of ``error``.

        Each caller gets its own exception instance so tracebacks stay separate.

        Returns:
            Number of calls failed
        """
        failed = 0
        for request_id in list(self._pending):
            if self.reject(request_id, type(error)(*error.args)):
                failed += 1
        return failed

    def _expire(self, request_id: RequestId, deadline: float) -> None:
        call = self._pending.get(request_id)
        method = f" ({call.method})" if call and call.method else ""
        if self.reject(
            request_id,
            RequestTimeoutError(f"Request {request_id}{method} timed out after {deadline}s"),
        ):
            logger.warning(f"Request {request_id}{method} timed out after {deadline}s")

    def _pop(self, request_id: RequestId) -> Optional[PendingCall]:
        call = self._pending.pop(request_id, None)
        if call is not None and call.timer is not None:
            call.timer.cancel()
        return call

    def _discard(self, request_id: RequestId, future: asyncio.Future) -> None:
        call = self._pending.get(request_id)
        if call is not None and call.future is future:
            self._pop(request_id)
