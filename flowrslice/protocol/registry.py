"""Correlation of engine responses with the requests awaiting them."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..errors import RequestInFlight
from ..logging import get_logger
from .messages import message_id

LOGGER = get_logger(__name__)


@dataclass(slots=True)
class PendingRequest:
    """Tracking information for one outstanding request."""

    id: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


class PendingRequests:
    """Map request ids to the futures of their callers.

    Responses that echo an ``id`` resolve exactly that waiter. Responses
    without one fall back to the oldest outstanding waiter, which is only
    unambiguous while at most one request is in flight; ``max_in_flight``
    therefore defaults to one and further registrations fail fast.
    """

    def __init__(self, max_in_flight: int = 1) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.max_in_flight = max_in_flight
        self._pending: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, request_id: str) -> asyncio.Future:
        if request_id in self._pending:
            raise RequestInFlight(f"request id {request_id!r} is already awaiting a response")
        if len(self._pending) >= self.max_in_flight:
            raise RequestInFlight(
                f"{len(self._pending)} request(s) already in flight; "
                f"wait for {self._oldest_id()!r} before sending {request_id!r}"
            )
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(id=request_id, future=future)
        return future

    def discard(self, request_id: str) -> PendingRequest | None:
        """Drop the waiter for ``request_id`` and return it, if still pending."""
        pending = self._pending.pop(request_id, None)
        if pending is not None and not pending.future.done():
            pending.future.cancel()
        return pending

    def _oldest_id(self) -> str | None:
        return next(iter(self._pending), None)

    def _take(self, message: Mapping[str, Any]) -> PendingRequest | None:
        request_id = message_id(message)
        if request_id is not None and request_id in self._pending:
            return self._pending.pop(request_id)
        if request_id is not None:
            LOGGER.warning("Dropping response for unknown request %s", request_id)
            return None
        oldest = self._oldest_id()
        if oldest is None:
            LOGGER.debug("Dropping unsolicited message without id")
            return None
        if len(self._pending) > 1:
            LOGGER.warning(
                "Response without id while %d requests are in flight; attributing it to %s",
                len(self._pending),
                oldest,
            )
        return self._pending.pop(oldest)

    def resolve(self, message: Mapping[str, Any]) -> bool:
        """Deliver ``message`` to its waiter. Returns whether one was found."""
        pending = self._take(message)
        if pending is None:
            return False
        if not pending.future.done():
            pending.future.set_result(message)
        return True

    def fail(self, message: Mapping[str, Any], exc: BaseException) -> bool:
        """Fail the waiter ``message`` would have resolved."""
        pending = self._take(message)
        if pending is None:
            return False
        if not pending.future.done():
            pending.future.set_exception(exc)
        return True

    def fail_one(self, exc: BaseException) -> bool:
        """Fail the oldest waiter, used when a message cannot be attributed."""
        oldest = self._oldest_id()
        if oldest is None:
            return False
        pending = self._pending.pop(oldest)
        if not pending.future.done():
            pending.future.set_exception(exc)
        return True

    def fail_all(self, exc: BaseException) -> int:
        failed = 0
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(exc)
                failed += 1
        self._pending.clear()
        return failed


__all__ = ["PendingRequest", "PendingRequests"]
