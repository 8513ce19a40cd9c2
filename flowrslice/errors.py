"""Error taxonomy for engine sessions."""

from __future__ import annotations


class SliceClientError(RuntimeError):
    """Base class for every failure raised while talking to the engine."""


class TransportError(SliceClientError):
    """Socket or pipe level failure. The session is closed afterwards."""


class ProtocolDecodeError(SliceClientError):
    """A received message could not be decoded or has an unexpected shape."""

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class SessionClosed(SliceClientError):
    """The session was closed before or while a request was outstanding."""


class RequestTimeout(SliceClientError):
    """No response arrived within the caller supplied timeout."""

    def __init__(self, request_id: str, timeout: float) -> None:
        super().__init__(f"request {request_id} timed out after {timeout:g}s")
        self.request_id = request_id
        self.timeout = timeout


class RequestInFlight(SliceClientError):
    """A request was issued while the session's request slots were full."""


class EngineError(SliceClientError):
    """The engine answered with an error message."""

    def __init__(self, reason: str, *, fatal: bool = False, request_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.fatal = fatal
        self.request_id = request_id


__all__ = [
    "EngineError",
    "ProtocolDecodeError",
    "RequestInFlight",
    "RequestTimeout",
    "SessionClosed",
    "SliceClientError",
    "TransportError",
]
