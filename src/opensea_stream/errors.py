"""Error taxonomy for the stream client."""
from __future__ import annotations

from typing import Any, Optional


class StreamError(Exception):
    """Base class for every error raised by the stream client."""


class TransportError(StreamError):
    """Raised when the socket cannot be opened or is lost (DNS, TCP, TLS, close, heartbeat)."""


class UnreachableError(TransportError):
    """Raised from ``run()`` once the configured reconnect attempts are exhausted."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"endpoint unreachable after {attempts} reconnect attempts{detail}")
        self.attempts = attempts
        self.last_error = last_error


class AuthError(StreamError):
    """Raised when the vendor rejects the API key. Never retried."""

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"authentication rejected: {reason}")
        self.reason = reason
        self.status_code = status_code


class ProtocolDecodeError(StreamError):
    """A single inbound frame could not be decoded; the frame is dropped."""

    def __init__(self, message: str, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


class FrameDecodeError(ProtocolDecodeError):
    """The frame is not a JSON object at all."""


class EventDecodeError(ProtocolDecodeError):
    """The frame is JSON but its event payload does not match the schema."""

    def __init__(self, message: str, raw: Any = None, field: Optional[str] = None) -> None:
        super().__init__(message, raw)
        self.field = field


class HandlerError(StreamError):
    """Wraps an exception raised by a caller handler; reported, never propagated."""

    def __init__(self, topic: str, event: Any, cause: BaseException) -> None:
        super().__init__(f"handler for topic {topic!r} raised {type(cause).__name__}: {cause}")
        self.topic = topic
        self.event = event
        self.__cause__ = cause


class ClientClosedError(StreamError):
    """Raised by any client operation issued after shutdown."""

    def __init__(self, message: str = "client closed") -> None:
        super().__init__(message)


__all__ = [
    "AuthError",
    "ClientClosedError",
    "EventDecodeError",
    "FrameDecodeError",
    "HandlerError",
    "ProtocolDecodeError",
    "StreamError",
    "TransportError",
    "UnreachableError",
]
