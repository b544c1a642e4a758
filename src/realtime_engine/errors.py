"""
Error taxonomy for the realtime engine.

TransportError ends the session. DecodeError drops a single inbound event.
ProtocolError is the exception form of a server-reported error event.
ValidationError is raised locally, before anything touches the network.
"""

from typing import Any, Optional


class RealtimeError(Exception):
    """Base class for all realtime engine errors."""


class TransportError(RealtimeError):
    """Connect, send or receive failure on the underlying socket."""


class AuthenticationError(TransportError):
    """The service rejected the bearer credential during the handshake."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeError(RealtimeError):
    """An inbound document could not be mapped onto its typed message."""

    def __init__(self, message: str, event_type: Optional[str] = None, document: Any = None) -> None:
        super().__init__(message)
        self.event_type = event_type
        self.document = document


class EncodeError(RealtimeError):
    """A client message cannot be expressed in the wire protocol."""


class ProtocolError(RealtimeError):
    """An error reported by the service through an `error` event."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        parameter: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.parameter = parameter
        self.event_id = event_id


class ValidationError(RealtimeError, ValueError):
    """Input rejected locally before any network interaction."""


class UnsupportedChannelLayout(ValidationError):
    def __init__(self, channels: int) -> None:
        super().__init__(f"Unsupported channel count: {channels}")
        self.channels = channels


class AudioTooShortError(ValidationError):
    def __init__(self, duration_ms: float, minimum_ms: int) -> None:
        super().__init__(f"Audio too short ({duration_ms:.0f}ms). Need {minimum_ms}ms+.")
        self.duration_ms = duration_ms
        self.minimum_ms = minimum_ms
