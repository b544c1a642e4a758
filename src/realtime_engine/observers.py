"""
Built-in session observers.

LoggingObserver writes a line per message through the engine logger.
TracingObserver records OpenTelemetry span events on a long-lived session
span that is ended when the session ends.
"""

import logging
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from src.realtime_engine.event_handler import RealtimeObserver
from src.realtime_engine.models import ClientMessage, ConnectionState, ErrorMessage, ServerMessage
from utils.ml_logging import get_logger

logger = get_logger("realtime_engine.observers")
_tracer = trace.get_tracer(__name__)


def _event_name(message: Any) -> str:
    event_type = getattr(message, "event_type", None)
    return event_type or type(message).__name__


class LoggingObserver(RealtimeObserver):
    """Logs every inbound and outbound message; payloads only at DEBUG."""

    def __init__(self, session_id: Optional[str] = None, level: int = logging.DEBUG) -> None:
        self.session_id = session_id or "-"
        self.level = level

    def on_message_received(self, message: ServerMessage) -> None:
        if isinstance(message, ErrorMessage):
            error = message.error
            logger.warning(
                f"Realtime API error event: {error.message if error else None} "
                f"(code={error.error_code if error else None}, param={message.parameter})",
                extra={"session_id": self.session_id},
            )
            return
        logger.log(self.level, f"<- {_event_name(message)}", extra={"session_id": self.session_id})

    def on_message_sent(self, message: ClientMessage) -> None:
        logger.log(self.level, f"-> {type(message).__name__}", extra={"session_id": self.session_id})

    def on_error(self, error: Exception) -> None:
        logger.error(f"Session error: {type(error).__name__}: {error}", extra={"session_id": self.session_id})

    def on_state_changed(self, state: ConnectionState) -> None:
        logger.info(f"Connection state: {state.value}", extra={"session_id": self.session_id})

    def on_session_ended(self, reason: str) -> None:
        logger.keyinfo(f"Session ended: {reason}", extra={"session_id": self.session_id})


class TracingObserver(RealtimeObserver):
    """
    Records each message and error as an event on one span that covers the
    whole session.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        span_name: str = "realtime.session",
        tracer: Optional[trace.Tracer] = None,
    ) -> None:
        self.session_id = session_id
        self.span = (tracer or _tracer).start_span(span_name, kind=SpanKind.CLIENT)
        if session_id:
            self.span.set_attribute("realtime.session_id", session_id)
        self._ended = False

    def on_message_received(self, message: ServerMessage) -> None:
        attributes = {"realtime.direction": "inbound", "realtime.event_type": _event_name(message)}
        if message.event_id:
            attributes["realtime.event_id"] = message.event_id
        self.span.add_event("realtime.message", attributes=attributes)

    def on_message_sent(self, message: ClientMessage) -> None:
        attributes = {"realtime.direction": "outbound", "realtime.message_type": type(message).__name__}
        if message.event_id:
            attributes["realtime.event_id"] = message.event_id
        self.span.add_event("realtime.message", attributes=attributes)

    def on_error(self, error: Exception) -> None:
        self.span.record_exception(error)

    def on_state_changed(self, state: ConnectionState) -> None:
        self.span.add_event("realtime.state", attributes={"realtime.state": state.value})

    def on_session_ended(self, reason: str) -> None:
        if self._ended:
            return
        self._ended = True
        self.span.set_attribute("realtime.end_reason", reason)
        if reason.startswith("error"):
            self.span.set_status(Status(StatusCode.ERROR, reason))
        self.span.end()
