import time
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

tracer = trace.get_tracer(__name__)


class TraceContext:
    """
    Context manager for tracing spans with custom attributes and latency bucketing.
    """

    def __init__(
        self,
        name: str,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        kind: SpanKind = SpanKind.CLIENT,
        metadata: Optional[dict] = None,
    ):
        self.name = name
        self.session_id = session_id
        self.event_type = event_type
        self.kind = kind
        self.metadata = metadata or {}
        self._start_time = None
        self._span: Optional[Span] = None
        self._scope = None

    def __enter__(self):
        self._start_time = time.time()
        self._span = tracer.start_span(name=self.name, kind=self.kind)

        # Attach custom span attributes
        if self.session_id:
            self._span.set_attribute("realtime.session_id", self.session_id)
        if self.event_type:
            self._span.set_attribute("realtime.event_type", self.event_type)
        for k, v in self.metadata.items():
            self._span.set_attribute(f"realtime.{k}", v)

        self._scope = trace.use_span(self._span, end_on_exit=False)
        self._scope.__enter__()
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (time.time() - self._start_time) * 1000  # in ms
        if self._span:
            self._span.set_attribute("realtime.latency_ms", duration)
            self._span.set_attribute("realtime.latency_bucket", self._bucket_latency(duration))
            if exc_val is not None:
                self._span.record_exception(exc_val)
                self._span.set_status(Status(StatusCode.ERROR, str(exc_val)))
            self._scope.__exit__(None, None, None)
            self._span.end()
        return False

    @staticmethod
    def _bucket_latency(duration_ms: float) -> str:
        if duration_ms < 100:
            return "<100ms"
        elif duration_ms < 300:
            return "100-300ms"
        elif duration_ms < 1000:
            return "300ms-1s"
        elif duration_ms < 3000:
            return "1-3s"
        else:
            return ">3s"
