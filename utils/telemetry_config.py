import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

# Set up logger for this module
logger = logging.getLogger(__name__)

_configured = False


def setup_tracing(service_name: Optional[str] = None) -> Optional[TracerProvider]:
    """
    Configure the global OpenTelemetry tracer provider for the realtime engine.

    Spans are exported to the console only when REALTIME_TRACE_CONSOLE=true;
    otherwise the provider is installed so span ids still correlate log records.

    Args:
        service_name (str, optional): Resource service name. Defaults to OTEL_SERVICE_NAME or 'realtime-engine'.

    Returns:
        TracerProvider or None: The installed provider, or None if tracing was already configured.
    """
    global _configured
    if _configured:
        logger.debug("Tracing already configured, skipping")
        return None

    resource_attrs = {
        "service.name": service_name or os.getenv("OTEL_SERVICE_NAME", "realtime-engine"),
        "service.namespace": "realtime-session",
    }
    env_name = os.getenv("ENVIRONMENT")
    if env_name:
        resource_attrs["service.environment"] = env_name

    provider = TracerProvider(resource=Resource.create(resource_attrs))
    if os.getenv("REALTIME_TRACE_CONSOLE", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _configured = True
    logger.info(f"Tracing configured for service '{resource_attrs['service.name']}'")
    return provider
