from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from parley.telemetry.logging import get_logger

# The global tracer provider can only be installed once per process.
_endpoint: str | None = None


def configure_tracing(service_name: str, endpoint: str | None) -> bool:
    """Export handshake spans to an OTLP collector; returns whether an exporter is active."""
    global _endpoint
    logger = get_logger(__name__)
    if _endpoint is not None:
        if endpoint is not None and endpoint != _endpoint:
            logger.warning("tracing.reconfigure_ignored", active=_endpoint, requested=endpoint)
        return True
    if endpoint is None:
        return False

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _endpoint = endpoint
    logger.info("tracing.enabled", endpoint=endpoint, service_name=service_name)
    return True


def get_tracer(name: str) -> trace.Tracer:
    # No-op tracer until configure_tracing installs a provider.
    return trace.get_tracer(name)


__all__ = ["configure_tracing", "get_tracer"]
