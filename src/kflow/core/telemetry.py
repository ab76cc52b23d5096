"""OpenTelemetry tracing for token and cluster API calls."""

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from fastapi import FastAPI

from kflow import __version__
from kflow.core.config import Settings

logger = logging.getLogger(__name__)


def build_resource(settings: Settings) -> Resource:
    """Describe this process and the Kubeflow deployment it talks to."""
    attributes = {
        "service.name": settings.otel_service_name,
        "service.version": __version__,
        "deployment.environment": settings.environment,
    }
    if settings.url:
        attributes["kflow.cluster.url"] = settings.url.rstrip("/")
    return Resource.create(attributes)


def select_span_exporter(settings: Settings) -> SpanExporter | None:
    """Pick where spans go.

    OTLP outside development. In development, the console when debugging,
    otherwise nowhere.
    """
    if settings.environment != "development":
        return OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)
    if settings.debug:
        return ConsoleSpanExporter()
    return None


def setup_telemetry(app: "FastAPI", settings: Settings) -> TracerProvider | None:
    """Install the tracer provider and instrument the app.

    Returns:
        The installed provider, to be flushed with ``shutdown_telemetry``, or
        None when tracing is disabled
    """
    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return None

    provider = TracerProvider(resource=build_resource(settings))
    try:
        exporter = select_span_exporter(settings)
    except Exception as e:
        logger.warning(f"Span exporter unavailable, traces will not be exported: {e}")
        exporter = None
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)

    exporter_name = type(exporter).__name__ if exporter else "no exporter"
    logger.info(f"Tracing {settings.otel_service_name} with {exporter_name}")
    return provider


def shutdown_telemetry(provider: TracerProvider | None) -> None:
    """Flush pending spans and stop the exporters."""
    if provider is not None:
        provider.shutdown()


def record_http_status(span: trace.Span, status_code: int) -> None:
    """Attach an HTTP status to a span, marking 4xx/5xx responses as errors."""
    span.set_attribute("http.status_code", status_code)
    if status_code >= 400:
        span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)
