"""
Distributed Tracing with OpenTelemetry.

Traces requests, database queries and upstream generation calls.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from app.config import settings


def setup_tracing() -> None:
    """
    Configure OpenTelemetry tracing with OTLP export.

    No-op unless TRACING_ENABLED is set.
    """
    if not settings.tracing_enabled:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.api_version,
        }
    )

    provider = TracerProvider(resource=resource)
    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.otlp_endpoint,
        insecure=settings.otlp_insecure,
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """Instrument FastAPI application for automatic tracing."""
    if not settings.tracing_enabled:
        return

    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Instrument an async SQLAlchemy engine for query tracing."""
    if not settings.tracing_enabled:
        return

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    """Get a tracer instance for manual span creation."""
    return trace.get_tracer(name)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """
    Add attributes to a span, skipping None values.

    Usage:
        add_span_attributes(span, external_id=external_id, cost=cost)
    """
    for key, value in attributes.items():
        if value is not None:
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(key, value)
            else:
                span.set_attribute(key, str(value))


def set_span_error(span: Span, error: Exception) -> None:
    """Mark span as error and record exception."""
    span.set_status(Status(StatusCode.ERROR, type(error).__name__))
    span.record_exception(error)


class trace_operation:
    """
    Context manager for creating traced operations.

    Usage:
        with trace_operation("tool_invocation", tool_type="roadmap") as span:
            span.set_attribute("credits_used", 5)
    """

    def __init__(self, operation_name: str, **attributes: Any) -> None:
        self.operation_name = operation_name
        self.attributes = attributes
        self.tracer = get_tracer("app.operations")
        self._span_cm: Any = None

    def __enter__(self) -> Span:
        """Start span and make it current."""
        self._span_cm = self.tracer.start_as_current_span(
            self.operation_name, record_exception=False, set_status_on_exception=False
        )
        span = self._span_cm.__enter__()
        add_span_attributes(span, **self.attributes)
        return span

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """End span and record any errors."""
        if exc_val is not None:
            set_span_error(trace.get_current_span(), exc_val)
        self._span_cm.__exit__(exc_type, exc_val, exc_tb)
