"""
OpenTelemetry tracing integration.

Spans wrap model round-trips, tool invocations and whole executions; the active
span's trace ID is mirrored into the logging context so log lines correlate.
"""

import asyncio
import functools
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

from .logging import get_logger, set_trace_id

logger = get_logger(__name__)


class TracingManager:
    """Manages OpenTelemetry tracing configuration and utilities."""

    def __init__(self, service_name: str = "forgeagent", service_version: str = "0.1.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self.tracer: trace.Tracer = trace.NoOpTracer()
        self._initialized = False

    def initialize(self, otlp_endpoint: str | None = None) -> None:
        """Install an SDK tracer provider, exporting over OTLP when an endpoint is set."""
        if self._initialized:
            return

        resource = Resource.create(
            {
                "service.name": self.service_name,
                "service.version": self.service_version,
            }
        )
        self.tracer_provider = TracerProvider(resource=resource)
        if otlp_endpoint:
            self.tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )
        trace.set_tracer_provider(self.tracer_provider)

        self.tracer = trace.get_tracer(self.service_name, self.service_version)
        self._initialized = True
        logger.info("Tracing initialized", otlp_endpoint=otlp_endpoint or "-")

    def start_span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    ) -> Span:
        span = self.tracer.start_span(name, kind=kind)
        for key, value in (attributes or {}).items():
            span.set_attribute(key, str(value))

        span_context = span.get_span_context()
        if span_context.is_valid:
            set_trace_id(format(span_context.trace_id, "032x"))
        return span

    @contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    ):
        """Context manager for creating spans."""
        span = self.start_span(name, attributes, kind)
        try:
            with trace.use_span(span, end_on_exit=False):
                yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        finally:
            span.end()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def shutdown(self) -> None:
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self._initialized = False


_tracing_manager: TracingManager | None = None


def setup_tracing(
    service_name: str, service_version: str, otlp_endpoint: str | None = None
) -> TracingManager:
    """Create and initialize the global tracing manager."""
    global _tracing_manager
    _tracing_manager = TracingManager(service_name, service_version)
    _tracing_manager.initialize(otlp_endpoint)
    return _tracing_manager


def get_tracing_manager() -> TracingManager:
    """Get the global tracing manager; uninitialized managers trace with a no-op tracer."""
    global _tracing_manager
    if _tracing_manager is None:
        _tracing_manager = TracingManager()
    return _tracing_manager


def trace_span(
    name: str | None = None,
    attributes: dict[str, Any] | None = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
):
    """Decorator wrapping a sync or async callable in a span."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        span_attributes = {"function.name": func.__name__, **(attributes or {})}

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes, kind) as span:
                result = await func(*args, **kwargs)
                if hasattr(result, "success"):
                    span.set_attribute("result.success", bool(result.success))
                span.set_status(Status(StatusCode.OK))
                return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, span_attributes, kind) as span:
                result = func(*args, **kwargs)
                span.set_status(Status(StatusCode.OK))
                return result

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator
