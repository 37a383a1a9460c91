"""OpenTelemetry spans around gate checks, provider calls and lifecycle writes.

Disabled unless OTEL_ENABLED. Spans that exit with an exception are marked
as errors and carry the exception event.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, Span, TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer

from tutorgate.core.config import settings


_tracer: Optional[Tracer] = None
_exporter: Optional[SpanExporter] = None


def setup_tracing(enabled: Optional[bool] = None, exporter_name: Optional[str] = None) -> None:
    """(Re)configure tracing. The provider is private to this module, so tests can call this repeatedly."""
    global _tracer, _exporter

    if not (settings.OTEL_ENABLED if enabled is None else enabled):
        _tracer, _exporter = None, None
        return

    choice = exporter_name or settings.OTEL_EXPORTER
    _exporter = InMemorySpanExporter() if choice == "memory" else ConsoleSpanExporter()
    provider = TracerProvider(resource=Resource.create({"service.name": "tutorgate"}))
    provider.add_span_processor(SimpleSpanProcessor(_exporter))
    _tracer = provider.get_tracer("tutorgate")


@contextmanager
def start_span(name: str, attributes: Optional[Dict[str, object]] = None) -> Iterator[Optional[Span]]:
    if _tracer is None:
        yield None
        return

    clean = {key: value for key, value in (attributes or {}).items() if value is not None}
    with _tracer.start_as_current_span(name, attributes=clean, record_exception=False, set_status_on_exception=False) as span:
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise


def exported_spans(clear: bool = False) -> List[ReadableSpan]:
    """Finished spans held by the in-memory exporter (empty for other exporters)."""
    if not isinstance(_exporter, InMemorySpanExporter):
        return []
    spans = list(_exporter.get_finished_spans())
    if clear:
        _exporter.clear()
    return spans
