"""
OpenTelemetry spans for the sweep, webhook and access paths.

Tracing is off unless OTEL_ENABLED is set. When off, start_span yields None
and callers must tolerate that. The "memory" exporter keeps finished spans
in process for tests; anything else prints them to the console.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from magicpaws.core.config import settings

SERVICE_NAME = "magicpaws"


class _TracingState:
    def __init__(self):
        self.tracer: Optional[trace.Tracer] = None
        self.exporter: Optional[SpanExporter] = None

    @property
    def active(self) -> bool:
        return self.tracer is not None


_state = _TracingState()


def _build_exporter(name: str) -> SpanExporter:
    if name == "memory":
        return InMemorySpanExporter()
    return ConsoleSpanExporter()


def setup_tracing(enabled: Optional[bool] = None, exporter_name: Optional[str] = None) -> None:
    if not (settings.OTEL_ENABLED if enabled is None else enabled):
        _state.tracer = None
        _state.exporter = None
        return

    exporter = _build_exporter(exporter_name or os.getenv("OTEL_EXPORTER", settings.OTEL_EXPORTER))
    # A private provider rather than trace.set_tracer_provider, which only takes effect once per process
    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    _state.exporter = exporter
    _state.tracer = provider.get_tracer(SERVICE_NAME)


@contextmanager
def start_span(name: str, attributes: Optional[Dict[str, object]] = None) -> Iterator[Optional[trace.Span]]:
    if not _state.active:
        yield None
        return
    clean = {key: value for key, value in (attributes or {}).items() if value is not None}
    with _state.tracer.start_as_current_span(name, attributes=clean) as span:
        yield span


def get_exported_spans():
    if isinstance(_state.exporter, InMemorySpanExporter):
        return _state.exporter.get_finished_spans()
    return ()


def reset_exported_spans() -> None:
    if isinstance(_state.exporter, InMemorySpanExporter):
        _state.exporter.clear()
