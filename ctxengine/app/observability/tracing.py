"""
OpenTelemetry tracing hooks.
"""

from __future__ import annotations

from contextlib import contextmanager

from opentelemetry import trace


_tracer = trace.get_tracer("ctxengine")


@contextmanager
def trace_span(name: str, **attrs):
    with _tracer.start_as_current_span(name) as span:
        for k, v in attrs.items():
            span.set_attribute(k, str(v))
        yield span
