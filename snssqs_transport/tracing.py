"""OpenTelemetry tracing helpers for the transport and its scripts.

The transport opens spans through ``get_tracer``; they are no-ops until a
process calls ``start_tracing``, which exports spans to the console.
"""

from __future__ import annotations

from opentelemetry import trace  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore


def start_tracing(service_name: str = "snssqs-transport") -> Tracer:
    """Initialize a TracerProvider with a console exporter."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    return trace.get_tracer(service_name)


def get_tracer(service_name: str = "snssqs-transport") -> Tracer:
    return trace.get_tracer(service_name)
