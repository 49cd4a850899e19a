"""OpenTelemetry setup helpers used by each FastAPI app.

Both helpers are no-ops when `OTEL_ENABLED=false` (tests, local scripts).
"""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from vaultmarket.common.config import settings

# Probe and scrape endpoints would otherwise dominate the trace volume.
EXCLUDED_URLS = "health,metrics"


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider exporting spans over OTLP/HTTP."""

    if not settings.otel_enabled:
        return
    resource = Resource.create({"service.name": service_name, "service.namespace": "vaultmarket"})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    if not settings.otel_enabled:
        return
    FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)
