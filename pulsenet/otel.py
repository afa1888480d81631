from __future__ import annotations

from typing import Optional, Tuple

from opentelemetry import trace, metrics
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

from pulsenet.config import OTelConfig

_providers: Optional[Tuple[TracerProvider, MeterProvider]] = None


def init_otel(cfg: OTelConfig) -> Optional[Tuple[TracerProvider, MeterProvider]]:
    """Install OTLP/gRPC trace and metric exporters. No-op when disabled."""
    global _providers
    if not cfg.enabled:
        return None
    if _providers is not None:
        return _providers

    # exporters pull in grpc; keep the import off the default path
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

    resource = Resource(attributes={SERVICE_NAME: cfg.service_name})

    tracer_provider = TracerProvider(resource=resource)
    span_exporter = OTLPSpanExporter(endpoint=cfg.endpoint, insecure=True)
    tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    metric_exporter = OTLPMetricExporter(endpoint=cfg.endpoint, insecure=True)
    reader = PeriodicExportingMetricReader(metric_exporter)
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)

    _providers = (tracer_provider, meter_provider)
    return _providers


def shutdown_otel() -> None:
    """Flush and stop exporters installed by init_otel."""
    global _providers
    if _providers is None:
        return
    tracer_provider, meter_provider = _providers
    tracer_provider.shutdown()
    meter_provider.shutdown()
    _providers = None
