"""
OTel provider setup for CLI runs.

Library code only uses the API (``trace.get_tracer`` / ``metrics.get_meter``),
which is a no-op until ``configure_otel_providers`` installs SDK providers
with OTLP gRPC exporters.
"""

from __future__ import annotations

import logging

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from runnerops import __version__

__all__ = ["configure_otel_providers", "flush_otel_providers"]

logger = logging.getLogger(__name__)


def configure_otel_providers(endpoint: str, service_name: str = "runnerops") -> bool:
    """
    Configure global OTel providers with OTLP exporters.

    Args:
        endpoint: OTLP endpoint (e.g., localhost:4317)
        service_name: ``service.name`` resource attribute

    Returns:
        True if configuration succeeded, False otherwise
    """
    try:
        resource = Resource.create({
            "service.name": service_name,
            "service.namespace": "runnerops",
            "service.version": __version__,
        })

        tracer_provider = TracerProvider(resource=resource)
        span_exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(tracer_provider)

        metric_exporter = OTLPMetricExporter(endpoint=endpoint, insecure=True)
        metric_reader = PeriodicExportingMetricReader(
            metric_exporter,
            export_interval_millis=5000,
        )
        meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
        metrics.set_meter_provider(meter_provider)
    except Exception as e:
        logger.warning("Failed to configure OTel export to %s: %s", endpoint, e)
        return False

    logger.debug("OTel export configured for %s", endpoint)
    return True


def flush_otel_providers() -> None:
    """Flush and shut down SDK providers so pending telemetry is exported."""
    tracer_provider = trace.get_tracer_provider()
    meter_provider = metrics.get_meter_provider()
    for provider in (tracer_provider, meter_provider):
        try:
            if hasattr(provider, "force_flush"):
                provider.force_flush(timeout_millis=10000)
            if hasattr(provider, "shutdown"):
                provider.shutdown()
        except Exception as e:
            logger.warning("OTel flush failed: %s", e)
