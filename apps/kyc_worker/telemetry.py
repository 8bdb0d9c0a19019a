import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)


def setup_telemetry():
    """Initialize OpenTelemetry tracing for the verification worker"""

    # Only setup if OTEL environment variables are present
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, skipping telemetry setup")
        return None

    resource = Resource.create({
        "service.name": os.getenv("OTEL_SERVICE_NAME", "kyc-verification-worker"),
        "service.version": "0.1.0",
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)

    # Review service calls
    RequestsInstrumentor().instrument()

    logger.info("OpenTelemetry instrumentation enabled for worker")
    return provider


def get_tracer():
    """Get the tracer instance"""
    return trace.get_tracer("apps.kyc_worker")
