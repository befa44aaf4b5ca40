"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry
import structlog

from .config import settings

SERVICE_NAME = "equipment-lending-api"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Business metrics
BORROW_REQUESTS_CREATED = Counter(
    'borrow_requests_created_total',
    'Total borrow requests created',
    registry=REGISTRY
)

UNITS_RESERVED = Counter(
    'equipment_units_reserved_total',
    'Total equipment units soft-reserved at request creation',
    registry=REGISTRY
)

UNITS_RELEASED = Counter(
    'equipment_units_released_total',
    'Total equipment units released back to inventory',
    ['reason'],
    registry=REGISTRY
)

REQUESTS_EXPIRED = Counter(
    'borrow_requests_expired_total',
    'Total pending requests expired without staff action',
    registry=REGISTRY
)

ITEMS_OVERDUE = Counter(
    'borrow_items_overdue_total',
    'Total line items flagged overdue',
    registry=REGISTRY
)

REMINDERS_SENT = Counter(
    'overdue_reminders_sent_total',
    'Total overdue reminders sent',
    ['level'],
    registry=REGISTRY
)

REMINDERS_FAILED = Counter(
    'overdue_reminders_failed_total',
    'Total overdue reminders that failed to send',
    registry=REGISTRY
)

INVENTORY_DRIFT_FIXED = Counter(
    'inventory_drift_fixed_total',
    'Total equipment records whose available count was corrected',
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())
    trace.set_tracer_provider(provider)

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
        """Record one served HTTP request."""
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_request_created(units: int):
        """Record a borrow request creation and the units it reserved."""
        BORROW_REQUESTS_CREATED.inc()
        UNITS_RESERVED.inc(units)

    @staticmethod
    def record_units_released(reason: str, units: int):
        """Record units returned to inventory by a terminal transition."""
        UNITS_RELEASED.labels(reason=reason).inc(units)

    @staticmethod
    def record_request_expired():
        """Record a request expiration."""
        REQUESTS_EXPIRED.inc()

    @staticmethod
    def record_items_overdue(count: int):
        """Record line items flagged overdue."""
        ITEMS_OVERDUE.inc(count)

    @staticmethod
    def record_reminder_sent(level: str):
        """Record a reminder delivery."""
        REMINDERS_SENT.labels(level=level).inc()

    @staticmethod
    def record_reminder_failed():
        """Record a reminder delivery failure."""
        REMINDERS_FAILED.inc()

    @staticmethod
    def record_drift_fixed(count: int):
        """Record equipment records corrected by the reconciler."""
        INVENTORY_DRIFT_FIXED.inc(count)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
