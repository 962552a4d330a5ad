from __future__ import annotations

import logging
import socket
from collections.abc import Callable

from opentelemetry import _logs, metrics, propagate, trace
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from app.core.errors import ErrorKind
from app.core.settings import APP_NAME, PyroscopeSettings, Settings


logger = logging.getLogger(__name__)

Shutdown = Callable[[], None]


def trace_id_of(span: Span) -> str:
    """Hex trace id of `span`, or "" when tracing is inactive."""

    ctx = span.get_span_context()
    if not ctx.is_valid:
        return ""
    return trace.format_trace_id(ctx.trace_id)


def setup_otel_sdk(settings: Settings) -> Shutdown:
    """Install OTLP/HTTP trace, metric and log providers for enabled sections.

    Returns a callable that flushes and shuts every installed provider down.
    """

    shutdown_funcs: list[Shutdown] = []

    def shutdown() -> None:
        failures: list[Exception] = []
        for fn in shutdown_funcs:
            try:
                fn()
            except Exception as exc:  # keep shutting the rest down
                failures.append(exc)
        shutdown_funcs.clear()
        if failures:
            raise ErrorKind.UNAVAILABLE.new(
                "failed to shutdown telemetry providers", cause=failures[0]
            )

    propagate.set_global_textmap(
        CompositePropagator([TraceContextTextMapPropagator(), W3CBaggagePropagator()])
    )
    resource = Resource.create({SERVICE_NAME: APP_NAME})

    try:
        if settings.otlp_trace.enabled:
            exporter = OTLPSpanExporter(
                endpoint=f"{settings.otlp_trace.endpoint}/v1/traces",
                timeout=settings.otlp_trace.timeout_seconds,
            )
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(exporter, schedule_delay_millis=1000)
            )
            trace.set_tracer_provider(tracer_provider)
            shutdown_funcs.append(tracer_provider.shutdown)

        if settings.otlp_metric.enabled:
            reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=f"{settings.otlp_metric.endpoint}/v1/metrics"),
                export_interval_millis=3000,
            )
            meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
            metrics.set_meter_provider(meter_provider)
            shutdown_funcs.append(meter_provider.shutdown)

        if settings.otlp_log.enabled:
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(endpoint=f"{settings.otlp_log.endpoint}/v1/logs")
                )
            )
            _logs.set_logger_provider(logger_provider)
            logging.getLogger().addHandler(
                LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider)
            )
            shutdown_funcs.append(logger_provider.shutdown)
    except Exception as exc:
        shutdown()
        raise ErrorKind.SYSTEM_INTERNAL.new(
            "failed to initialize OpenTelemetry SDK", cause=exc
        ) from exc

    return shutdown


def start_profiler(cfg: PyroscopeSettings) -> None:
    # Optional dependency (extra "profiling"), imported only when enabled.
    import pyroscope

    pyroscope.configure(
        application_name=APP_NAME,
        server_address=f"http://{cfg.host}:{cfg.port}",
        tenant_id=cfg.tenant_id,
        tags={"hostname": socket.gethostname()},
    )
    logger.info("pyroscope profiler started (server=%s:%s)", cfg.host, cfg.port)
