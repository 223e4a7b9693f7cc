"""
OpenTelemetry initialization for the logwatch service.

Traces, metrics and logs are exported over OTLP gRPC when
``OTEL_EXPORTER_OTLP_ENDPOINT`` is set. Without an endpoint the API
providers stay in place, so ``get_tracer``/``get_meter`` are always safe to
call at import time.

For FastAPI/Uvicorn the OTLP log handler has to be attached to the uvicorn
loggers as well as the root logger, because uvicorn loggers do not
propagate. Call ``attach_logging_handler()`` from the startup hook.
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import (
    OTELResourceDetector,
    ProcessResourceDetector,
    Resource,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

SERVICE_NAME = "logwatch"

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)

_initialization_state = {
    "tracing": {"success": False, "error": None},
    "metrics": {"success": False, "error": None},
    "logs": {"success": False, "error": None},
    "http_instrumentation": {"success": False, "error": None},
}


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_otlp_headers(headers_env: str, signal_type: str) -> dict[str, str] | None:
    """Parse ``key1=value1,key2=value2`` into a header dict."""
    if not headers_env or not headers_env.strip():
        return None

    headers_list = [
        tuple(h.strip().split("=", 1))
        for h in headers_env.split(",")
        if "=" in h.strip()
    ]
    headers = {k.strip(): v.strip() for k, v in headers_list}

    if not headers:
        logger.warning(
            f"OTEL_EXPORTER_OTLP_HEADERS provided but no valid key=value pairs found. "
            f"Expected format: 'key1=value1,key2=value2'. Got: '{headers_env[:50]}...'"
        )
    else:
        logger.debug(f"Parsed {len(headers)} OTLP header(s) for {signal_type}")
    return headers


def build_resource(service_name: str, service_version: str) -> Resource:
    manual_resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": service_version,
            "deployment.environment": os.getenv("ENVIRONMENT", "production"),
            "service.instance.id": os.getenv("HOSTNAME") or "",
        }
    )

    try:
        process_resource = ProcessResourceDetector().detect()
    except Exception as e:
        logger.warning(f"Failed to detect process attributes: {e}")
        process_resource = Resource.empty()

    try:
        otel_resource = OTELResourceDetector().detect()
    except Exception as e:
        logger.warning(f"Failed to detect OTEL attributes: {e}")
        otel_resource = Resource.empty()

    # OTEL_RESOURCE_ATTRIBUTES wins over the manual attributes
    return manual_resource.merge(process_resource).merge(otel_resource)


def setup_telemetry(
    service_name: str = SERVICE_NAME,
    service_version: str | None = None,
    otlp_endpoint: str | None = None,
    enable_metrics: bool = True,
    enable_traces: bool = True,
    enable_logs: bool = True,
) -> None:
    """Install SDK providers and exporters. No-op when ``ENABLE_OTEL`` is false."""
    global _global_logger_provider

    if not _env_flag("ENABLE_OTEL"):
        return

    service_version = service_version or os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    enable_metrics = enable_metrics and _env_flag("ENABLE_METRICS")
    enable_traces = enable_traces and _env_flag("ENABLE_TRACES")
    enable_logs = enable_logs and _env_flag("ENABLE_LOGS")
    fail_fast = _env_flag("OTEL_FAIL_FAST", "false")
    headers_env = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")

    resource = build_resource(service_name, service_version)

    if enable_traces and otlp_endpoint:
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "tracing")
                        if headers_env
                        else None,
                    )
                )
            )
            trace.set_tracer_provider(tracer_provider)
            _initialization_state["tracing"]["success"] = True
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")
        except Exception as e:
            _initialization_state["tracing"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry tracing: {e}", exc_info=True)
            if fail_fast:
                raise

    if enable_metrics and otlp_endpoint:
        try:
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(
                    endpoint=otlp_endpoint,
                    headers=parse_otlp_headers(headers_env, "metrics")
                    if headers_env
                    else None,
                ),
                export_interval_millis=int(
                    os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")
                ),
            )
            metrics.set_meter_provider(
                MeterProvider(resource=resource, metric_readers=[metric_reader])
            )
            _initialization_state["metrics"]["success"] = True
            logger.info(f"OpenTelemetry metrics enabled for {service_name}")
        except Exception as e:
            _initialization_state["metrics"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry metrics: {e}", exc_info=True)
            if fail_fast:
                raise

    if enable_logs and otlp_endpoint:
        try:
            # set_logging_format=False keeps the handlers basicConfig installed
            LoggingInstrumentor().instrument(set_logging_format=False)
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "logs")
                        if headers_env
                        else None,
                    )
                )
            )
            _global_logger_provider = logger_provider
            _initialization_state["logs"]["success"] = True
            logger.info(f"OpenTelemetry logging export configured for {service_name}")
        except Exception as e:
            _initialization_state["logs"]["error"] = str(e)
            logger.error(
                f"Failed to set up OpenTelemetry logging export: {e}", exc_info=True
            )
            if fail_fast:
                raise

    try:
        HTTPXClientInstrumentor().instrument()
        _initialization_state["http_instrumentation"]["success"] = True
    except Exception as e:
        _initialization_state["http_instrumentation"]["error"] = str(e)
        logger.error(
            f"Failed to set up OpenTelemetry HTTP instrumentation: {e}", exc_info=True
        )
        if fail_fast:
            raise

    failed = [k for k, v in _initialization_state.items() if v["error"] is not None]
    if failed:
        logger.warning(
            f"OpenTelemetry setup for {service_name} v{service_version} "
            f"completed with failed component(s): {', '.join(failed)}"
        )
    else:
        logger.info(f"OpenTelemetry setup completed for {service_name} v{service_version}")


def instrument_fastapi_app(app, fail_fast: bool | None = None):
    """Instrument a FastAPI application. Call after the app is created."""
    if fail_fast is None:
        fail_fast = _env_flag("OTEL_FAIL_FAST", "false")

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI application: {e}", exc_info=True)
        if fail_fast:
            raise


def attach_logging_handler() -> bool:
    """Attach the OTLP handler to the root and uvicorn loggers."""
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.debug("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None and _otlp_logging_handler in root_logger.handlers:
        return True

    handler = LoggingHandler(
        level=logging.NOTSET, logger_provider=_global_logger_provider
    )
    for name in (None, "uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).addHandler(handler)
    _otlp_logging_handler = handler

    logger.info("OTLP logging handler attached to root and uvicorn loggers")
    return True


def get_tracer(name: str = None) -> trace.Tracer:
    return trace.get_tracer(name or SERVICE_NAME)


def get_meter(name: str = None) -> metrics.Meter:
    return metrics.get_meter(name or SERVICE_NAME)


def get_initialization_state() -> dict:
    return {k: dict(v) for k, v in _initialization_state.items()}
