"""OpenTelemetry + Prometheus fallback wiring for the Trem repository core."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from trem import config

logger = logging.getLogger("trem.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_stage_counter: Any | None = None
_stage_latency_hist: Any | None = None
_collaborator_failure_counter: Any | None = None
_commit_counter: Any | None = None

_prom_enabled = False
_prom_stage_counter: Any | None = None
_prom_stage_latency_hist: Any | None = None
_prom_collaborator_failure_counter: Any | None = None
_prom_commit_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**extra: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in extra.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _stage_counter, _stage_latency_hist, _collaborator_failure_counter, _commit_counter
    global _prom_enabled, _prom_stage_counter, _prom_stage_latency_hist
    global _prom_collaborator_failure_counter, _prom_commit_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (TREM_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "trem-repo-core"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "trem",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("trem.core")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("trem.core")

    _stage_counter = meter.create_counter(
        "trem_ingestion_stages_total",
        unit="1",
        description="Count of ingestion pipeline stage executions",
    )
    _stage_latency_hist = meter.create_histogram(
        "trem_ingestion_stage_latency_ms",
        unit="ms",
        description="Latency of ingestion pipeline stages",
    )
    _collaborator_failure_counter = meter.create_counter(
        "trem_collaborator_failures_total",
        unit="1",
        description="External collaborator failures recovered by the pipeline",
    )
    _commit_counter = meter.create_counter(
        "trem_commits_total",
        unit="1",
        description="Commit attempts by outcome",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_stage_counter = Counter(
                "trem_ingestion_stages_total",
                "Count of ingestion pipeline stage executions",
                ["stage", "result", "kind"],
            )
            _prom_stage_latency_hist = Histogram(
                "trem_ingestion_stage_latency_ms",
                "Latency of ingestion pipeline stages",
                ["stage", "result", "kind"],
            )
            _prom_collaborator_failure_counter = Counter(
                "trem_collaborator_failures_total",
                "External collaborator failures recovered by the pipeline",
                ["collaborator"],
            )
            _prom_commit_counter = Counter(
                "trem_commits_total",
                "Commit attempts by outcome",
                ["result"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception:
        pass
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception:
        pass
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception:
        pass
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_stage(stage: str, result: str, duration_ms: float, *, kind: str) -> None:
    labels = {
        "stage": stage or "unknown",
        "result": result or "unknown",
        "kind": kind or "unknown",
    }
    if _enabled and _stage_counter is not None:
        _stage_counter.add(1, labels)
    if _enabled and _stage_latency_hist is not None:
        _stage_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_stage_counter is not None:
        _prom_stage_counter.labels(**_prom_labels(**labels)).inc()
    if _prom_enabled and _prom_stage_latency_hist is not None:
        _prom_stage_latency_hist.labels(**_prom_labels(**labels)).observe(max(0.0, float(duration_ms)))


def record_collaborator_failure(collaborator: str) -> None:
    labels = {"collaborator": collaborator or "unknown"}
    if _enabled and _collaborator_failure_counter is not None:
        _collaborator_failure_counter.add(1, labels)
    if _prom_enabled and _prom_collaborator_failure_counter is not None:
        _prom_collaborator_failure_counter.labels(**_prom_labels(**labels)).inc()


def record_commit(result: str, *, repository_id: int | None = None) -> None:
    labels = {"result": result or "unknown"}
    if _enabled and _commit_counter is not None:
        _commit_counter.add(1, {**labels, "repository_id": str(repository_id or "unknown")})
    if _prom_enabled and _prom_commit_counter is not None:
        _prom_commit_counter.labels(**_prom_labels(**labels)).inc()
