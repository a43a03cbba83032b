from __future__ import annotations

import logging

from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider

from registry_pipeline.core.config import Settings
from registry_pipeline.core.telemetry import configure_logging, parse_headers, setup_telemetry, shutdown_telemetry


def test_parse_headers_skips_malformed_items() -> None:
    assert parse_headers("authorization=Bearer abc, x-team = data ,broken,=nokey") == {
        "authorization": "Bearer abc",
        "x-team": "data",
    }
    assert parse_headers(None) == {}


def test_disabled_telemetry_is_a_no_op() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False))

    assert runtime.enabled is False
    assert runtime.provider is None
    shutdown_telemetry(runtime)


def test_enabled_telemetry_without_endpoint_keeps_spans_local() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=True, otel_exporter_otlp_endpoint=None, environment="test"))

    try:
        assert runtime.enabled is True
        assert runtime.provider is not None
        assert runtime.provider.resource.attributes[SERVICE_NAME] == "registry-pipeline"
        assert runtime.provider.resource.attributes[DEPLOYMENT_ENVIRONMENT] == "test"
    finally:
        shutdown_telemetry(runtime)


def test_log_records_carry_trace_placeholders_outside_spans() -> None:
    configure_logging()

    record = logging.getLogRecordFactory()("registry_pipeline.test", logging.INFO, __file__, 1, "msg", (), None)

    assert record.trace_id == "-"
    assert record.span_id == "-"


def test_log_records_carry_active_span_ids() -> None:
    configure_logging()
    tracer = TracerProvider().get_tracer("registry_pipeline.test")

    with tracer.start_as_current_span("job") as span:
        record = logging.getLogRecordFactory()("registry_pipeline.test", logging.INFO, __file__, 1, "msg", (), None)
        context = span.get_span_context()

    assert record.trace_id == format(context.trace_id, "032x")
    assert record.span_id == format(context.span_id, "016x")
