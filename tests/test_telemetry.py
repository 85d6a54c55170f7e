from __future__ import annotations

import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider

from jobsync.core import telemetry


@pytest.fixture
def restore_record_factory():
    original = logging.getLogRecordFactory()
    yield
    logging.setLogRecordFactory(original)


def test_parse_headers_decodes_values_and_skips_malformed_pairs() -> None:
    parsed = telemetry._parse_headers("Authorization=Basic%20abc%3D%3D, x-team = sync ,broken,=orphan")

    assert parsed == {"Authorization": "Basic abc==", "x-team": "sync"}
    assert telemetry._parse_headers(None) == {}


def test_log_records_carry_active_span_ids(restore_record_factory) -> None:
    telemetry._install_log_correlation()
    telemetry._install_log_correlation()
    factory = logging.getLogRecordFactory()
    tracer = TracerProvider().get_tracer(__name__)

    outside = factory("jobsync", logging.INFO, __file__, 1, "outside", None, None)
    with tracer.start_as_current_span("sync.run") as span:
        inside = factory("jobsync", logging.INFO, __file__, 1, "inside", None, None)

    assert outside.trace_id == "0" * 32
    assert outside.span_id == "0" * 16
    assert inside.trace_id == format(span.get_span_context().trace_id, "032x")
    assert not isinstance(factory.wrapped, telemetry._TraceContextRecordFactory)
