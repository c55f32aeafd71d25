from __future__ import annotations

import logging

from fastapi import FastAPI

from newsroom.core.config import Settings
from newsroom.core.telemetry import _parse_headers, setup_api_telemetry, shutdown_api_telemetry


def test_parse_headers_skips_malformed_items() -> None:
    assert _parse_headers("authorization=Basic abc, x-scope = newsroom ,broken,=empty") == {
        "authorization": "Basic abc",
        "x-scope": "newsroom",
    }
    assert _parse_headers(None) == {}


def test_disabled_telemetry_is_a_no_op() -> None:
    app = FastAPI()
    runtime = setup_api_telemetry(app, Settings(otel_enabled=False))
    assert runtime.enabled is False
    assert runtime.provider is None
    shutdown_api_telemetry(app, runtime)


def test_log_records_carry_trace_fields() -> None:
    setup_api_telemetry(FastAPI(), Settings(otel_enabled=False, otel_log_correlation=True))
    record = logging.getLogRecordFactory()("newsroom", logging.INFO, __file__, 1, "hello", None, None)
    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16
