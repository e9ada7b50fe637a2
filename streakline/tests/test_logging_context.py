"""Tests for structured logging and request_id propagation."""

import json
import logging

from fastapi.testclient import TestClient

from streakline.core.logging import JsonFormatter, PrettyFormatter, latency_bucket_ms, log_event
from streakline.main import app


def test_request_id_in_response_and_logs(caplog):
    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="streakline"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_request_id_in_error_response():
    client = TestClient(app)
    response = client.get("/api/streaks")
    rid = response.headers.get("x-request-id")
    assert response.status_code == 401
    assert rid
    payload = response.json()
    assert payload["error"]["request_id"] == rid


def test_log_event_carries_structured_fields(caplog):
    with caplog.at_level(logging.INFO, logger="streakline"):
        log_event("info", "streak.counted", user_id="u1", event_type="streak.counted", extra={"day": "2024-01-01"})
    record = next(r for r in caplog.records if r.getMessage() == "streak.counted")
    assert record.user_id == "u1"
    assert record.event_type == "streak.counted"
    assert record.day == "2024-01-01"


def test_log_event_truncates_large_values(caplog):
    with caplog.at_level(logging.INFO, logger="streakline"):
        log_event("info", "big", extra={"blob": "x" * 2000})
    record = next(r for r in caplog.records if r.getMessage() == "big")
    assert record.blob.endswith("...<truncated>")
    assert len(record.blob) < 600


def test_json_formatter_includes_user_and_event():
    record = logging.LogRecord("streakline", logging.INFO, __file__, 1, "streak.expired", None, None)
    record.request_id = "rid-1"
    record.user_id = "u1"
    record.event_type = "streak.expired"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "streak.expired"
    assert payload["request_id"] == "rid-1"
    assert payload["user_id"] == "u1"
    assert payload["event_type"] == "streak.expired"
    assert "error_code" not in payload


def test_pretty_formatter_shows_user():
    record = logging.LogRecord("streakline", logging.INFO, __file__, 1, "streak.counted", None, None)
    record.request_id = None
    record.user_id = "u1"
    line = PrettyFormatter().format(record)
    assert "[user=u1]" in line
    assert line.endswith("streak.counted")


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(5000) == ">=1000ms"
