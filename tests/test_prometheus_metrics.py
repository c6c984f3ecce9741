"""Tests for the conversion metrics and the metrics endpoint."""

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from chrome_render import prometheus_metrics
from chrome_render.errors import (
    CompletionTriggerError,
    CompletionTriggerTimeoutError,
    ConnectionLostError,
    GenerationTimeoutError,
    PageNavigationError,
    TargetCrashedError,
)
from chrome_render.metrics_server import metrics_app


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.parametrize(
    "error,reason",
    [
        (GenerationTimeoutError(), "timeout"),
        (PageNavigationError(), "navigation"),
        (CompletionTriggerTimeoutError(), "completion_trigger"),
        (CompletionTriggerError("ReferenceError"), "completion_trigger"),
        (TargetCrashedError(), "target_crashed"),
        (ConnectionLostError(), "connection_lost"),
        (UnicodeDecodeError("utf-8", b"\x81", 0, 1, "invalid start byte"), "invalid_input"),
        (ValueError("completion_trigger=element requires trigger_arg"), "invalid_input"),
        (RuntimeError("Executable doesn't exist"), "unexpected"),
    ],
)
def test_failure_reason(error, reason):
    assert prometheus_metrics.failure_reason(error) == reason


def test_track_generation_records_success():
    successes = sample("pdf_generations_total")
    durations = sample("pdf_generation_duration_seconds_count")

    with prometheus_metrics.track_generation("pdf"):
        assert sample("active_generations", {"kind": "pdf"}) == 1

    assert sample("pdf_generations_total") == successes + 1
    assert sample("pdf_generation_duration_seconds_count") == durations + 1
    assert sample("active_generations", {"kind": "pdf"}) == 0


def test_track_generation_records_failure_and_reraises():
    failures = sample("image_generation_failures_total")
    by_reason = sample("generation_failures_by_reason_total", {"kind": "image", "reason": "navigation"})
    durations = sample("image_generation_duration_seconds_count")

    with pytest.raises(PageNavigationError), prometheus_metrics.track_generation("image"):
        raise PageNavigationError()

    assert sample("image_generation_failures_total") == failures + 1
    assert sample("generation_failures_by_reason_total", {"kind": "image", "reason": "navigation"}) == by_reason + 1
    assert sample("image_generation_duration_seconds_count") == durations
    assert sample("active_generations", {"kind": "image"}) == 0


def test_chromium_info():
    prometheus_metrics.update_chromium_info("131.0.6778.69")

    assert REGISTRY.get_sample_value("chromium_info", {"version": "131.0.6778.69"}) == 1.0


def test_metrics_endpoint_serves_conversion_metrics():
    with TestClient(metrics_app) as test_client:
        result = test_client.get("/metrics")

    assert result.status_code == 200
    assert "text/plain" in result.headers["content-type"]
    assert "# HELP pdf_generations_total" in result.text
    assert "image_generation_duration_seconds_bucket" in result.text
