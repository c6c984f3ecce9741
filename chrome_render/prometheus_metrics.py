"""
Prometheus metrics collectors for chrome-render-service.

Counters and histograms are updated by the HTTP endpoints when a conversion
finishes; the in-progress gauge is raised and lowered around each conversion.
Failures are additionally counted per reason, matching the error classes the
generators raise.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal

from prometheus_client import Counter, Gauge, Histogram, Info

from chrome_render.errors import (
    CompletionTriggerError,
    CompletionTriggerTimeoutError,
    ConnectionLostError,
    GenerationTimeoutError,
    PageNavigationError,
    TargetCrashedError,
)

logger = logging.getLogger(__name__)

ConversionKind = Literal["pdf", "image"]

DURATION_BUCKETS = [0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]

pdf_generations_total = Counter(
    "pdf_generations_total",
    "Total number of successful HTML to PDF conversions",
)

pdf_generation_failures_total = Counter(
    "pdf_generation_failures_total",
    "Total number of failed HTML to PDF conversions",
)

image_generations_total = Counter(
    "image_generations_total",
    "Total number of successful HTML to image conversions",
)

image_generation_failures_total = Counter(
    "image_generation_failures_total",
    "Total number of failed HTML to image conversions",
)

generation_failures_by_reason_total = Counter(
    "generation_failures_by_reason_total",
    "Failed conversions by kind and terminal reason",
    ["kind", "reason"],
)

pdf_generation_duration_seconds = Histogram(
    "pdf_generation_duration_seconds",
    "HTML to PDF conversion duration in seconds",
    buckets=DURATION_BUCKETS,
)

image_generation_duration_seconds = Histogram(
    "image_generation_duration_seconds",
    "HTML to image conversion duration in seconds",
    buckets=DURATION_BUCKETS,
)

active_generations = Gauge(
    "active_generations",
    "Current number of conversions in progress",
    ["kind"],
)

chromium_info = Info(
    "chromium",
    "Chromium browser information",
)

_SUCCESS_COUNTERS = {"pdf": pdf_generations_total, "image": image_generations_total}
_FAILURE_COUNTERS = {"pdf": pdf_generation_failures_total, "image": image_generation_failures_total}
_DURATION_HISTOGRAMS = {"pdf": pdf_generation_duration_seconds, "image": image_generation_duration_seconds}


def failure_reason(error: BaseException) -> str:
    """Label value for the terminal error of a failed conversion."""
    if isinstance(error, GenerationTimeoutError):
        return "timeout"
    if isinstance(error, PageNavigationError):
        return "navigation"
    if isinstance(error, (CompletionTriggerTimeoutError, CompletionTriggerError)):
        return "completion_trigger"
    if isinstance(error, TargetCrashedError):
        return "target_crashed"
    if isinstance(error, ConnectionLostError):
        return "connection_lost"
    if isinstance(error, (UnicodeDecodeError, LookupError, ValueError)):
        return "invalid_input"
    return "unexpected"


def increment_generation_success(kind: ConversionKind, duration_seconds: float) -> None:
    """Increment the successful conversion counter of ``kind`` and record its duration."""
    _SUCCESS_COUNTERS[kind].inc()
    _DURATION_HISTOGRAMS[kind].observe(duration_seconds)


def increment_generation_failure(kind: ConversionKind, error: BaseException) -> None:
    """Increment the failed conversion counters of ``kind``."""
    _FAILURE_COUNTERS[kind].inc()
    generation_failures_by_reason_total.labels(kind=kind, reason=failure_reason(error)).inc()


@contextmanager
def track_generation(kind: ConversionKind) -> Iterator[None]:
    """
    Count the enclosed conversion as in progress and record its outcome.

    Exceptions leaving the block are recorded as failures and re-raised.
    """
    gauge = active_generations.labels(kind=kind)
    gauge.inc()
    start_time = time.perf_counter()
    try:
        yield
    except Exception as e:
        increment_generation_failure(kind, e)
        raise
    else:
        increment_generation_success(kind, time.perf_counter() - start_time)
    finally:
        gauge.dec()


def update_chromium_info(chromium_version: str | None) -> None:
    if chromium_version:
        chromium_info.info({"version": chromium_version})
        logger.debug("Prometheus chromium info updated: %s", chromium_version)
