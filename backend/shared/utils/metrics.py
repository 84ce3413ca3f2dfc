"""
Lightweight metrics collection for matchsync.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "ms_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "endpoint", "status"],
)
SYNC_RUNS = Counter(
    "ms_sync_runs_total",
    "Live sync cycles by branch taken",
    ["mode"],
)
LINK_OUTCOMES = Counter(
    "ms_link_outcomes_total",
    "Cross-provider linking results per stored match",
    ["outcome"],
)
MATCHES_PURGED = Counter(
    "ms_matches_purged_total",
    "Stored matches deleted because their competition left the allow-list",
    ["provider"],
)
MATCHES_UPSERTED = Counter(
    "ms_matches_upserted_total",
    "Matches written through the store",
    ["source"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "ms_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
ENGINE_OPERATION = Histogram(
    "ms_engine_operation_seconds",
    "Reconciliation engine operation duration",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
SECONDARY_QUOTA_REMAINING = Gauge(
    "ms_secondary_quota_remaining",
    "Requests remaining in the secondary provider's daily quota",
)
ACTIVE_MATCHES = Gauge(
    "ms_active_matches",
    "Matches classified as live or imminent in the last sync cycle",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
