"""Prometheus metrics for pipeline workers."""

import logging

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest, start_http_server

logger = logging.getLogger(__name__)

# Provider metrics
youtube_api_calls = Counter(
    "pipeline_youtube_api_calls_total",
    "YouTube Data API calls issued",
    ["operation", "outcome"],
)
youtube_quota_units_used = Gauge(
    "pipeline_youtube_quota_units_used",
    "YouTube quota units charged in the current quota day",
)

# Sync job metrics
sync_jobs_in_progress = Gauge(
    "pipeline_sync_jobs_in_progress",
    "Sync jobs currently running in this process",
    ["job_type"],
)
sync_jobs_finished = Counter(
    "pipeline_sync_jobs_finished_total",
    "Sync jobs finished, by final status",
    ["job_type", "status"],
)

OUTCOME_OK = "ok"
OUTCOME_QUOTA_EXCEEDED = "quota_exceeded"
OUTCOME_RATE_LIMITED = "rate_limited"
OUTCOME_ERROR = "error"


def record_youtube_call(operation: str, outcome: str, units_used: int) -> None:
    youtube_api_calls.labels(operation=operation, outcome=outcome).inc()
    youtube_quota_units_used.set(units_used)


def start_metrics_server(port: int) -> bool:
    """Serve /metrics from a worker process. A port of 0 disables it."""
    if not port:
        return False
    start_http_server(int(port))
    logger.info("Serving worker metrics on port %s", port)
    return True


async def metrics_endpoint():
    """Return Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
