"""Durable pipeline job queue helpers (Redis/RQ)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from config import settings
from database import async_session_maker
from services.maintenance import expire_stale_sync_jobs

logger = logging.getLogger(__name__)

DISCOVERY_LANE = "discovery"
ENRICHMENT_LANE = "enrichment"
MAINTENANCE_LANE = "maintenance"
LANES = (DISCOVERY_LANE, ENRICHMENT_LANE, MAINTENANCE_LANE)


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def lane_concurrency(lane: str) -> int:
    """Number of workers a lane runs with."""
    concurrency = {
        DISCOVERY_LANE: settings.DISCOVERY_CONCURRENCY,
        ENRICHMENT_LANE: settings.ENRICHMENT_CONCURRENCY,
        MAINTENANCE_LANE: settings.MAINTENANCE_CONCURRENCY,
    }
    if lane not in concurrency:
        raise ValueError(f"Unknown lane: {lane}")
    return max(int(concurrency[lane]), 1)


def get_lane_queue(lane: str, connection: Optional[Redis] = None) -> Queue:
    """Return the RQ queue backing a lane."""
    if lane not in LANES:
        raise ValueError(f"Unknown lane: {lane}")
    return Queue(
        name=lane,
        connection=connection or get_redis_connection(),
        default_timeout=settings.JOB_TIMEOUT_SECONDS,
    )


def _retry_policy() -> Retry:
    return Retry(max=settings.JOB_RETRY_ATTEMPTS, interval=list(settings.JOB_RETRY_INTERVALS))


def enqueue_stage(
    lane: str,
    func_path: str,
    job_id: str,
    kwargs: Optional[Dict[str, Any]] = None,
    connection: Optional[Redis] = None,
) -> Optional[Job]:
    """
    Enqueue a pipeline stage under a deterministic job id.

    Returns:
        The new Job, or None when a job with that id already exists
    """
    conn = connection or get_redis_connection()
    if Job.exists(job_id, connection=conn):
        logger.info("Job %s already exists, skipping duplicate enqueue", job_id)
        return None

    queue = get_lane_queue(lane, conn)
    job = queue.enqueue(
        func_path,
        kwargs=kwargs or {},
        job_id=job_id,
        retry=_retry_policy(),
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=settings.JOB_RESULT_TTL_SECONDS,
        failure_ttl=settings.JOB_RESULT_TTL_SECONDS,
    )
    logger.info("Enqueued %s on %s lane as %s", func_path, lane, job_id)
    return job


def enqueue_notification(task_path: str, **kwargs: Any) -> Job:
    """Enqueue a notification task owned by the notification service."""
    queue = get_lane_queue(MAINTENANCE_LANE)
    return queue.enqueue(
        task_path,
        kwargs=kwargs,
        job_id=f"notify:{kwargs.get('video_id')}",
        retry=_retry_policy(),
        result_ttl=settings.JOB_RESULT_TTL_SECONDS,
        failure_ttl=settings.JOB_RESULT_TTL_SECONDS,
    )


def queue_depths(connection: Optional[Redis] = None) -> Dict[str, int]:
    """Pending job count per lane."""
    conn = connection or get_redis_connection()
    return {lane: get_lane_queue(lane, conn).count for lane in LANES}


async def recover_stalled_sync_jobs(max_age_minutes: Optional[int] = None) -> int:
    """Mark stale queued/in-progress sync jobs as failed after restarts/worker interruptions."""
    async with async_session_maker() as db:
        return await expire_stale_sync_jobs(db, max_age_minutes=max_age_minutes)
