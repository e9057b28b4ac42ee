"""Shared persistence helpers for pipeline stages (staged videos, sync jobs, categories)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

import metrics
from ingestion.youtube import VideoRecord
from models.category import Category
from models.staged_video import StagedVideo
from models.sync_job import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_IN_PROGRESS,
    JOB_STATUS_QUEUED,
    SyncJobRecord,
)

logger = logging.getLogger(__name__)

UPSERT_ADDED = "added"
UPSERT_UPDATED = "updated"

ALLOWED_TRANSITIONS = {
    JOB_STATUS_QUEUED: {JOB_STATUS_IN_PROGRESS, JOB_STATUS_FAILED},
    JOB_STATUS_IN_PROGRESS: {JOB_STATUS_COMPLETED, JOB_STATUS_FAILED},
    JOB_STATUS_COMPLETED: set(),
    JOB_STATUS_FAILED: set(),
}


class InvalidSyncJobTransition(Exception):
    """Raised when a sync job would move backwards or leave a terminal state."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Sync job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetimes read back from stores that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_provider_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse RFC 3339 timestamps as returned by the provider."""
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        logger.warning("Unparseable provider timestamp: %s", value)
        return None


def transition_sync_job(job: SyncJobRecord, target: str) -> None:
    """Move a sync job forward, stamping start/completion times."""
    current = job.status or JOB_STATUS_QUEUED
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidSyncJobTransition(str(job.id), current, target)
    job.status = target
    if target == JOB_STATUS_IN_PROGRESS:
        job.started_at = utc_now()
    elif target in (JOB_STATUS_COMPLETED, JOB_STATUS_FAILED):
        job.completed_at = utc_now()


async def start_sync_job(
    db: AsyncSession,
    job_type: str,
    triggered_by: str,
    organization_id: Optional[str] = None,
) -> str:
    """Create a sync job record and mark it in progress. Returns its id."""
    job = SyncJobRecord(
        job_type=job_type,
        status=JOB_STATUS_QUEUED,
        triggered_by=triggered_by,
        organization_id=organization_id,
        errors=[],
    )
    db.add(job)
    await db.flush()
    transition_sync_job(job, JOB_STATUS_IN_PROGRESS)
    await db.commit()
    metrics.sync_jobs_in_progress.labels(job_type=job_type).inc()
    logger.info("Started %s sync job %s (triggered by %s)", job_type, job.id, triggered_by)
    return job.id


async def finish_sync_job(
    db: AsyncSession,
    job_id: str,
    status: str,
    *,
    videos_found: int = 0,
    videos_added: int = 0,
    videos_updated: int = 0,
    errors: Optional[List[str]] = None,
) -> SyncJobRecord:
    """Record final counters and move the job to a terminal state."""
    result = await db.execute(select(SyncJobRecord).where(SyncJobRecord.id == job_id))
    job = result.scalar_one()
    transition_sync_job(job, status)
    job.videos_found = int(videos_found)
    job.videos_added = int(videos_added)
    job.videos_updated = int(videos_updated)
    job.errors = list(errors or [])
    await db.commit()
    metrics.sync_jobs_in_progress.labels(job_type=job.job_type).dec()
    metrics.sync_jobs_finished.labels(job_type=job.job_type, status=status).inc()
    logger.info(
        "Sync job %s %s: found=%s added=%s updated=%s errors=%s",
        job_id,
        status,
        videos_found,
        videos_added,
        videos_updated,
        len(job.errors),
    )
    return job


async def find_staged_video(db: AsyncSession, external_video_id: str) -> Optional[StagedVideo]:
    result = await db.execute(
        select(StagedVideo)
        .where(StagedVideo.external_video_id == external_video_id)
        .order_by(StagedVideo.created_at.asc(), StagedVideo.id.asc())
        .limit(1)
    )
    return result.scalars().first()


async def upsert_staged_video(
    db: AsyncSession,
    record: VideoRecord,
    link: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Insert or refresh a staged video keyed by its external id.

    Args:
        record: Provider details for the video
        link: Owner columns (organization_id or creator_id) to set on the row;
            on an existing row they are only filled while still null

    Returns:
        UPSERT_ADDED or UPSERT_UPDATED. The caller commits.
    """
    link = {key: value for key, value in (link or {}).items() if value}
    now = utc_now()
    existing = await find_staged_video(db, record.external_video_id)

    if existing is None:
        db.add(
            StagedVideo(
                external_video_id=record.external_video_id,
                title=record.title,
                description=record.description,
                thumbnail_url=record.thumbnail_url,
                duration_seconds=record.duration_seconds,
                published_at=parse_provider_timestamp(record.published_at),
                view_count=record.view_count,
                like_count=record.like_count,
                channel_id=record.channel_id,
                channel_title=record.channel_title,
                provider_tags=list(record.tags),
                last_synced_at=now,
                **link,
            )
        )
        return UPSERT_ADDED

    existing.title = record.title
    existing.description = record.description
    existing.thumbnail_url = record.thumbnail_url
    existing.view_count = record.view_count
    existing.like_count = record.like_count
    existing.provider_tags = list(record.tags)
    existing.last_synced_at = now
    for column, value in link.items():
        if getattr(existing, column) is None:
            setattr(existing, column, value)
    return UPSERT_UPDATED


async def save_staged_video(
    db: AsyncSession,
    record: VideoRecord,
    link: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Upsert and commit one staged video.

    A concurrent writer can insert the same external id between the lookup and
    the commit; the unique index rejects the second insert and the row is then
    refreshed as an update.
    """
    outcome = await upsert_staged_video(db, record, link)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Staged video %s inserted concurrently, updating instead", record.external_video_id)
        outcome = await upsert_staged_video(db, record, link)
        await db.commit()
    return outcome


async def set_source_status(
    db: AsyncSession,
    model: Any,
    source_id: str,
    status: str,
    *,
    synced_at: Optional[datetime] = None,
    full: bool = False,
) -> None:
    """Update an organization's or creator's sync bookkeeping and commit."""
    result = await db.execute(select(model).where(model.id == source_id))
    source = result.scalar_one_or_none()
    if source is None:
        logger.warning("Sync source %s %s vanished before status update", model.__name__, source_id)
        return
    source.sync_status = status
    if synced_at is not None:
        source.last_sync_at = synced_at
        if full:
            source.last_full_sync_at = synced_at
    await db.commit()


class CategoryCache:
    """Slug to category id lookup, loaded once per process."""

    def __init__(self):
        self._ids: Optional[Dict[str, str]] = None

    @property
    def loaded(self) -> bool:
        return self._ids is not None

    async def load(self, db: AsyncSession) -> None:
        if self._ids is not None:
            return
        result = await db.execute(select(Category))
        self._ids = {category.slug: category.id for category in result.scalars().all()}
        logger.info("Loaded %s categories into cache", len(self._ids))

    def get(self, slug: str) -> Optional[str]:
        if self._ids is None:
            raise RuntimeError("Category cache used before load()")
        return self._ids.get(slug)

    def clear(self) -> None:
        self._ids = None


category_cache = CategoryCache()
