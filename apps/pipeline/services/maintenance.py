"""Maintenance cleanup: duplicate removal and stale sync job expiry."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.promoted_video import PromotedVideo
from models.staged_video import StagedVideo
from models.sync_job import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_IN_PROGRESS,
    JOB_STATUS_QUEUED,
    JOB_TYPE_CLEANUP,
    SyncJobRecord,
)
from services.catalog_store import finish_sync_job, start_sync_job, transition_sync_job, utc_now

logger = logging.getLogger(__name__)

SCOPE_DUPLICATES = "duplicates"
SCOPE_STALE = "stale"
SCOPE_ALL = "all"
CLEANUP_SCOPES = (SCOPE_DUPLICATES, SCOPE_STALE, SCOPE_ALL)

STALE_RUN_MESSAGE = "Run interrupted"


async def remove_duplicates(db: AsyncSession, model: Any, dry_run: bool = False) -> int:
    """Keep the earliest row per external_video_id and delete the rest."""
    groups = await db.execute(
        select(model.external_video_id)
        .group_by(model.external_video_id)
        .having(func.count(model.id) > 1)
    )
    duplicate_keys = [row[0] for row in groups.all()]

    doomed: List[str] = []
    for external_id in duplicate_keys:
        rows = await db.execute(
            select(model.id)
            .where(model.external_video_id == external_id)
            .order_by(model.created_at.asc(), model.id.asc())
        )
        ids = [row[0] for row in rows.all()]
        doomed.extend(ids[1:])

    if doomed and not dry_run:
        await db.execute(delete(model).where(model.id.in_(doomed)))
        await db.commit()
    return len(doomed)


async def expire_stale_sync_jobs(
    db: AsyncSession,
    max_age_minutes: Optional[int] = None,
    dry_run: bool = False,
    exclude_job_id: Optional[str] = None,
) -> int:
    """Fail sync jobs left queued or running after a worker died."""
    age = settings.STALE_SYNC_JOB_MINUTES if max_age_minutes is None else max_age_minutes
    cutoff = utc_now() - timedelta(minutes=max(int(age), 1))
    query = select(SyncJobRecord).where(
        SyncJobRecord.status.in_((JOB_STATUS_QUEUED, JOB_STATUS_IN_PROGRESS)),
        SyncJobRecord.created_at < cutoff,
    )
    if exclude_job_id:
        query = query.where(SyncJobRecord.id != exclude_job_id)
    jobs = (await db.execute(query)).scalars().all()

    if jobs and not dry_run:
        for job in jobs:
            transition_sync_job(job, JOB_STATUS_FAILED)
            job.errors = list(job.errors or []) + [STALE_RUN_MESSAGE]
        await db.commit()
    return len(jobs)


async def run_cleanup(
    scope: str = SCOPE_ALL,
    dry_run: bool = False,
    triggered_by: str = "scheduler",
) -> Dict[str, Any]:
    """Run the requested cleanup scope. Dry runs report counts and write nothing."""
    if scope not in CLEANUP_SCOPES:
        raise ValueError(f"Unknown cleanup scope: {scope}")

    job_id = None
    if not dry_run:
        async with async_session_maker() as db:
            job_id = await start_sync_job(db, JOB_TYPE_CLEANUP, triggered_by)

    results = {"staged_duplicates": 0, "promoted_duplicates": 0, "stale_jobs": 0}
    try:
        async with async_session_maker() as db:
            if scope in (SCOPE_DUPLICATES, SCOPE_ALL):
                results["staged_duplicates"] = await remove_duplicates(db, StagedVideo, dry_run)
                results["promoted_duplicates"] = await remove_duplicates(db, PromotedVideo, dry_run)
            if scope in (SCOPE_STALE, SCOPE_ALL):
                results["stale_jobs"] = await expire_stale_sync_jobs(
                    db,
                    dry_run=dry_run,
                    exclude_job_id=job_id,
                )
    except Exception as exc:
        if job_id:
            async with async_session_maker() as db:
                await finish_sync_job(db, job_id, JOB_STATUS_FAILED, errors=[str(exc)])
        raise

    removed = results["staged_duplicates"] + results["promoted_duplicates"]
    logger.info(
        "%s %s duplicates, %s stale sync jobs",
        "Would remove" if dry_run else "Removed",
        removed,
        results["stale_jobs"],
    )
    if job_id:
        async with async_session_maker() as db:
            await finish_sync_job(
                db,
                job_id,
                JOB_STATUS_COMPLETED,
                videos_found=removed,
                videos_updated=results["stale_jobs"],
            )
    return {"job_id": job_id, "scope": scope, "dry_run": dry_run, **results}
