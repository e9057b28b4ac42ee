"""Refresh view and like counts of catalog videos."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from ingestion.youtube import (
    MAX_IDS_PER_DETAILS_CALL,
    ProviderError,
    QuotaExceededError,
    YouTubeClient,
    get_shared_client,
)
from models.promoted_video import PromotedVideo
from models.staged_video import StagedVideo
from models.sync_job import JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_TYPE_UPDATE_STATS
from services.catalog_store import finish_sync_job, start_sync_job, utc_now
from services.channel_sync import QUOTA_EXCEEDED_MESSAGE, QUOTA_LIMIT_MESSAGE, quota_halt_reached

logger = logging.getLogger(__name__)


async def run_stats_refresh(
    batch_size: Optional[int] = None,
    triggered_by: str = "scheduler",
    client: Optional[YouTubeClient] = None,
) -> Dict[str, Any]:
    """Update counts for the least recently refreshed catalog videos."""
    client = client or get_shared_client()
    size = settings.STATS_REFRESH_BATCH_SIZE if batch_size is None else int(batch_size)
    errors: List[str] = []
    refreshed = 0

    async with async_session_maker() as db:
        job_id = await start_sync_job(db, JOB_TYPE_UPDATE_STATS, triggered_by)
        rows = await db.execute(
            select(PromotedVideo.external_video_id)
            .order_by(PromotedVideo.stats_refreshed_at.asc().nullsfirst(), PromotedVideo.created_at.asc())
            .limit(max(size, 0))
        )
        external_ids = [row[0] for row in rows.all()]

    try:
        async with async_session_maker() as db:
            for start in range(0, len(external_ids), MAX_IDS_PER_DETAILS_CALL):
                if quota_halt_reached(client):
                    errors.append(QUOTA_LIMIT_MESSAGE)
                    break
                chunk = external_ids[start:start + MAX_IDS_PER_DETAILS_CALL]
                try:
                    records = await asyncio.to_thread(client.fetch_video_details, chunk)
                except QuotaExceededError:
                    errors.append(QUOTA_EXCEEDED_MESSAGE)
                    break
                except ProviderError as exc:
                    logger.error("Stats refresh failed for a batch of %s videos: %s", len(chunk), exc)
                    errors.append(f"Failed to refresh {len(chunk)} videos: {exc}")
                    continue

                now = utc_now()
                for record in records:
                    counts = {"view_count": record.view_count, "like_count": record.like_count}
                    await db.execute(
                        update(PromotedVideo)
                        .where(PromotedVideo.external_video_id == record.external_video_id)
                        .values(stats_refreshed_at=now, **counts)
                    )
                    await db.execute(
                        update(StagedVideo)
                        .where(StagedVideo.external_video_id == record.external_video_id)
                        .values(last_synced_at=now, **counts)
                    )
                    refreshed += 1
                # Videos the provider no longer returns still rotate to the back.
                await db.execute(
                    update(PromotedVideo)
                    .where(
                        PromotedVideo.external_video_id.in_(chunk),
                        PromotedVideo.stats_refreshed_at.is_(None) | (PromotedVideo.stats_refreshed_at < now),
                    )
                    .values(stats_refreshed_at=now)
                )
                await db.commit()
    except Exception as exc:
        errors.append(str(exc))
        async with async_session_maker() as db:
            await finish_sync_job(db, job_id, JOB_STATUS_FAILED, videos_found=len(external_ids), errors=errors)
        raise

    async with async_session_maker() as db:
        await finish_sync_job(
            db,
            job_id,
            JOB_STATUS_COMPLETED,
            videos_found=len(external_ids),
            videos_updated=refreshed,
            errors=errors,
        )
    logger.info("Refreshed stats for %s of %s catalog videos", refreshed, len(external_ids))
    return {"job_id": job_id, "selected": len(external_ids), "refreshed": refreshed, "errors": errors}
