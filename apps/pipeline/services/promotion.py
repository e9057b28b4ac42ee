"""Promote matched staged videos into the production catalog."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from classification.engine import classify
from classification.rules import get_rule_table
from database import async_session_maker
from models.promoted_video import PromotedVideo
from models.staged_video import StagedVideo
from models.sync_job import JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_TYPE_PROMOTE_VIDEOS
from services.catalog_store import category_cache, finish_sync_job, start_sync_job, utc_now
from services.notifications import notify_new_video

logger = logging.getLogger(__name__)

HIDDEN_BELOW_SCORE = 30

Notifier = Callable[[str, str, str], Any]


async def catalog_has_video(db: AsyncSession, external_video_id: str) -> bool:
    existing = await db.execute(
        select(PromotedVideo.id).where(PromotedVideo.external_video_id == external_video_id).limit(1)
    )
    return existing.first() is not None


def _snapshot(video: StagedVideo) -> Dict[str, Any]:
    return {column.name: getattr(video, column.name) for column in StagedVideo.__table__.columns}


def build_promoted_video(staged: Dict[str, Any], rules=None) -> PromotedVideo:
    """Classify a staged row and build its catalog entry."""
    result = classify(
        staged["title"] or "",
        staged["description"] or "",
        staged["provider_tags"] or [],
        staged["view_count"] or 0,
        rules,
    )
    return PromotedVideo(
        external_video_id=staged["external_video_id"],
        title=staged["title"],
        description=staged["description"],
        thumbnail_url=staged["thumbnail_url"],
        duration_seconds=staged["duration_seconds"] or 0,
        published_at=staged["published_at"],
        view_count=staged["view_count"] or 0,
        like_count=staged["like_count"] or 0,
        organization_id=staged["organization_id"],
        opponent_organization_id=staged["opponent_organization_id"],
        category_id=category_cache.get(result.category_slug),
        event_name=result.event.name,
        event_year=result.event.year,
        tags=result.tags,
        quality_score=result.quality_score,
        is_hidden=result.quality_score < HIDDEN_BELOW_SCORE,
    )


async def run_promotion(
    triggered_by: str = "scheduler",
    limit: Optional[int] = None,
    notifier: Optional[Notifier] = None,
) -> Dict[str, Any]:
    """
    Promote every matched, unpromoted staged video.

    A staged row whose external id is already in the catalog is only marked
    promoted. Notifications go out after the promotion is committed and never
    fail it.
    """
    notifier = notifier or notify_new_video
    rules = get_rule_table()
    promoted_count = 0
    already_promoted = 0
    errors: List[str] = []

    async with async_session_maker() as db:
        job_id = await start_sync_job(db, JOB_TYPE_PROMOTE_VIDEOS, triggered_by)

    candidates: List[Dict[str, Any]] = []
    try:
        async with async_session_maker() as db:
            await category_cache.load(db)
            query = (
                select(StagedVideo)
                .where(StagedVideo.organization_id.isnot(None), StagedVideo.is_promoted.is_(False))
                .order_by(StagedVideo.created_at.asc())
            )
            if limit:
                query = query.limit(int(limit))
            candidates = [_snapshot(video) for video in (await db.execute(query)).scalars().all()]
            logger.info("Promoting %s staged videos", len(candidates))

            for staged in candidates:
                external_id = staged["external_video_id"]
                mark_promoted = (
                    update(StagedVideo)
                    .where(StagedVideo.id == staged["id"])
                    .values(is_promoted=True, promoted_at=utc_now())
                )
                try:
                    if await catalog_has_video(db, external_id):
                        await db.execute(mark_promoted)
                        await db.commit()
                        already_promoted += 1
                        continue

                    promoted = build_promoted_video(staged, rules)
                    db.add(promoted)
                    await db.execute(mark_promoted)
                    await db.commit()
                except IntegrityError as exc:
                    await db.rollback()
                    if not await catalog_has_video(db, external_id):
                        logger.exception("Failed to promote %s", external_id)
                        errors.append(f"Failed to promote {external_id}: {exc}")
                        continue
                    # A concurrent run promoted the same external id first.
                    logger.info("%s was promoted concurrently, marking staged row only", external_id)
                    await db.execute(mark_promoted)
                    await db.commit()
                    already_promoted += 1
                    continue
                except Exception as exc:
                    await db.rollback()
                    logger.exception("Failed to promote %s", external_id)
                    errors.append(f"Failed to promote {external_id}: {exc}")
                    continue

                promoted_count += 1
                try:
                    await asyncio.to_thread(notifier, promoted.organization_id, promoted.id, promoted.title)
                except Exception:
                    logger.exception("New-video notification failed for %s", external_id)
    except Exception as exc:
        errors.append(str(exc))
        async with async_session_maker() as db:
            await finish_sync_job(
                db,
                job_id,
                JOB_STATUS_FAILED,
                videos_found=len(candidates),
                videos_added=promoted_count,
                errors=errors,
            )
        raise

    async with async_session_maker() as db:
        await finish_sync_job(
            db,
            job_id,
            JOB_STATUS_COMPLETED,
            videos_found=len(candidates),
            videos_added=promoted_count,
            videos_updated=already_promoted,
            errors=errors,
        )
    logger.info(
        "Promotion done: %s promoted, %s already in catalog, %s errors",
        promoted_count,
        already_promoted,
        len(errors),
    )
    return {
        "job_id": job_id,
        "candidates": len(candidates),
        "promoted": promoted_count,
        "already_promoted": already_promoted,
        "errors": errors,
    }
