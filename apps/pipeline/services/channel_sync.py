"""
Discovery and backfill of channel uploads into staged videos.

One algorithm serves both organizations (official band channels) and
creators (independent channels filming many bands); a SourceKind picks the
model, the staged-video link column and the sync job type.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from ingestion.youtube import (
    MAX_IDS_PER_DETAILS_CALL,
    ProviderError,
    QuotaExceededError,
    RateLimitedError,
    YouTubeClient,
    get_shared_client,
)
from models.creator import Creator
from models.organization import Organization
from models.sync_job import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_TYPE_BACKFILL_CREATORS,
    JOB_TYPE_BACKFILL_ORGANIZATIONS,
    JOB_TYPE_FULL_SYNC,
    SYNC_STATUS_COMPLETED,
    SYNC_STATUS_FAILED,
    SYNC_STATUS_IN_PROGRESS,
)
from services.catalog_store import (
    UPSERT_ADDED,
    as_utc,
    finish_sync_job,
    parse_provider_timestamp,
    save_staged_video,
    set_source_status,
    start_sync_job,
    utc_now,
)

logger = logging.getLogger(__name__)

MODE_INCREMENTAL = "incremental"
MODE_FULL = "full"

QUOTA_LIMIT_MESSAGE = "Quota limit reached"
QUOTA_EXCEEDED_MESSAGE = "YouTube API quota exceeded"


@dataclass(frozen=True)
class SourceKind:
    name: str
    model: Any
    link_column: str
    job_type: str


ORGANIZATION = SourceKind("organization", Organization, "organization_id", JOB_TYPE_BACKFILL_ORGANIZATIONS)
CREATOR = SourceKind("creator", Creator, "creator_id", JOB_TYPE_BACKFILL_CREATORS)
SOURCE_KINDS = {kind.name: kind for kind in (ORGANIZATION, CREATOR)}


@dataclass
class SyncSource:
    """Detached snapshot of one organization or creator."""

    id: str
    name: str
    channel_id: Optional[str]
    last_sync_at: Optional[datetime]


@dataclass
class SyncResult:
    job_id: str
    sources_synced: int = 0
    sources_failed: int = 0
    videos_found: int = 0
    videos_added: int = 0
    videos_updated: int = 0
    videos_skipped: int = 0
    halted: bool = False
    errors: List[str] = field(default_factory=list)

    def counters(self) -> Dict[str, Any]:
        return {
            "videos_found": self.videos_found,
            "videos_added": self.videos_added,
            "videos_updated": self.videos_updated,
            "errors": self.errors,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def quota_halt_reached(client: YouTubeClient) -> bool:
    """True once daily usage crosses the configured share of the budget."""
    usage = client.quota_usage()
    threshold = usage["limit"] * settings.YOUTUBE_QUOTA_HALT_RATIO
    return usage["used"] >= threshold


async def _load_sources(
    db: AsyncSession,
    kind: SourceKind,
    organization_id: Optional[str] = None,
) -> List[SyncSource]:
    model = kind.model
    query = select(model).where(model.is_active.is_(True), model.external_channel_id.isnot(None))
    if organization_id and kind is ORGANIZATION:
        query = query.where(model.id == organization_id)
    result = await db.execute(query.order_by(model.name.asc()))
    return [
        SyncSource(
            id=row.id,
            name=row.name,
            channel_id=row.external_channel_id,
            last_sync_at=as_utc(row.last_sync_at),
        )
        for row in result.scalars().all()
    ]


async def _collect_upload_ids(
    client: YouTubeClient,
    playlist_id: str,
    cutoff: Optional[datetime],
) -> List[str]:
    video_ids: List[str] = []
    seen = set()
    page_token = None
    while True:
        page = await asyncio.to_thread(client.list_playlist_page, playlist_id, page_token)
        for item in page.items:
            if item.video_id not in seen:
                seen.add(item.video_id)
                video_ids.append(item.video_id)

        page_token = page.next_page_token
        if not page_token:
            break
        if cutoff is not None and page.items:
            published = [parse_provider_timestamp(item.published_at) for item in page.items]
            if all(value is not None and value < cutoff for value in published):
                break
    return video_ids


async def store_video_batch(
    db: AsyncSession,
    client: YouTubeClient,
    video_ids: List[str],
    link: Dict[str, Any],
    result: SyncResult,
) -> None:
    """
    Fetch details in chunks and upsert each video, committing per item.

    A provider error on one details call skips that chunk and the rest of the
    batch continues; quota exhaustion and rate limiting propagate to the caller.
    """
    for start in range(0, len(video_ids), MAX_IDS_PER_DETAILS_CALL):
        chunk = video_ids[start:start + MAX_IDS_PER_DETAILS_CALL]
        try:
            records = await asyncio.to_thread(client.fetch_video_details, chunk)
        except ProviderError as exc:
            logger.error("Details fetch failed for %s videos starting at %s: %s", len(chunk), chunk[0], exc)
            result.videos_skipped += len(chunk)
            result.errors.append(f"Failed to fetch details for {len(chunk)} videos: {exc}")
            await asyncio.sleep(settings.DISCOVERY_BATCH_DELAY_SECONDS)
            continue
        for record in records:
            try:
                outcome = await save_staged_video(db, record, link)
            except Exception as exc:
                await db.rollback()
                logger.exception("Failed to store staged video %s", record.external_video_id)
                result.videos_skipped += 1
                result.errors.append(f"Failed to store {record.external_video_id}: {exc}")
                continue
            if outcome == UPSERT_ADDED:
                result.videos_added += 1
            else:
                result.videos_updated += 1
        await asyncio.sleep(settings.DISCOVERY_BATCH_DELAY_SECONDS)


async def _sync_source(
    db: AsyncSession,
    kind: SourceKind,
    source: SyncSource,
    mode: str,
    client: YouTubeClient,
    result: SyncResult,
) -> None:
    full = mode == MODE_FULL or source.last_sync_at is None
    await set_source_status(db, kind.model, source.id, SYNC_STATUS_IN_PROGRESS)

    playlist_id = await asyncio.to_thread(client.get_uploads_playlist_id, source.channel_id)
    if not playlist_id:
        logger.warning("No uploads playlist for %s %s (%s), skipping", kind.name, source.name, source.channel_id)
        await set_source_status(db, kind.model, source.id, SYNC_STATUS_COMPLETED)
        return

    cutoff = None
    if not full:
        cutoff = source.last_sync_at - timedelta(hours=settings.INCREMENTAL_OVERLAP_HOURS)

    video_ids = await _collect_upload_ids(client, playlist_id, cutoff)
    result.videos_found += len(video_ids)
    logger.info(
        "Found %s uploads for %s %s (%s mode)",
        len(video_ids),
        kind.name,
        source.name,
        MODE_FULL if full else MODE_INCREMENTAL,
    )

    await store_video_batch(db, client, video_ids, {kind.link_column: source.id}, result)
    await set_source_status(
        db,
        kind.model,
        source.id,
        SYNC_STATUS_COMPLETED,
        synced_at=utc_now(),
        full=full,
    )
    result.sources_synced += 1


async def sync_sources(
    kind: SourceKind,
    sources: List[SyncSource],
    mode: str,
    client: YouTubeClient,
    result: SyncResult,
) -> None:
    """
    Process sources one at a time within the daily quota.

    Quota exhaustion halts the loop (result.halted). A provider failure, or a
    rate limit that outlasted the client retries, only fails its source; the
    next scheduled run picks it up again. Anything else fails the source and
    propagates.
    """
    for index, source in enumerate(sources):
        if result.halted:
            return
        if index > 0:
            await asyncio.sleep(settings.DISCOVERY_SOURCE_DELAY_SECONDS)
        if quota_halt_reached(client):
            logger.warning("Quota limit reached before %s %s, stopping run", kind.name, source.name)
            result.errors.append(QUOTA_LIMIT_MESSAGE)
            result.halted = True
            return

        async with async_session_maker() as db:
            try:
                await _sync_source(db, kind, source, mode, client, result)
            except QuotaExceededError:
                await db.rollback()
                result.errors.append(QUOTA_EXCEEDED_MESSAGE)
                result.sources_failed += 1
                result.halted = True
                await set_source_status(db, kind.model, source.id, SYNC_STATUS_FAILED)
                return
            except (ProviderError, RateLimitedError) as exc:
                await db.rollback()
                logger.error("Failed to sync %s %s: %s", kind.name, source.name, exc)
                result.errors.append(f"Failed to sync {source.name}: {exc}")
                result.sources_failed += 1
                await set_source_status(db, kind.model, source.id, SYNC_STATUS_FAILED)
            except Exception as exc:
                await db.rollback()
                logger.exception("Unexpected failure syncing %s %s", kind.name, source.name)
                result.errors.append(f"Failed to sync {source.name}: {exc}")
                result.sources_failed += 1
                await set_source_status(db, kind.model, source.id, SYNC_STATUS_FAILED)
                raise


async def discover_by_keyword(client: YouTubeClient, result: SyncResult) -> None:
    """Search for videos of active organizations that have no known channel."""
    async with async_session_maker() as db:
        rows = await db.execute(
            select(Organization)
            .where(Organization.is_active.is_(True), Organization.external_channel_id.is_(None))
            .order_by(Organization.name.asc())
        )
        targets = [(org.id, org.name) for org in rows.scalars().all()]

    for index, (organization_id, name) in enumerate(targets):
        if result.halted:
            return
        if index > 0:
            await asyncio.sleep(settings.DISCOVERY_SOURCE_DELAY_SECONDS)
        if quota_halt_reached(client):
            result.errors.append(QUOTA_LIMIT_MESSAGE)
            result.halted = True
            return

        async with async_session_maker() as db:
            try:
                page = await asyncio.to_thread(client.search_videos, f'"{name}" marching band')
                result.videos_found += len(page.ids)
                await store_video_batch(db, client, page.ids, {"organization_id": organization_id}, result)
            except QuotaExceededError:
                result.errors.append(QUOTA_EXCEEDED_MESSAGE)
                result.halted = True
                return
            except (ProviderError, RateLimitedError) as exc:
                logger.error("Keyword discovery failed for %s: %s", name, exc)
                result.errors.append(f"Failed to sync {name}: {exc}")


async def _finish(job_id: str, status: str, result: SyncResult) -> None:
    async with async_session_maker() as db:
        await finish_sync_job(db, job_id, status, **result.counters())


async def run_backfill(
    kind: SourceKind,
    mode: str = MODE_INCREMENTAL,
    organization_id: Optional[str] = None,
    triggered_by: str = "scheduler",
    client: Optional[YouTubeClient] = None,
) -> Dict[str, Any]:
    """Backfill one source kind, writing a single sync job record for the run."""
    client = client or get_shared_client()
    scoped_org = organization_id if kind is ORGANIZATION else None

    async with async_session_maker() as db:
        job_id = await start_sync_job(db, kind.job_type, triggered_by, scoped_org)
        sources = await _load_sources(db, kind, scoped_org)

    if organization_id and not sources:
        logger.warning("Organization %s is inactive or has no channel, nothing to sync", organization_id)

    result = SyncResult(job_id=job_id)
    try:
        await sync_sources(kind, sources, mode, client, result)
    except Exception:
        await _finish(job_id, JOB_STATUS_FAILED, result)
        raise

    await _finish(job_id, JOB_STATUS_COMPLETED, result)
    logger.info(
        "%s backfill done: %s sources, %s added, %s updated, %s errors",
        kind.name,
        result.sources_synced,
        result.videos_added,
        result.videos_updated,
        len(result.errors),
    )
    return result.to_dict()


async def run_full_resync(
    triggered_by: str = "scheduler",
    client: Optional[YouTubeClient] = None,
) -> Dict[str, Any]:
    """Weekly resync: every channel in full mode, then keyword discovery."""
    client = client or get_shared_client()

    async with async_session_maker() as db:
        job_id = await start_sync_job(db, JOB_TYPE_FULL_SYNC, triggered_by)
        organizations = await _load_sources(db, ORGANIZATION)
        creators = await _load_sources(db, CREATOR)

    result = SyncResult(job_id=job_id)
    try:
        await sync_sources(ORGANIZATION, organizations, MODE_FULL, client, result)
        await sync_sources(CREATOR, creators, MODE_FULL, client, result)
        await discover_by_keyword(client, result)
    except Exception:
        await _finish(job_id, JOB_STATUS_FAILED, result)
        raise

    await _finish(job_id, JOB_STATUS_COMPLETED, result)
    return result.to_dict()
