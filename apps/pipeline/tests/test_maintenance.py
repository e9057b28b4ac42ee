from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.future import select

from models.organization import Organization
from models.promoted_video import PromotedVideo
from models.staged_video import StagedVideo
from models.sync_job import SyncJobRecord
from services.catalog_store import InvalidSyncJobTransition, transition_sync_job
from services.maintenance import run_cleanup

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def _drop_unique_keys(session_maker):
    """Recreate the external id indexes as non-unique, as on a database migrated before the constraint."""
    async with session_maker() as db:
        for table in ("staged_videos", "promoted_videos"):
            await db.execute(text(f"DROP INDEX ix_{table}_external_video_id"))
            await db.execute(text(f"CREATE INDEX ix_{table}_external_video_id ON {table} (external_video_id)"))
        await db.commit()


async def _seed_duplicates(session_maker):
    await _drop_unique_keys(session_maker)
    async with session_maker() as db:
        db.add(Organization(id="org-1", name="Band"))
        for index, video_id in enumerate(["sv-c", "sv-a", "sv-b"]):
            db.add(
                StagedVideo(
                    id=video_id,
                    external_video_id="dup",
                    title="Dup",
                    created_at=BASE_TIME + timedelta(minutes=index),
                )
            )
        db.add(StagedVideo(id="sv-unique", external_video_id="unique", title="Unique", created_at=BASE_TIME))
        for index, video_id in enumerate(["pv-z", "pv-y"]):
            db.add(
                PromotedVideo(
                    id=video_id,
                    external_video_id="dup",
                    title="Dup",
                    organization_id="org-1",
                    created_at=BASE_TIME + timedelta(minutes=index),
                )
            )
        await db.commit()


async def _ids(session_maker, model):
    async with session_maker() as db:
        return sorted(row.id for row in (await db.execute(select(model))).scalars().all())


@pytest.mark.asyncio
async def test_dry_run_reports_without_mutating(session_maker):
    await _seed_duplicates(session_maker)

    result = await run_cleanup(scope="duplicates", dry_run=True)

    assert result["staged_duplicates"] == 2
    assert result["promoted_duplicates"] == 1
    assert result["job_id"] is None
    assert await _ids(session_maker, StagedVideo) == ["sv-a", "sv-b", "sv-c", "sv-unique"]
    assert await _ids(session_maker, PromotedVideo) == ["pv-y", "pv-z"]
    assert await _ids(session_maker, SyncJobRecord) == []


@pytest.mark.asyncio
async def test_duplicates_keep_earliest_row(session_maker):
    await _seed_duplicates(session_maker)

    result = await run_cleanup(scope="duplicates")

    assert result["staged_duplicates"] == 2
    assert result["promoted_duplicates"] == 1
    assert await _ids(session_maker, StagedVideo) == ["sv-c", "sv-unique"]
    assert await _ids(session_maker, PromotedVideo) == ["pv-z"]

    async with session_maker() as db:
        job = (await db.execute(select(SyncJobRecord))).scalar_one()
    assert job.job_type == "CLEANUP"
    assert job.status == "COMPLETED"
    assert job.videos_found == 3


@pytest.mark.asyncio
async def test_duplicate_ties_on_created_at_break_by_id(session_maker):
    await _drop_unique_keys(session_maker)
    async with session_maker() as db:
        for video_id in ("sv-2", "sv-1", "sv-3"):
            db.add(StagedVideo(id=video_id, external_video_id="tie", title="Tie", created_at=BASE_TIME))
        await db.commit()

    await run_cleanup(scope="duplicates")

    assert await _ids(session_maker, StagedVideo) == ["sv-1"]


@pytest.mark.asyncio
async def test_stale_sync_jobs_are_expired(session_maker):
    now = datetime.now(timezone.utc)
    async with session_maker() as db:
        db.add_all(
            [
                SyncJobRecord(
                    id="job-stale",
                    job_type="BACKFILL_ORGANIZATIONS",
                    status="IN_PROGRESS",
                    created_at=now - timedelta(hours=7),
                    errors=[],
                ),
                SyncJobRecord(
                    id="job-queued",
                    job_type="MATCH_VIDEOS",
                    status="QUEUED",
                    created_at=now - timedelta(hours=8),
                ),
                SyncJobRecord(
                    id="job-fresh",
                    job_type="PROMOTE_VIDEOS",
                    status="IN_PROGRESS",
                    created_at=now - timedelta(minutes=5),
                ),
                SyncJobRecord(
                    id="job-done",
                    job_type="CLEANUP",
                    status="COMPLETED",
                    created_at=now - timedelta(days=2),
                ),
            ]
        )
        await db.commit()

    dry = await run_cleanup(scope="stale", dry_run=True)
    assert dry["stale_jobs"] == 2

    result = await run_cleanup(scope="stale")
    assert result["stale_jobs"] == 2

    async with session_maker() as db:
        jobs = {job.id: job for job in (await db.execute(select(SyncJobRecord))).scalars().all()}
    assert jobs["job-stale"].status == "FAILED"
    assert jobs["job-stale"].errors == ["Run interrupted"]
    assert jobs["job-queued"].status == "FAILED"
    assert jobs["job-fresh"].status == "IN_PROGRESS"
    assert jobs["job-done"].status == "COMPLETED"
    assert jobs[result["job_id"]].status == "COMPLETED"


@pytest.mark.asyncio
async def test_unknown_scope_is_rejected(session_maker):
    with pytest.raises(ValueError):
        await run_cleanup(scope="everything")


def test_sync_job_transitions_never_reverse():
    job = SyncJobRecord(id="job-1", job_type="CLEANUP", status="QUEUED")
    transition_sync_job(job, "IN_PROGRESS")
    assert job.started_at is not None
    transition_sync_job(job, "COMPLETED")
    assert job.completed_at is not None

    with pytest.raises(InvalidSyncJobTransition):
        transition_sync_job(job, "IN_PROGRESS")
    with pytest.raises(InvalidSyncJobTransition):
        transition_sync_job(SyncJobRecord(id="job-2", job_type="CLEANUP", status="FAILED"), "COMPLETED")
