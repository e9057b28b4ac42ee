from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from conftest import http_error, make_client
from ingestion.youtube import VideoRecord
from models.creator import Creator
from models.organization import Organization
from models.staged_video import StagedVideo
from models.sync_job import SyncJobRecord
from services.catalog_store import find_staged_video, save_staged_video
from services.channel_sync import CREATOR, MODE_FULL, ORGANIZATION, run_backfill, run_full_resync


async def _add(session_maker, *rows):
    async with session_maker() as db:
        db.add_all(rows)
        await db.commit()


async def _count_staged(session_maker) -> int:
    async with session_maker() as db:
        return (await db.execute(select(func.count(StagedVideo.id)))).scalar_one()


async def _job(session_maker, job_id) -> SyncJobRecord:
    async with session_maker() as db:
        return (await db.execute(select(SyncJobRecord).where(SyncJobRecord.id == job_id))).scalar_one()


async def _org(session_maker, org_id) -> Organization:
    async with session_maker() as db:
        return (await db.execute(select(Organization).where(Organization.id == org_id))).scalar_one()


@pytest.mark.asyncio
async def test_pagination_accounting_for_120_uploads(session_maker, youtube_service, youtube_client):
    youtube_service.add_channel("UC-big", 120, "big")
    await _add(session_maker, Organization(id="org-big", name="Big Band", external_channel_id="UC-big"))

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert youtube_client.quota_usage()["used"] == 7
    assert result["videos_found"] == 120
    assert result["videos_added"] == 120
    assert result["videos_updated"] == 0
    assert await _count_staged(session_maker) == 120

    job = await _job(session_maker, result["job_id"])
    assert job.job_type == "BACKFILL_ORGANIZATIONS"
    assert job.status == "COMPLETED"
    assert job.videos_added == 120
    assert job.errors == []
    assert job.started_at is not None and job.completed_at is not None

    org = await _org(session_maker, "org-big")
    assert org.sync_status == "COMPLETED"
    assert org.last_sync_at is not None
    assert org.last_full_sync_at is not None

    async with session_maker() as db:
        linked = (
            await db.execute(select(func.count(StagedVideo.id)).where(StagedVideo.organization_id == "org-big"))
        ).scalar_one()
    assert linked == 120


@pytest.mark.asyncio
async def test_rerunning_discovery_is_idempotent(session_maker, youtube_service, youtube_client):
    youtube_service.add_channel("UC-band", 60, "band")
    await _add(session_maker, Organization(id="org-1", name="Band", external_channel_id="UC-band"))

    await run_backfill(ORGANIZATION, client=youtube_client)
    youtube_service.videos_by_id["band-000"]["statistics"]["viewCount"] = "999"
    second = await run_backfill(ORGANIZATION, mode=MODE_FULL, client=youtube_client)

    assert second["videos_added"] == 0
    assert second["videos_updated"] == 60
    assert await _count_staged(session_maker) == 60
    async with session_maker() as db:
        refreshed = (
            await db.execute(select(StagedVideo).where(StagedVideo.external_video_id == "band-000"))
        ).scalar_one()
    assert refreshed.view_count == 999


@pytest.mark.asyncio
async def test_incremental_mode_stops_paging_at_already_synced_uploads(session_maker, youtube_service, youtube_client):
    youtube_service.add_channel("UC-band", 120, "band", published_at="2024-01-01T00:00:00Z")
    await _add(
        session_maker,
        Organization(
            id="org-1",
            name="Band",
            external_channel_id="UC-band",
            last_sync_at=datetime.now(timezone.utc) - timedelta(hours=1),
        ),
    )

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    # channel resolve + one playlist page + one detail batch
    assert youtube_client.quota_usage()["used"] == 3
    assert result["videos_found"] == 50
    org = await _org(session_maker, "org-1")
    assert org.last_full_sync_at is None


@pytest.mark.asyncio
async def test_quota_halt_before_source_seven(session_maker, youtube_service, youtube_client):
    orgs = []
    for index in range(1, 11):
        channel_id = f"UC-{index:02d}"
        youtube_service.add_channel(channel_id, 2, f"v{index:02d}")
        orgs.append(Organization(id=f"org-{index:02d}", name=f"Band {index:02d}", external_channel_id=channel_id))
    await _add(session_maker, *orgs)

    def exhaust_budget():
        youtube_client.quota.units_used_today = 9500

    youtube_service.playlist_hooks["UU-UC-06"] = exhaust_budget

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert result["errors"] == ["Quota limit reached"]
    assert result["sources_synced"] == 6
    assert result["videos_added"] == 12
    job = await _job(session_maker, result["job_id"])
    assert job.status == "COMPLETED"
    for index in range(1, 7):
        assert (await _org(session_maker, f"org-{index:02d}")).sync_status == "COMPLETED"
    for index in range(7, 11):
        untouched = await _org(session_maker, f"org-{index:02d}")
        assert untouched.sync_status == "PENDING"
        assert untouched.last_sync_at is None


@pytest.mark.asyncio
async def test_missing_uploads_playlist_skips_source(session_maker, youtube_service, youtube_client):
    youtube_service.uploads_by_channel["UC-empty"] = None
    youtube_service.add_channel("UC-ok", 2, "ok")
    await _add(
        session_maker,
        Organization(id="org-a", name="A Band", external_channel_id="UC-empty"),
        Organization(id="org-b", name="B Band", external_channel_id="UC-ok"),
    )

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert result["errors"] == []
    assert result["videos_added"] == 2
    assert (await _job(session_maker, result["job_id"])).status == "COMPLETED"


@pytest.mark.asyncio
async def test_provider_error_fails_only_that_source(session_maker, youtube_service, youtube_client):
    youtube_service.channel_errors["UC-bad"] = http_error(404, "channelNotFound", message="Channel not found")
    youtube_service.add_channel("UC-ok", 3, "ok")
    await _add(
        session_maker,
        Organization(id="org-a", name="A Band", external_channel_id="UC-bad"),
        Organization(id="org-b", name="B Band", external_channel_id="UC-ok"),
    )

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert result["errors"] == ["Failed to sync A Band: Channel not found"]
    assert result["videos_added"] == 3
    assert (await _org(session_maker, "org-a")).sync_status == "FAILED"
    assert (await _org(session_maker, "org-b")).sync_status == "COMPLETED"
    assert (await _job(session_maker, result["job_id"])).status == "COMPLETED"


@pytest.mark.asyncio
async def test_provider_quota_exhaustion_stops_the_run(session_maker, youtube_service, youtube_client):
    youtube_service.channel_errors["UC-a"] = http_error(403, "quotaExceeded")
    youtube_service.add_channel("UC-b", 3, "b")
    await _add(
        session_maker,
        Organization(id="org-a", name="A Band", external_channel_id="UC-a"),
        Organization(id="org-b", name="B Band", external_channel_id="UC-b"),
    )

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert result["errors"] == ["YouTube API quota exceeded"]
    assert result["videos_added"] == 0
    assert (await _org(session_maker, "org-a")).sync_status == "FAILED"
    assert (await _org(session_maker, "org-b")).sync_status == "PENDING"
    assert (await _job(session_maker, result["job_id"])).status == "COMPLETED"


@pytest.mark.asyncio
async def test_unexpected_failure_fails_run_and_propagates(session_maker, youtube_service, youtube_client):
    youtube_service.channel_errors["UC-a"] = RuntimeError("database on fire")
    await _add(session_maker, Organization(id="org-a", name="A Band", external_channel_id="UC-a"))

    with pytest.raises(RuntimeError):
        await run_backfill(ORGANIZATION, client=youtube_client)

    async with session_maker() as db:
        job = (await db.execute(select(SyncJobRecord))).scalar_one()
    assert job.status == "FAILED"
    assert job.errors == ["Failed to sync A Band: database on fire"]
    assert (await _org(session_maker, "org-a")).sync_status == "FAILED"


@pytest.mark.asyncio
async def test_per_item_failure_is_skipped(session_maker, youtube_service, youtube_client):
    youtube_service.add_channel("UC-a", 4, "a")
    await _add(session_maker, Organization(id="org-a", name="A Band", external_channel_id="UC-a"))

    async def flaky_save(db, record, link=None):
        if record.external_video_id == "a-002":
            raise RuntimeError("constraint violated")
        return await save_staged_video(db, record, link)

    with patch("services.channel_sync.save_staged_video", side_effect=flaky_save):
        result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert result["videos_added"] == 3
    assert result["videos_skipped"] == 1
    assert result["errors"] == ["Failed to store a-002: constraint violated"]
    assert (await _job(session_maker, result["job_id"])).status == "COMPLETED"
    assert await _count_staged(session_maker) == 3


@pytest.mark.asyncio
async def test_creator_backfill_links_creator_and_keeps_existing_owner(session_maker, youtube_service, youtube_client):
    youtube_service.add_channel("UC-org", 1, "shared")
    youtube_service.uploads_by_channel["UC-creator"] = "UU-UC-org"
    await _add(
        session_maker,
        Organization(id="org-a", name="A Band", external_channel_id="UC-org"),
        Creator(id="creator-1", name="Band Filmer", external_channel_id="UC-creator"),
    )

    await run_backfill(ORGANIZATION, client=youtube_client)
    result = await run_backfill(CREATOR, client=youtube_client)

    assert result["videos_updated"] == 1
    async with session_maker() as db:
        video = (await db.execute(select(StagedVideo))).scalar_one()
        job = (await db.execute(select(SyncJobRecord).where(SyncJobRecord.id == result["job_id"]))).scalar_one()
    assert video.organization_id == "org-a"
    assert video.creator_id == "creator-1"
    assert job.job_type == "BACKFILL_CREATORS"


@pytest.mark.asyncio
async def test_single_organization_backfill_is_scoped(session_maker, youtube_service, youtube_client):
    youtube_service.add_channel("UC-a", 2, "a")
    youtube_service.add_channel("UC-b", 2, "b")
    await _add(
        session_maker,
        Organization(id="org-a", name="A Band", external_channel_id="UC-a"),
        Organization(id="org-b", name="B Band", external_channel_id="UC-b"),
    )

    result = await run_backfill(ORGANIZATION, organization_id="org-b", triggered_by="manual", client=youtube_client)

    assert result["videos_added"] == 2
    job = await _job(session_maker, result["job_id"])
    assert job.organization_id == "org-b"
    assert job.triggered_by == "manual"
    assert (await _org(session_maker, "org-a")).sync_status == "PENDING"


@pytest.mark.asyncio
async def test_full_resync_includes_keyword_discovery(session_maker, youtube_service, youtube_client):
    youtube_service.add_channel("UC-a", 2, "a")
    youtube_service.videos_by_id["kw-1"] = {
        **youtube_service.videos_by_id["a-000"],
        "id": "kw-1",
    }
    youtube_service.search_results['"No Channel Band" marching band'] = ["kw-1"]
    await _add(
        session_maker,
        Organization(id="org-a", name="A Band", external_channel_id="UC-a"),
        Organization(id="org-n", name="No Channel Band"),
    )

    result = await run_full_resync(client=youtube_client)

    assert result["videos_added"] == 3
    # 1 + 1 + 1 for the channel, 100 + 1 for the search
    assert youtube_client.quota_usage()["used"] == 104
    async with session_maker() as db:
        found = (await db.execute(select(StagedVideo).where(StagedVideo.external_video_id == "kw-1"))).scalar_one()
    assert found.organization_id == "org-n"
    assert (await _job(session_maker, result["job_id"])).job_type == "FULL_SYNC"


@pytest.mark.asyncio
async def test_failed_detail_chunk_is_skipped_and_later_chunks_are_stored(
    session_maker, youtube_service, youtube_client
):
    youtube_service.add_channel("UC-big", 120, "big")
    youtube_service.video_call_errors[2] = http_error(500, "backendError", message="Backend Error")
    await _add(session_maker, Organization(id="org-big", name="Big Band", external_channel_id="UC-big"))

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert youtube_client.quota_usage()["used"] == 7
    assert result["videos_added"] == 70
    assert result["videos_skipped"] == 50
    assert result["sources_failed"] == 0
    assert result["errors"] == ["Failed to fetch details for 50 videos: Backend Error"]
    assert await _count_staged(session_maker) == 70

    async with session_maker() as db:
        stored = set((await db.execute(select(StagedVideo.external_video_id))).scalars().all())
    assert "big-119" in stored
    assert "big-050" not in stored

    org = await _org(session_maker, "org-big")
    assert org.sync_status == "COMPLETED"
    assert org.last_sync_at is not None
    assert (await _job(session_maker, result["job_id"])).status == "COMPLETED"


@pytest.mark.asyncio
async def test_persistent_rate_limit_fails_only_that_source(session_maker, youtube_service, youtube_client):
    youtube_service.channel_errors["UC-a"] = http_error(
        429, "rateLimitExceeded", message="Too many requests", headers={"retry-after": "1"}
    )
    youtube_service.add_channel("UC-b", 3, "b")
    youtube_client.rate_limit_retries = 1
    await _add(
        session_maker,
        Organization(id="org-a", name="A Band", external_channel_id="UC-a"),
        Organization(id="org-b", name="B Band", external_channel_id="UC-b"),
    )

    result = await run_backfill(ORGANIZATION, client=youtube_client)

    assert result["errors"] == ["Failed to sync A Band: Too many requests"]
    assert result["sources_failed"] == 1
    assert result["videos_added"] == 3
    assert (await _org(session_maker, "org-a")).sync_status == "FAILED"
    assert (await _org(session_maker, "org-b")).sync_status == "COMPLETED"
    assert (await _job(session_maker, result["job_id"])).status == "COMPLETED"


@pytest.mark.asyncio
async def test_quota_halt_uses_the_client_budget(session_maker, youtube_service):
    youtube_service.add_channel("UC-a", 3, "a")
    await _add(session_maker, Organization(id="org-a", name="A Band", external_channel_id="UC-a"))
    client = make_client(youtube_service, daily_limit=100)
    client.quota.units_used_today = 90

    result = await run_backfill(ORGANIZATION, client=client)

    assert result["errors"] == ["Quota limit reached"]
    assert result["videos_added"] == 0
    assert client.quota_usage()["used"] == 90


@pytest.mark.asyncio
async def test_concurrently_inserted_staged_video_is_updated(session_maker):
    await _add(
        session_maker,
        StagedVideo(id="sv-1", external_video_id="raced", title="Old title", view_count=1),
    )
    record = VideoRecord(
        external_video_id="raced",
        title="New title",
        description="",
        thumbnail_url="",
        duration_seconds=60,
        published_at="2024-05-01T00:00:00Z",
        view_count=900,
        like_count=9,
        channel_id="UC-a",
        channel_title="A Band",
    )
    lookups = []

    async def lookup_missing_once(db, external_video_id):
        # The first lookup runs before the other writer's row is visible.
        lookups.append(external_video_id)
        if len(lookups) == 1:
            return None
        return await find_staged_video(db, external_video_id)

    async with session_maker() as db:
        with patch("services.catalog_store.find_staged_video", side_effect=lookup_missing_once):
            outcome = await save_staged_video(db, record, {"organization_id": "org-a"})

    assert outcome == "updated"
    assert len(lookups) == 2
    async with session_maker() as db:
        rows = (await db.execute(select(StagedVideo))).scalars().all()
    assert [(row.id, row.title, row.view_count) for row in rows] == [("sv-1", "New title", 900)]
