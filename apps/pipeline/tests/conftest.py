import json
from contextlib import ExitStack
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import patch

import httplib2
import pytest
import pytest_asyncio
from googleapiclient.errors import HttpError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from ingestion.quota import QuotaState
from ingestion.youtube import YouTubeClient
from services.catalog_store import category_cache

SESSION_MAKER_TARGETS = (
    "services.channel_sync.async_session_maker",
    "services.matching.async_session_maker",
    "services.promotion.async_session_maker",
    "services.maintenance.async_session_maker",
    "services.stats_refresh.async_session_maker",
    "services.pipeline_queue.async_session_maker",
)


@pytest.fixture(autouse=True)
def fast_pipeline_settings():
    """No pacing delays and a fresh category cache per test."""
    category_cache.clear()
    with (
        patch("services.channel_sync.settings.DISCOVERY_SOURCE_DELAY_SECONDS", 0),
        patch("services.channel_sync.settings.DISCOVERY_BATCH_DELAY_SECONDS", 0),
    ):
        yield
    category_cache.clear()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "pipeline.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with ExitStack() as stack:
        for target in SESSION_MAKER_TARGETS:
            stack.enter_context(patch(target, maker))
        yield maker

    await engine.dispose()


def http_error(status: int, reason: Optional[str] = None, message: str = "error", headers=None) -> HttpError:
    """Build a googleapiclient HttpError shaped like the YouTube API's."""
    info = {"status": status}
    info.update(headers or {})
    body = {"error": {"code": status, "message": message, "errors": []}}
    if reason:
        body["error"]["errors"].append({"reason": reason, "message": message})
    return HttpError(httplib2.Response(info), json.dumps(body).encode("utf-8"))


def video_resource(
    video_id: str,
    title: str = "Marching band video",
    description: str = "",
    published_at: str = "2024-05-01T00:00:00Z",
    views: int = 100,
    likes: int = 5,
    tags: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "id": video_id,
        "snippet": {
            "title": title,
            "description": description,
            "publishedAt": published_at,
            "channelId": "UC-test",
            "channelTitle": "Test Channel",
            "tags": tags or [],
            "thumbnails": {
                "default": {"url": f"https://img.example/{video_id}/default.jpg"},
                "high": {"url": f"https://img.example/{video_id}/high.jpg"},
            },
        },
        "contentDetails": {"duration": "PT4M10S"},
        "statistics": {"viewCount": str(views), "likeCount": str(likes)},
    }


class FakeRequest:
    """Stands in for a googleapiclient HttpRequest."""

    def __init__(self, responses: List[Any]):
        self._responses = list(responses)
        self.calls = 0

    def execute(self):
        self.calls += 1
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class _Resource:
    def __init__(self, handler: Callable[..., FakeRequest]):
        self._handler = handler

    def list(self, **params):
        return self._handler(**params)


class FakeYouTubeService:
    """In-memory discovery resource covering the four endpoints the pipeline uses."""

    def __init__(self):
        self.uploads_by_channel: Dict[str, Optional[str]] = {}
        self.playlists: Dict[str, List[Dict[str, str]]] = {}
        self.videos_by_id: Dict[str, Dict[str, Any]] = {}
        self.search_results: Dict[str, List[str]] = {}
        self.channel_errors: Dict[str, Exception] = {}
        self.playlist_hooks: Dict[str, Callable[[], None]] = {}
        self.video_call_errors: Dict[int, Exception] = {}
        self.video_calls = 0
        self.requests: List[FakeRequest] = []

    def _track(self, request: FakeRequest) -> FakeRequest:
        self.requests.append(request)
        return request

    def add_channel(
        self,
        channel_id: str,
        video_count: int,
        prefix: str,
        title: str = "HBCU marching band field show",
        published_at: str = "2024-05-01T00:00:00Z",
    ) -> List[str]:
        playlist_id = f"UU-{channel_id}"
        self.uploads_by_channel[channel_id] = playlist_id
        ids = [f"{prefix}-{index:03d}" for index in range(video_count)]
        self.playlists[playlist_id] = [{"id": video_id, "published_at": published_at} for video_id in ids]
        for video_id in ids:
            self.videos_by_id[video_id] = video_resource(video_id, title=title, published_at=published_at)
        return ids

    def channels(self):
        return _Resource(self._channels)

    def playlistItems(self):
        return _Resource(self._playlist_items)

    def videos(self):
        return _Resource(self._videos)

    def search(self):
        return _Resource(self._search)

    def _channels(self, part, id):
        if id in self.channel_errors:
            return self._track(FakeRequest([self.channel_errors[id]]))
        uploads = self.uploads_by_channel.get(id)
        items = [] if uploads is None else [{"contentDetails": {"relatedPlaylists": {"uploads": uploads}}}]
        return self._track(FakeRequest([{"items": items}]))

    def _playlist_items(self, part, playlistId, maxResults, pageToken=None):
        hook = self.playlist_hooks.get(playlistId)
        if hook:
            hook()
        entries = self.playlists.get(playlistId, [])
        start = int(pageToken or 0)
        page = entries[start:start + maxResults]
        next_token = str(start + maxResults) if start + maxResults < len(entries) else None
        response = {
            "items": [
                {
                    "snippet": {"title": entry["id"], "publishedAt": entry["published_at"]},
                    "contentDetails": {"videoId": entry["id"], "videoPublishedAt": entry["published_at"]},
                }
                for entry in page
            ],
            "pageInfo": {"totalResults": len(entries)},
        }
        if next_token:
            response["nextPageToken"] = next_token
        return self._track(FakeRequest([response]))

    def _videos(self, part, id):
        self.video_calls += 1
        if self.video_calls in self.video_call_errors:
            return self._track(FakeRequest([self.video_call_errors[self.video_calls]]))
        ids = id.split(",")
        return self._track(
            FakeRequest([{"items": [self.videos_by_id[video_id] for video_id in ids if video_id in self.videos_by_id]}])
        )

    def _search(self, **params):
        ids = self.search_results.get(params.get("q"), [])
        return self._track(
            FakeRequest([{"items": [{"id": {"videoId": video_id}} for video_id in ids], "pageInfo": {"totalResults": len(ids)}}])
        )


def _no_sleep(_seconds: float) -> None:
    return None


def make_client(service, daily_limit: int = 10000, calls_per_minute: int = 10000, sleep=_no_sleep) -> YouTubeClient:
    quota = QuotaState(daily_limit=daily_limit, calls_per_minute=calls_per_minute, sleep=sleep)
    return YouTubeClient(service=service, quota=quota, sleep=sleep)


@pytest.fixture
def youtube_service():
    return FakeYouTubeService()


@pytest.fixture
def youtube_client(youtube_service):
    return make_client(youtube_service)
