"""
YouTube Data API client for channel discovery and video details.

Every call goes through the shared quota tracker: the call-rate window is
honoured before the request is issued and the operation's unit cost is
charged. Provider failures are classified into quota exhaustion, rate
limiting, or a generic provider error.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

import metrics
from config import require_youtube_api_key, settings
from ingestion.quota import QUOTA_COSTS, QuotaState

logger = logging.getLogger(__name__)

MAX_IDS_PER_DETAILS_CALL = 50
MAX_PAGE_SIZE = 50

QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}
RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


class YouTubeError(Exception):
    """Base class for classified provider failures."""


class ProviderError(YouTubeError):
    """Provider failure that only affects the current item or source."""

    def __init__(self, message: str, status: int = 0, reason: Optional[str] = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.reason = reason
        self.payload = payload


class QuotaExceededError(YouTubeError):
    """Daily quota is exhausted; terminal for the current run."""


class RateLimitedError(YouTubeError):
    """The provider asked us to slow down and retry the same request later."""

    def __init__(self, retry_after_ms: int, message: str = "YouTube API rate limit reached"):
        super().__init__(message)
        self.retry_after_ms = max(int(retry_after_ms), 0)


@dataclass
class SearchPage:
    ids: List[str]
    next_page_token: Optional[str]
    total_results: int


@dataclass
class PlaylistItem:
    video_id: str
    published_at: Optional[str]
    title: str = ""


@dataclass
class PlaylistPage:
    items: List[PlaylistItem]
    next_page_token: Optional[str]
    total_results: int


@dataclass
class VideoRecord:
    """Provider video mapped into the staged-video shape."""

    external_video_id: str
    title: str
    description: str
    thumbnail_url: str
    duration_seconds: int
    published_at: Optional[str]
    view_count: int
    like_count: int
    channel_id: str
    channel_title: str
    tags: List[str] = field(default_factory=list)


def parse_duration(duration: str) -> int:
    """Parse ISO 8601 duration to seconds."""
    match = re.match(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?", duration or "")
    if not match:
        return 0

    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = int(match.group(3) or 0)

    return hours * 3600 + minutes * 60 + seconds


def _error_payload(error: HttpError) -> Dict[str, Any]:
    content = error.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    try:
        payload = json.loads(content or "{}")
    except (TypeError, ValueError):
        return {"raw": content}
    return payload if isinstance(payload, dict) else {"raw": payload}


def _retry_after_ms(error: HttpError) -> int:
    header = None
    if error.resp is not None:
        header = error.resp.get("retry-after")
    try:
        return int(float(header) * 1000)
    except (TypeError, ValueError):
        return int(settings.YOUTUBE_RATE_LIMIT_DEFAULT_DELAY_MS)


def classify_http_error(error: HttpError) -> YouTubeError:
    """Map a googleapiclient HttpError onto the pipeline's failure taxonomy."""
    status = int(getattr(error.resp, "status", 0) or 0)
    payload = _error_payload(error)
    body = payload.get("error") if isinstance(payload.get("error"), dict) else {}
    reasons = [
        item.get("reason")
        for item in body.get("errors", [])
        if isinstance(item, dict)
    ]
    message = str(body.get("message") or error)

    if any(reason in QUOTA_REASONS for reason in reasons):
        return QuotaExceededError(message)
    if status == 429 or any(reason in RATE_LIMIT_REASONS for reason in reasons):
        return RateLimitedError(_retry_after_ms(error), message)
    return ProviderError(
        message,
        status=status,
        reason=reasons[0] if reasons else None,
        payload=payload,
    )


def _best_thumbnail(thumbnails: Dict[str, Any]) -> str:
    for size in ("maxres", "high", "medium", "default"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return ""


class YouTubeClient:
    """Client for the YouTube Data API v3 with quota and rate accounting."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        credentials: Any = None,
        service: Any = None,
        quota: Optional[QuotaState] = None,
        sleep: Callable[[float], None] = time.sleep,
        rate_limit_retries: Optional[int] = None,
    ):
        """
        Initialize YouTube client.

        Args:
            api_key: API key for public data access
            credentials: OAuth2 credentials for authenticated access
            service: Prebuilt discovery resource (used by tests)
            quota: Shared quota tracker; a fresh one is created from settings otherwise
        """
        if service is not None:
            self.youtube = service
        elif credentials:
            self.youtube = build("youtube", "v3", credentials=credentials)
        elif api_key:
            self.youtube = build("youtube", "v3", developerKey=api_key)
        else:
            raise ValueError("Either api_key or credentials must be provided")

        self._sleep = sleep
        self.quota = quota or QuotaState(
            daily_limit=settings.YOUTUBE_QUOTA_LIMIT,
            calls_per_minute=settings.MAX_YOUTUBE_CALLS_PER_MINUTE,
            reset_timezone=settings.YOUTUBE_QUOTA_RESET_TIMEZONE,
            sleep=sleep,
        )
        self.rate_limit_retries = (
            settings.YOUTUBE_RATE_LIMIT_RETRIES if rate_limit_retries is None else rate_limit_retries
        )

    def quota_usage(self) -> Dict[str, int]:
        return self.quota.usage()

    def _execute(self, operation: str, request: Any) -> Dict[str, Any]:
        """Issue one request, re-issuing it after provider-requested delays."""
        attempts = 0
        while True:
            self.quota.acquire_call_slot()
            self.quota.charge(QUOTA_COSTS[operation])
            units_used = self.quota.units_used_today
            try:
                response = request.execute()
            except HttpError as exc:
                classified = classify_http_error(exc)
                if isinstance(classified, RateLimitedError):
                    metrics.record_youtube_call(operation, metrics.OUTCOME_RATE_LIMITED, units_used)
                    if attempts < self.rate_limit_retries:
                        attempts += 1
                        logger.warning(
                            "YouTube %s rate limited, retrying in %sms (attempt %s/%s)",
                            operation,
                            classified.retry_after_ms,
                            attempts,
                            self.rate_limit_retries,
                        )
                        self._sleep(classified.retry_after_ms / 1000.0)
                        continue
                elif isinstance(classified, QuotaExceededError):
                    metrics.record_youtube_call(operation, metrics.OUTCOME_QUOTA_EXCEEDED, units_used)
                    logger.error("YouTube quota exceeded during %s", operation)
                else:
                    metrics.record_youtube_call(operation, metrics.OUTCOME_ERROR, units_used)
                    logger.error(
                        "YouTube %s failed with status %s: %s",
                        operation,
                        classified.status,
                        classified.payload,
                    )
                raise classified from exc
            except Exception:
                metrics.record_youtube_call(operation, metrics.OUTCOME_ERROR, units_used)
                logger.exception("YouTube %s transport failure", operation)
                raise
            metrics.record_youtube_call(operation, metrics.OUTCOME_OK, units_used)
            return response

    def search_videos(
        self,
        query: Optional[str] = None,
        channel_id: Optional[str] = None,
        page_token: Optional[str] = None,
        max_results: int = MAX_PAGE_SIZE,
    ) -> SearchPage:
        """Search videos by keyword or within a channel (100 units)."""
        if not query and not channel_id:
            raise ValueError("search_videos needs a query or a channel_id")

        params: Dict[str, Any] = {
            "part": "id",
            "type": "video",
            "maxResults": max(1, min(int(max_results), MAX_PAGE_SIZE)),
        }
        if query:
            params["q"] = query
            params["order"] = "relevance"
        if channel_id:
            params["channelId"] = channel_id
            params["order"] = "date"
        if page_token:
            params["pageToken"] = page_token

        response = self._execute("search.list", self.youtube.search().list(**params))

        ids: List[str] = []
        for item in response.get("items", []):
            video_id = (item.get("id") or {}).get("videoId")
            if video_id and video_id not in ids:
                ids.append(video_id)
        return SearchPage(
            ids=ids,
            next_page_token=response.get("nextPageToken"),
            total_results=int((response.get("pageInfo") or {}).get("totalResults", 0) or 0),
        )

    def get_uploads_playlist_id(self, channel_id: str) -> Optional[str]:
        """Resolve a channel's uploads playlist (1 unit)."""
        response = self._execute(
            "channels.list",
            self.youtube.channels().list(part="contentDetails", id=channel_id),
        )
        items = response.get("items") or []
        if not items:
            return None
        return items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")

    def list_playlist_page(
        self,
        playlist_id: str,
        page_token: Optional[str] = None,
        max_results: int = MAX_PAGE_SIZE,
    ) -> PlaylistPage:
        """Fetch one page of a playlist (1 unit)."""
        params: Dict[str, Any] = {
            "part": "snippet,contentDetails",
            "playlistId": playlist_id,
            "maxResults": max(1, min(int(max_results), MAX_PAGE_SIZE)),
        }
        if page_token:
            params["pageToken"] = page_token

        response = self._execute("playlistItems.list", self.youtube.playlistItems().list(**params))

        items: List[PlaylistItem] = []
        for item in response.get("items", []):
            snippet = item.get("snippet", {})
            content = item.get("contentDetails", {})
            video_id = content.get("videoId") or (snippet.get("resourceId") or {}).get("videoId")
            if not video_id:
                continue
            items.append(
                PlaylistItem(
                    video_id=video_id,
                    published_at=content.get("videoPublishedAt") or snippet.get("publishedAt"),
                    title=snippet.get("title", ""),
                )
            )
        return PlaylistPage(
            items=items,
            next_page_token=response.get("nextPageToken"),
            total_results=int((response.get("pageInfo") or {}).get("totalResults", 0) or 0),
        )

    def fetch_video_details(self, video_ids: List[str]) -> List[VideoRecord]:
        """
        Get full details for up to 50 videos in one call (1 unit).

        Returns:
            VideoRecord per video the provider still knows about
        """
        if not video_ids:
            return []
        if len(video_ids) > MAX_IDS_PER_DETAILS_CALL:
            raise ValueError(f"At most {MAX_IDS_PER_DETAILS_CALL} ids per details call")

        response = self._execute(
            "videos.list",
            self.youtube.videos().list(
                part="snippet,contentDetails,statistics",
                id=",".join(video_ids),
            ),
        )

        records: List[VideoRecord] = []
        for item in response.get("items", []):
            snippet = item.get("snippet", {})
            stats = item.get("statistics", {})
            content = item.get("contentDetails", {})
            records.append(
                VideoRecord(
                    external_video_id=item["id"],
                    title=snippet.get("title") or "Unknown",
                    description=snippet.get("description") or "",
                    thumbnail_url=_best_thumbnail(snippet.get("thumbnails") or {}),
                    duration_seconds=parse_duration(content.get("duration", "PT0S")),
                    published_at=snippet.get("publishedAt"),
                    view_count=int(stats.get("viewCount", 0) or 0),
                    like_count=int(stats.get("likeCount", 0) or 0),
                    channel_id=snippet.get("channelId", ""),
                    channel_title=snippet.get("channelTitle", ""),
                    tags=list(snippet.get("tags") or []),
                )
            )
        return records


_shared_client: Optional[YouTubeClient] = None


def get_shared_client() -> YouTubeClient:
    """Return the process-wide client so quota accounting spans jobs."""
    global _shared_client
    if _shared_client is None:
        _shared_client = YouTubeClient(api_key=require_youtube_api_key())
    return _shared_client
