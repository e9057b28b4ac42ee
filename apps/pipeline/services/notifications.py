"""Fan-out to the notification service after a video is promoted."""

import logging
from typing import Optional

from config import settings
from services.pipeline_queue import enqueue_notification

logger = logging.getLogger(__name__)


def notify_new_video(organization_id: str, video_id: str, title: str) -> Optional[str]:
    """
    Hand a newly promoted video to the notification service.

    The notification task itself is owned by that service; this only enqueues
    it on the maintenance lane. Failures are logged, never raised.

    Returns:
        The queued job id, or None when disabled or enqueueing failed
    """
    if not settings.NOTIFICATIONS_ENABLED:
        return None

    try:
        job = enqueue_notification(
            settings.NEW_VIDEO_NOTIFICATION_TASK,
            organization_id=organization_id,
            video_id=video_id,
            title=title,
        )
    except Exception:
        logger.exception("Failed to enqueue new-video notification for %s", video_id)
        return None
    return job.id
