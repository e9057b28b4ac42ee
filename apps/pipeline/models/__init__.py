"""Models package."""

from .organization import Organization
from .creator import Creator
from .category import Category
from .staged_video import StagedVideo
from .promoted_video import PromotedVideo
from .sync_job import SyncJobRecord
