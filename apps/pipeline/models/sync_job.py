"""Sync job audit record model."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.sql import func
import uuid

from database import Base


JOB_STATUS_QUEUED = "QUEUED"
JOB_STATUS_IN_PROGRESS = "IN_PROGRESS"
JOB_STATUS_COMPLETED = "COMPLETED"
JOB_STATUS_FAILED = "FAILED"

SYNC_STATUS_PENDING = "PENDING"
SYNC_STATUS_IN_PROGRESS = "IN_PROGRESS"
SYNC_STATUS_COMPLETED = "COMPLETED"
SYNC_STATUS_FAILED = "FAILED"

JOB_TYPE_BACKFILL_ORGANIZATIONS = "BACKFILL_ORGANIZATIONS"
JOB_TYPE_BACKFILL_CREATORS = "BACKFILL_CREATORS"
JOB_TYPE_FULL_SYNC = "FULL_SYNC"
JOB_TYPE_MATCH_VIDEOS = "MATCH_VIDEOS"
JOB_TYPE_PROMOTE_VIDEOS = "PROMOTE_VIDEOS"
JOB_TYPE_CLEANUP = "CLEANUP"
JOB_TYPE_UPDATE_STATS = "UPDATE_STATS"


class SyncJobRecord(Base):
    """Append-only audit trail of one pipeline run."""

    __tablename__ = "sync_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String, ForeignKey("organizations.id"), nullable=True, index=True)
    job_type = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=JOB_STATUS_QUEUED, index=True)
    triggered_by = Column(String, nullable=True)
    videos_found = Column(Integer, nullable=False, default=0)
    videos_added = Column(Integer, nullable=False, default=0)
    videos_updated = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
