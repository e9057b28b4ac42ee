"""Staged video model: ingested but not yet production-visible."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class StagedVideo(Base):
    """Raw provider record pending organization matching and promotion."""

    __tablename__ = "staged_videos"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    external_video_id = Column(String, nullable=False, unique=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    duration_seconds = Column(Integer, nullable=False, default=0)
    published_at = Column(DateTime(timezone=True), nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    like_count = Column(Integer, nullable=False, default=0)
    channel_id = Column(String, nullable=True)
    channel_title = Column(String, nullable=True)
    provider_tags = Column(JSON, nullable=True)
    organization_id = Column(String, ForeignKey("organizations.id"), nullable=True, index=True)
    opponent_organization_id = Column(String, ForeignKey("organizations.id"), nullable=True)
    creator_id = Column(String, ForeignKey("creators.id"), nullable=True, index=True)
    match_confidence = Column(Integer, nullable=True)
    is_promoted = Column(Boolean, nullable=False, default=False, index=True)
    promoted_at = Column(DateTime(timezone=True), nullable=True)
    sync_status = Column(String, nullable=False, default="COMPLETED")
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
