"""Promoted video model: the production catalog entry."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class PromotedVideo(Base):
    """Classified video visible through the catalog API."""

    __tablename__ = "promoted_videos"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    external_video_id = Column(String, nullable=False, unique=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    duration_seconds = Column(Integer, nullable=False, default=0)
    published_at = Column(DateTime(timezone=True), nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    like_count = Column(Integer, nullable=False, default=0)
    organization_id = Column(String, ForeignKey("organizations.id"), nullable=False, index=True)
    opponent_organization_id = Column(String, ForeignKey("organizations.id"), nullable=True)
    category_id = Column(String, ForeignKey("categories.id"), nullable=True, index=True)
    event_name = Column(String, nullable=True)
    event_year = Column(Integer, nullable=True)
    tags = Column(JSON, nullable=True)
    quality_score = Column(Integer, nullable=False, default=0)
    is_hidden = Column(Boolean, nullable=False, default=False)
    stats_refreshed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
