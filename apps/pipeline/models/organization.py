"""Organization model for tracked marching bands."""

from sqlalchemy import Boolean, Column, DateTime, JSON, String
from sqlalchemy.sql import func
import uuid

from database import Base


class Organization(Base):
    """A band whose official channel and name are tracked by the pipeline."""

    __tablename__ = "organizations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False, index=True)
    school_name = Column(String, nullable=True)
    state = Column(String, nullable=True)
    organization_type = Column(String, nullable=False, default="STANDARD")
    aliases = Column(JSON, nullable=True)
    external_channel_id = Column(String, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_full_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_status = Column(String, nullable=False, default="PENDING")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
