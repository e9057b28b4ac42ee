"""Independent content creator model."""

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func
import uuid

from database import Base


class Creator(Base):
    """An independent channel that films many bands."""

    __tablename__ = "creators"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    external_channel_id = Column(String, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_full_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_status = Column(String, nullable=False, default="PENDING")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
