"""Category model."""

from sqlalchemy import Column, String
import uuid

from database import Base


class Category(Base):
    """A content bucket such as field shows or parades."""

    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
