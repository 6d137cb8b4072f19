"""Base model with common fields."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String

from lib.database import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class BaseModel(Base):
    """Abstract base carrying id and timestamps."""

    __abstract__ = True

    id = Column(String(36), primary_key=True, default=generate_uuid)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id})>"
