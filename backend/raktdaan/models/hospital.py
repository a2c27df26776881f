import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Float, Boolean, Uuid

from raktdaan.db.postgres import Base


class Hospital(Base):
    """Hospital directory record.  Read-only to the matching core."""
    __tablename__ = "hospitals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    location = Column(String, nullable=False, default="")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    phone = Column(String, nullable=True)
    contact_person = Column(String, nullable=True)
    address = Column(String, nullable=True)
    verified = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
