import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Enum, DateTime, Boolean, Uuid

from raktdaan.db.postgres import Base


class UserRole(str, enum.Enum):
    DONOR = "donor"
    HOSPITAL_ADMIN = "hospital_admin"
    SUPER_ADMIN = "super_admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=True)
    phone = Column(String, unique=True, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.DONOR)
    is_active = Column(Boolean, default=True)
    hospital_id = Column(Uuid, nullable=True)  # set for hospital_admin
    donor_id = Column(Uuid, nullable=True)  # set for donor
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
