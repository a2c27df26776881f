"""
Donor directory models: donor records and their self-reported verification.

Both tables are owned by donor registration.  The matching core only writes
``availability``, ``last_availability_update`` and the rolling
``response_time`` / ``success_rate`` feedback fields.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Enum, DateTime, Float, Boolean, ForeignKey, Uuid, JSON

from raktdaan.db.postgres import Base


class BloodType(str, enum.Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    O_POS = "O+"
    O_NEG = "O-"
    AB_POS = "AB+"
    AB_NEG = "AB-"


class HealthStatus(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    RESTRICTED = "restricted"


class Donor(Base):
    __tablename__ = "donors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    blood_type = Column(String(3), nullable=False, index=True)
    location = Column(String, nullable=False, default="")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    phone = Column(String, nullable=True)
    availability = Column(Boolean, default=True, nullable=False)
    health_status = Column(Enum(HealthStatus), nullable=True)
    emergency_only = Column(Boolean, default=False, nullable=False)
    response_time = Column(Float, nullable=True)  # rolling average, minutes
    success_rate = Column(Float, nullable=True)  # rolling percentage 0-100
    last_donation = Column(DateTime, nullable=True)
    last_availability_update = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DonorVerification(Base):
    __tablename__ = "donor_verifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id = Column(Uuid, ForeignKey("donors.id", ondelete="CASCADE"), nullable=False, unique=True)
    health_conditions = Column(JSON, nullable=True)  # self-reported, list[str]
    last_donation_date = Column(DateTime, nullable=True)  # overrides Donor.last_donation
    eligibility_consent = Column(Boolean, default=False)
    status = Column(String, default="pending")  # pending, approved, rejected
    submitted_at = Column(DateTime, default=datetime.utcnow)

