import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Enum, DateTime, Float, Integer, ForeignKey, Uuid, JSON
from sqlalchemy.orm import relationship

from raktdaan.db.postgres import Base


class AlertUrgency(str, enum.Enum):
    CRITICAL = "critical"
    URGENT = "urgent"
    NORMAL = "normal"


class AlertStatus(str, enum.Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    DONOR_CONFIRMED = "donor_confirmed"
    COMPLETED = "completed"
    ESCALATED = "escalated"


# Alerts in these states no longer accept responses or replacements.
TERMINAL_ALERT_STATUSES = frozenset({
    AlertStatus.FULFILLED,
    AlertStatus.EXPIRED,
    AlertStatus.CANCELLED,
    AlertStatus.COMPLETED,
})


class BloodAlert(Base):
    __tablename__ = "blood_alerts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    hospital_id = Column(Uuid, ForeignKey("hospitals.id"), nullable=False, index=True)
    blood_type = Column(String(3), nullable=False, index=True)
    urgency = Column(Enum(AlertUrgency), nullable=False)
    units_needed = Column(Integer, nullable=False, default=1)
    location = Column(String, nullable=False, default="")
    target_area = Column(String, nullable=True)
    radius_km = Column(Float, default=50)
    contact_number = Column(String, nullable=True)
    description = Column(String, nullable=True)
    status = Column(Enum(AlertStatus), default=AlertStatus.ACTIVE, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    priority_score = Column(Float, default=0)

    # Matching snapshot
    matched_donors = Column(JSON, default=list)  # donor id strings, best first
    notifications_sent = Column(Integer, default=0)
    estimated_response_time = Column(Integer, nullable=True)  # minutes
    last_matching_update = Column(DateTime, nullable=True)
    last_ranking_update = Column(DateTime, nullable=True)
    total_responses = Column(Integer, default=0)
    top_donor_score = Column(Float, nullable=True)

    # Lifecycle
    accepted_donor_id = Column(Uuid, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    escalated_at = Column(DateTime, nullable=True)
    escalation_reason = Column(String, nullable=True)
    escalation_level = Column(Integer, default=0)
    replaced_response_id = Column(Uuid, nullable=True)
    last_replacement_at = Column(DateTime, nullable=True)

    responses = relationship(
        "DonorResponse",
        back_populates="alert",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
