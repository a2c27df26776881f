import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Enum, DateTime, Float, Integer, Boolean, ForeignKey, Uuid, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from raktdaan.db.postgres import Base


class ResponseStatus(str, enum.Enum):
    INTERESTED = "interested"
    CONFIRMED = "confirmed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    ALERT_FULFILLED = "alert_fulfilled"
    UNAVAILABLE = "unavailable"
    ESCALATED = "escalated"


class UnavailabilityReason(str, enum.Enum):
    EMERGENCY = "emergency"
    HEALTH_ISSUE = "health_issue"
    PERSONAL = "personal"
    OTHER = "other"


class DonorResponse(Base):
    __tablename__ = "donor_responses"
    __table_args__ = (
        UniqueConstraint("alert_id", "donor_id", name="uq_donor_responses_alert_donor"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    alert_id = Column(Uuid, ForeignKey("blood_alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    donor_id = Column(Uuid, ForeignKey("donors.id"), nullable=False, index=True)
    status = Column(Enum(ResponseStatus), nullable=False, default=ResponseStatus.INTERESTED)

    # Scoring
    match_score = Column(Float, nullable=True)
    final_score = Column(Float, nullable=True)
    priority_rank = Column(Integer, nullable=True)
    response_speed_s = Column(Integer, nullable=True)  # seconds since alert creation
    estimated_travel_time = Column(Integer, nullable=True)  # minutes
    last_ranking_update = Column(DateTime, nullable=True)

    notes = Column(String, nullable=True)
    hospital_notes = Column(String, nullable=True)
    is_primary_donor = Column(Boolean, default=False)

    # Transition timestamps
    responded_at = Column(DateTime, default=datetime.utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    held_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    fulfilled_at = Column(DateTime, nullable=True)
    unavailable_at = Column(DateTime, nullable=True)

    # Unavailability / replacement
    unavailability_reason = Column(Enum(UnavailabilityReason), nullable=True)
    is_replacement = Column(Boolean, default=False)
    replacement_for = Column(Uuid, nullable=True)  # response id that was replaced

    alert = relationship("BloodAlert", back_populates="responses")
