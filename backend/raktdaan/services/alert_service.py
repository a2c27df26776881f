"""
Alert service: blood alert creation, queries, expiry extension, status
updates, the expiry sweep and deletion.

Creation runs the priority calculator and an initial ranking pass; the top
three donors become the alert's ``matched_donors`` and are notified.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.api.websocket.handler import broadcast_alert, notify_donor
from raktdaan.config import get_settings
from raktdaan.models.alert import BloodAlert, AlertStatus, AlertUrgency, TERMINAL_ALERT_STATUSES
from raktdaan.models.donor_response import DonorResponse
from raktdaan.models.hospital import Hospital
from raktdaan.services.errors import NotFoundError, InvalidStateError
from raktdaan.services.priority import calculate_priority
from raktdaan.services.ranking_service import MatchingContext, get_alert_or_404, rank_context

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_MINUTES = 10
URGENT_WINDOW_HOURS = 6
URGENT_PRIORITY_THRESHOLD = 80

# Statuses an alert can never leave through update_alert_status
_FINAL_STATUSES = frozenset({AlertStatus.COMPLETED, AlertStatus.CANCELLED})

# The only statuses a hospital may set by hand; the rest belong to the
# response lifecycle (accept, complete, escalate).
MANUAL_ALERT_STATUSES = frozenset({
    AlertStatus.ACTIVE,
    AlertStatus.FULFILLED,
    AlertStatus.EXPIRED,
    AlertStatus.CANCELLED,
})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _alert_to_dict(alert: BloodAlert, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    return {
        "id": str(alert.id),
        "hospital_id": str(alert.hospital_id),
        "blood_type": alert.blood_type,
        "urgency": alert.urgency.value if alert.urgency else None,
        "units_needed": alert.units_needed,
        "location": alert.location,
        "target_area": alert.target_area,
        "radius_km": alert.radius_km,
        "contact_number": alert.contact_number,
        "description": alert.description,
        "status": alert.status.value if alert.status else None,
        "priority_score": alert.priority_score,
        "matched_donors": list(alert.matched_donors or []),
        "donor_count": len(alert.matched_donors or []),
        "notifications_sent": alert.notifications_sent,
        "estimated_response_time": alert.estimated_response_time,
        "accepted_donor_id": str(alert.accepted_donor_id) if alert.accepted_donor_id else None,
        "escalation_level": alert.escalation_level,
        "escalation_reason": alert.escalation_reason,
        "total_responses": alert.total_responses,
        "top_donor_score": alert.top_donor_score,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
        "expires_at": alert.expires_at.isoformat() if alert.expires_at else None,
        "time_until_expiry_s": (
            (alert.expires_at - now).total_seconds() if alert.expires_at else None
        ),
        "last_matching_update": alert.last_matching_update.isoformat() if alert.last_matching_update else None,
        "last_ranking_update": alert.last_ranking_update.isoformat() if alert.last_ranking_update else None,
        "completed_at": alert.completed_at.isoformat() if alert.completed_at else None,
        "escalated_at": alert.escalated_at.isoformat() if alert.escalated_at else None,
    }


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_alert(
    db: AsyncSession,
    *,
    hospital_id: uuid.UUID,
    blood_type: str,
    urgency: str | AlertUrgency,
    units_needed: int,
    location: str,
    contact_number: str | None = None,
    description: str | None = None,
    target_area: str | None = None,
    radius_km: float | None = None,
    expires_in_hours: float | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Create an alert, score its priority and attach the top matched donors."""
    settings = get_settings()
    now = now or datetime.utcnow()
    urgency = AlertUrgency(urgency)
    hours = expires_in_hours if expires_in_hours is not None else settings.DEFAULT_ALERT_EXPIRY_HOURS
    if hours <= 0:
        raise ValueError("expires_in_hours must be positive")
    if units_needed < 1:
        raise ValueError("units_needed must be at least 1")

    hospital = await db.get(Hospital, hospital_id)
    if hospital is None:
        raise NotFoundError("hospital", hospital_id)

    expires_at = now + timedelta(hours=hours)
    alert = BloodAlert(
        id=uuid.uuid4(),
        hospital_id=hospital.id,
        blood_type=blood_type,
        urgency=urgency,
        units_needed=units_needed,
        location=location,
        target_area=target_area,
        radius_km=radius_km if radius_km is not None else settings.DEFAULT_ALERT_RADIUS_KM,
        contact_number=contact_number,
        description=description,
        status=AlertStatus.ACTIVE,
        created_at=now,
        expires_at=expires_at,
        priority_score=calculate_priority(urgency, blood_type, units_needed, expires_at, now=now),
        matched_donors=[],
        notifications_sent=0,
        escalation_level=0,
        total_responses=0,
        last_matching_update=now,
    )
    db.add(alert)
    await db.flush()

    ctx = await MatchingContext.load(db, alert)
    candidates = (await rank_context(ctx, now=now))[:settings.INITIAL_MATCH_LIMIT]
    top = candidates[:settings.MATCHED_DONORS_LIMIT]
    if top:
        alert.matched_donors = [m.donor_id for m in top]
        alert.notifications_sent = len(top)
        lead_rt = top[0].response_time
        alert.estimated_response_time = round(lead_rt if lead_rt else DEFAULT_RESPONSE_MINUTES)
    await db.flush()

    logger.info(
        "Created alert %s (%s %s, priority %s) with %d matched donors",
        alert.id, blood_type, urgency.value, alert.priority_score, len(top),
    )

    alert_dict = _alert_to_dict(alert, now=now)
    for match in top:
        try:
            await notify_donor(match.donor_id, {
                "type": "blood_alert_match",
                "alert_id": str(alert.id),
                "blood_type": blood_type,
                "urgency": urgency.value,
                "location": location,
                "estimated_travel_time": match.estimated_travel_time,
            })
        except Exception:
            logger.exception("Failed to notify donor %s of alert %s", match.donor_id, alert.id)
    try:
        await broadcast_alert(alert_dict)
    except Exception:
        logger.exception("Failed to broadcast alert %s", alert.id)

    return alert_dict


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_alert(db: AsyncSession, alert_id: uuid.UUID) -> dict[str, Any]:
    alert = await get_alert_or_404(db, alert_id)
    return _alert_to_dict(alert)


async def list_active_alerts(
    db: AsyncSession,
    *,
    blood_type: str | None = None,
    urgency: str | None = None,
    location: str | None = None,
) -> list[dict[str, Any]]:
    """Active alerts, highest priority first."""
    query = select(BloodAlert).where(BloodAlert.status == AlertStatus.ACTIVE)
    if blood_type:
        query = query.where(BloodAlert.blood_type == blood_type)
    if urgency:
        query = query.where(BloodAlert.urgency == AlertUrgency(urgency))
    if location:
        query = query.where(BloodAlert.location == location)
    query = query.order_by(BloodAlert.priority_score.desc(), BloodAlert.created_at)

    result = await db.execute(query)
    return [_alert_to_dict(a) for a in result.scalars().all()]


async def list_hospital_alerts(
    db: AsyncSession,
    hospital_id: uuid.UUID,
    status: str | None = None,
) -> list[dict[str, Any]]:
    query = select(BloodAlert).where(BloodAlert.hospital_id == hospital_id)
    if status:
        query = query.where(BloodAlert.status == AlertStatus(status))
    result = await db.execute(query.order_by(BloodAlert.created_at.desc()))
    return [_alert_to_dict(a) for a in result.scalars().all()]


async def get_urgent_alerts(
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Critical/urgent active alerts expiring within six hours or above priority 80.

    Critical alerts sort first, then by priority score.
    """
    now = now or datetime.utcnow()
    result = await db.execute(
        select(BloodAlert).where(
            BloodAlert.status == AlertStatus.ACTIVE,
            BloodAlert.urgency.in_([AlertUrgency.CRITICAL, AlertUrgency.URGENT]),
        )
    )
    urgent = [
        a for a in result.scalars().all()
        if (a.expires_at - now).total_seconds() / 3600 < URGENT_WINDOW_HOURS
        or (a.priority_score or 0) > URGENT_PRIORITY_THRESHOLD
    ]
    urgent.sort(key=lambda a: (a.urgency != AlertUrgency.CRITICAL, -(a.priority_score or 0)))
    return [_alert_to_dict(a, now=now) for a in urgent]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

async def extend_alert(
    db: AsyncSession,
    alert_id: uuid.UUID,
    additional_hours: float,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Push the expiry back and recompute the priority score."""
    if additional_hours <= 0:
        raise ValueError("additional_hours must be positive")
    now = now or datetime.utcnow()
    alert = await get_alert_or_404(db, alert_id, lock=True)
    if AlertStatus(alert.status) in TERMINAL_ALERT_STATUSES - {AlertStatus.EXPIRED}:
        raise InvalidStateError(f"Alert {alert.id} is {AlertStatus(alert.status).value}")

    alert.expires_at = alert.expires_at + timedelta(hours=additional_hours)
    alert.priority_score = calculate_priority(
        alert.urgency, alert.blood_type, alert.units_needed, alert.expires_at, now=now,
    )
    alert.last_matching_update = now
    # An expired alert comes back once its new deadline is in the future
    if AlertStatus(alert.status) == AlertStatus.EXPIRED and alert.expires_at > now:
        alert.status = AlertStatus.ACTIVE
    await db.flush()

    logger.info("Alert %s extended to %s (priority %s)", alert.id, alert.expires_at, alert.priority_score)
    return _alert_to_dict(alert, now=now)


async def update_alert_status(
    db: AsyncSession,
    alert_id: uuid.UUID,
    new_status: str | AlertStatus,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Hospital override of an alert's status.

    Only the manual statuses are accepted; an alert holding an accepted donor
    cannot be reopened because that would orphan the accepted response.
    """
    new_status = AlertStatus(new_status)
    if new_status not in MANUAL_ALERT_STATUSES:
        raise InvalidStateError(
            f"Status {new_status.value} is set by the response lifecycle, not by hand"
        )
    now = now or datetime.utcnow()
    alert = await get_alert_or_404(db, alert_id, lock=True)
    current = AlertStatus(alert.status)
    if current in _FINAL_STATUSES and new_status != current:
        raise InvalidStateError(f"Alert {alert.id} is {current.value}")
    if new_status == AlertStatus.ACTIVE and alert.accepted_donor_id is not None:
        raise InvalidStateError(
            f"Alert {alert.id} has accepted donor {alert.accepted_donor_id}; cannot reopen"
        )

    alert.status = new_status
    alert.last_matching_update = now
    await db.flush()

    logger.info("Alert %s status -> %s", alert.id, new_status.value)
    return _alert_to_dict(alert, now=now)


async def expire_stale_alerts(
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> int:
    """Mark every active or escalated alert past its deadline as expired.

    Idempotent: expired alerts are not matched again.
    """
    now = now or datetime.utcnow()
    result = await db.execute(
        select(BloodAlert)
        .where(
            BloodAlert.status.in_([AlertStatus.ACTIVE, AlertStatus.ESCALATED]),
            BloodAlert.expires_at <= now,
        )
        .with_for_update()
    )
    stale = result.scalars().all()
    for alert in stale:
        alert.status = AlertStatus.EXPIRED
        alert.last_matching_update = now
    await db.flush()

    if stale:
        logger.info("Expired %d stale alerts", len(stale))
    return len(stale)


async def delete_alert(db: AsyncSession, alert_id: uuid.UUID) -> None:
    """Delete an alert together with all of its responses."""
    alert = await get_alert_or_404(db, alert_id, lock=True)
    await db.execute(delete(DonorResponse).where(DonorResponse.alert_id == alert.id))
    await db.delete(alert)
    await db.flush()
    logger.info("Deleted alert %s", alert_id)
