"""
Response lifecycle manager: each donor's response to an alert.

    interested -> confirmed | rejected | alert_fulfilled | escalated
    confirmed  -> accepted | on_hold | rejected | unavailable | alert_fulfilled | escalated
    on_hold    -> confirmed | accepted | rejected | unavailable | alert_fulfilled | escalated
    accepted   -> completed | unavailable

``completed``, ``rejected``, ``alert_fulfilled``, ``unavailable`` and
``escalated`` are terminal.  The one exit from ``alert_fulfilled`` is a
replacement search re-opening the response as ``interested``.

Every mutating operation locks the alert row first, validates all the
transitions it is about to make, and only then writes.  The caller's
transaction commits or rolls back the whole unit.  Notifications go out
after the writes and never fail the operation.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.api.websocket.handler import broadcast_alert, notify_donor, notify_hospital
from raktdaan.config import get_settings
from raktdaan.models.alert import BloodAlert, AlertStatus, TERMINAL_ALERT_STATUSES
from raktdaan.models.donor import Donor
from raktdaan.models.donor_response import DonorResponse, ResponseStatus, UnavailabilityReason
from raktdaan.services import ranking_service
from raktdaan.services.eligibility import explain_ineligibility
from raktdaan.services.errors import NotFoundError, InvalidStateError
from raktdaan.services.match_scoring import donor_location
from raktdaan.services.performance import learn_from_outcome
from raktdaan.services.ranking_service import MatchingContext, build_match, get_alert_or_404, rank_context
from raktdaan.services.travel_service import get_travel_estimator

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ResponseStatus, frozenset[ResponseStatus]] = {
    ResponseStatus.INTERESTED: frozenset({
        ResponseStatus.CONFIRMED, ResponseStatus.REJECTED,
        ResponseStatus.ALERT_FULFILLED, ResponseStatus.ESCALATED,
    }),
    ResponseStatus.CONFIRMED: frozenset({
        ResponseStatus.ACCEPTED, ResponseStatus.ON_HOLD, ResponseStatus.REJECTED,
        ResponseStatus.UNAVAILABLE, ResponseStatus.ALERT_FULFILLED, ResponseStatus.ESCALATED,
    }),
    ResponseStatus.ON_HOLD: frozenset({
        ResponseStatus.CONFIRMED, ResponseStatus.ACCEPTED, ResponseStatus.REJECTED,
        ResponseStatus.UNAVAILABLE, ResponseStatus.ALERT_FULFILLED, ResponseStatus.ESCALATED,
    }),
    ResponseStatus.ACCEPTED: frozenset({ResponseStatus.COMPLETED, ResponseStatus.UNAVAILABLE}),
}

TERMINAL_RESPONSE_STATUSES = frozenset({
    ResponseStatus.COMPLETED,
    ResponseStatus.REJECTED,
    ResponseStatus.ALERT_FULFILLED,
    ResponseStatus.UNAVAILABLE,
    ResponseStatus.ESCALATED,
})

# Donors with these responses are never offered the alert again
_EXCLUDED_FROM_REPLACEMENT = frozenset({
    ResponseStatus.REJECTED,
    ResponseStatus.UNAVAILABLE,
    ResponseStatus.COMPLETED,
    ResponseStatus.ESCALATED,
})

ACTIONS = ("accept", "reject", "hold", "complete")

# Base match score above which a responder joins the alert's matched donors
AUTO_MATCH_THRESHOLD = 70

FULFILLED_NOTE = "Another donor was selected for this alert"
REOPENED_NOTE = "Re-opened as a replacement donor"
ESCALATION_LEVEL = 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def can_transition(current: ResponseStatus | str, target: ResponseStatus | str) -> bool:
    return ResponseStatus(target) in ALLOWED_TRANSITIONS.get(ResponseStatus(current), frozenset())


def _check_transition(response: DonorResponse, target: ResponseStatus) -> None:
    if not can_transition(response.status, target):
        raise InvalidStateError(
            f"Cannot move response {response.id} from {ResponseStatus(response.status).value} "
            f"to {target.value}"
        )


def _response_to_dict(resp: DonorResponse) -> dict[str, Any]:
    def _ts(value: datetime | None) -> str | None:
        return value.isoformat() if value else None

    return {
        "id": str(resp.id),
        "alert_id": str(resp.alert_id),
        "donor_id": str(resp.donor_id),
        "status": resp.status.value if resp.status else None,
        "match_score": resp.match_score,
        "final_score": resp.final_score,
        "priority_rank": resp.priority_rank,
        "response_speed_s": resp.response_speed_s,
        "estimated_travel_time": resp.estimated_travel_time,
        "notes": resp.notes,
        "hospital_notes": resp.hospital_notes,
        "is_primary_donor": bool(resp.is_primary_donor),
        "is_replacement": bool(resp.is_replacement),
        "replacement_for": str(resp.replacement_for) if resp.replacement_for else None,
        "unavailability_reason": resp.unavailability_reason.value if resp.unavailability_reason else None,
        "responded_at": _ts(resp.responded_at),
        "confirmed_at": _ts(resp.confirmed_at),
        "accepted_at": _ts(resp.accepted_at),
        "rejected_at": _ts(resp.rejected_at),
        "held_at": _ts(resp.held_at),
        "completed_at": _ts(resp.completed_at),
        "fulfilled_at": _ts(resp.fulfilled_at),
        "unavailable_at": _ts(resp.unavailable_at),
    }


async def _safe_notify(fn, target: str, payload: dict[str, Any]) -> None:
    try:
        await fn(target, payload)
    except Exception:
        logger.exception("Failed to deliver %s notification to %s", payload.get("type"), target)


async def _get_response(db: AsyncSession, alert_id: uuid.UUID, donor_id: uuid.UUID) -> DonorResponse | None:
    result = await db.execute(
        select(DonorResponse).where(
            DonorResponse.alert_id == alert_id,
            DonorResponse.donor_id == donor_id,
        )
    )
    return result.scalar_one_or_none()


async def _get_response_or_404(db: AsyncSession, alert_id: uuid.UUID, donor_id: uuid.UUID) -> DonorResponse:
    response = await _get_response(db, alert_id, donor_id)
    if response is None:
        raise NotFoundError("response", f"for donor {donor_id} on alert {alert_id}")
    return response


def _ensure_open(alert: BloodAlert) -> None:
    if AlertStatus(alert.status) in TERMINAL_ALERT_STATUSES:
        raise InvalidStateError(f"Alert {alert.id} is {AlertStatus(alert.status).value}")


# ---------------------------------------------------------------------------
# Create / confirm
# ---------------------------------------------------------------------------

async def record_donor_response(
    db: AsyncSession,
    *,
    alert_id: uuid.UUID,
    donor_id: uuid.UUID,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Record a donor's first reaction to an alert as ``interested``."""
    now = now or datetime.utcnow()
    alert = await get_alert_or_404(db, alert_id, lock=True)
    _ensure_open(alert)
    if alert.expires_at is not None and alert.expires_at <= now:
        raise InvalidStateError(f"Alert {alert.id} has expired")

    donor = await db.get(Donor, donor_id)
    if donor is None:
        raise NotFoundError("donor", donor_id)
    if await _get_response(db, alert.id, donor.id) is not None:
        raise InvalidStateError(f"Donor {donor_id} already responded to alert {alert_id}")

    ctx = await MatchingContext.load(db, alert, donor_ids=[donor.id])
    profile = ctx.profile(str(donor.id))
    reason = explain_ineligibility(profile, alert.blood_type, now=now)
    if reason is not None:
        raise InvalidStateError(f"Donor {donor_id} is not eligible for alert {alert_id}: {reason}")
    eta = await get_travel_estimator().estimate(donor_location(profile), ctx.destination, ctx.urgency)
    match = build_match(
        profile, ctx.urgency, ctx.destination, ctx.histories.get(profile.donor_id, []),
        alert.blood_type, estimated_travel_time=eta,
    )

    matched = list(alert.matched_donors or [])
    is_replacement = alert.last_replacement_at is not None and str(donor.id) in matched

    response = DonorResponse(
        id=uuid.uuid4(),
        alert_id=alert.id,
        donor_id=donor.id,
        status=ResponseStatus.INTERESTED,
        match_score=match.match_score,
        final_score=match.final_score,
        response_speed_s=max(0, int((now - alert.created_at).total_seconds())),
        estimated_travel_time=eta,
        notes=notes,
        responded_at=now,
        is_replacement=is_replacement,
        replacement_for=alert.replaced_response_id if is_replacement else None,
    )
    db.add(response)

    if match.match_score > AUTO_MATCH_THRESHOLD and str(donor.id) not in matched:
        alert.matched_donors = matched + [str(donor.id)]
        alert.last_matching_update = now
    await db.flush()

    await ranking_service.refresh_rankings(db, alert.id, now=now)

    logger.info("Donor %s responded to alert %s (score %.2f)", donor.id, alert.id, match.match_score)
    await _safe_notify(notify_hospital, str(alert.hospital_id), {
        "type": "donor_response",
        "alert_id": str(alert.id),
        "donor_id": str(donor.id),
        "donor_name": donor.name,
        "match_score": match.match_score,
        "estimated_travel_time": eta,
    })
    return _response_to_dict(response)


async def confirm_donor_response(
    db: AsyncSession,
    *,
    alert_id: uuid.UUID,
    donor_id: uuid.UUID,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Donor confirms they can still donate (``interested``/``on_hold`` -> ``confirmed``)."""
    now = now or datetime.utcnow()
    alert = await get_alert_or_404(db, alert_id, lock=True)
    _ensure_open(alert)
    response = await _get_response_or_404(db, alert.id, donor_id)
    _check_transition(response, ResponseStatus.CONFIRMED)

    response.status = ResponseStatus.CONFIRMED
    response.confirmed_at = now
    if notes:
        response.notes = notes
    await db.flush()

    logger.info("Response %s status -> confirmed", response.id)
    await _safe_notify(notify_hospital, str(alert.hospital_id), {
        "type": "donor_confirmed",
        "alert_id": str(alert.id),
        "donor_id": str(donor_id),
    })
    return _response_to_dict(response)


# ---------------------------------------------------------------------------
# Hospital actions
# ---------------------------------------------------------------------------

async def manage_response(
    db: AsyncSession,
    *,
    alert_id: uuid.UUID,
    donor_id: uuid.UUID,
    action: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Apply a hospital action (accept, reject, hold, complete) to one response."""
    if action not in ACTIONS:
        raise InvalidStateError(f"Unknown action {action!r}")
    now = now or datetime.utcnow()
    alert = await get_alert_or_404(db, alert_id, lock=True)
    response = await _get_response_or_404(db, alert.id, donor_id)

    if action == "accept":
        return await _accept(db, alert, response, notes, now)

    _ensure_open(alert)
    if action == "reject":
        _check_transition(response, ResponseStatus.REJECTED)
        response.status = ResponseStatus.REJECTED
        response.rejected_at = now
    elif action == "hold":
        _check_transition(response, ResponseStatus.ON_HOLD)
        response.status = ResponseStatus.ON_HOLD
        response.held_at = now
    else:
        _check_transition(response, ResponseStatus.COMPLETED)
        response.status = ResponseStatus.COMPLETED
        response.completed_at = now
        alert.status = AlertStatus.COMPLETED
        alert.completed_at = now
        await learn_from_outcome(
            db, response.donor_id, ResponseStatus.COMPLETED,
            (response.response_speed_s or 0) / 60, now=now,
        )

    if notes is not None:
        response.hospital_notes = notes
    await db.flush()

    logger.info("Response %s status -> %s", response.id, response.status.value)
    await _safe_notify(notify_donor, str(donor_id), {
        "type": f"response_{response.status.value}",
        "alert_id": str(alert.id),
        "notes": notes,
    })
    return _response_to_dict(response)


async def _accept(
    db: AsyncSession,
    alert: BloodAlert,
    response: DonorResponse,
    notes: str | None,
    now: datetime,
) -> dict[str, Any]:
    # Accepting the already-accepted donor again changes nothing
    if response.status == ResponseStatus.ACCEPTED and alert.accepted_donor_id == response.donor_id:
        return _response_to_dict(response)

    if AlertStatus(alert.status) not in (AlertStatus.ACTIVE, AlertStatus.ESCALATED):
        raise InvalidStateError(
            f"Alert {alert.id} is {AlertStatus(alert.status).value}; cannot accept another donor"
        )
    _check_transition(response, ResponseStatus.ACCEPTED)

    result = await db.execute(
        select(DonorResponse).where(
            DonorResponse.alert_id == alert.id,
            DonorResponse.id != response.id,
        )
    )
    others = [r for r in result.scalars().all()
              if ResponseStatus(r.status) not in TERMINAL_RESPONSE_STATUSES]
    for other in others:
        _check_transition(other, ResponseStatus.ALERT_FULFILLED)

    response.status = ResponseStatus.ACCEPTED
    response.accepted_at = now
    response.is_primary_donor = True
    if notes is not None:
        response.hospital_notes = notes
    for other in others:
        other.status = ResponseStatus.ALERT_FULFILLED
        other.fulfilled_at = now
        other.is_primary_donor = False
        other.hospital_notes = FULFILLED_NOTE

    alert.accepted_donor_id = response.donor_id
    alert.status = AlertStatus.DONOR_CONFIRMED
    await db.flush()

    logger.info("Alert %s status -> donor_confirmed (donor %s)", alert.id, response.donor_id)
    await _safe_notify(notify_donor, str(response.donor_id), {
        "type": "response_accepted",
        "alert_id": str(alert.id),
        "notes": notes,
    })
    for other in others:
        await _safe_notify(notify_donor, str(other.donor_id), {
            "type": "alert_fulfilled",
            "alert_id": str(alert.id),
            "message": FULFILLED_NOTE,
        })
    return _response_to_dict(response)


# ---------------------------------------------------------------------------
# Unavailability, replacement and escalation
# ---------------------------------------------------------------------------

async def handle_donor_unavailability(
    db: AsyncSession,
    *,
    alert_id: uuid.UUID,
    donor_id: uuid.UUID,
    reason: UnavailabilityReason | str,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Mark a donor unavailable and look for up to three replacements.

    Returns ``{"success", "replacement_donors", "message"}``.  When nobody can
    replace the donor the alert is escalated and ``success`` is ``False``;
    that outcome is committed like any other.
    """
    reason = UnavailabilityReason(reason)
    now = now or datetime.utcnow()
    settings = get_settings()

    alert = await get_alert_or_404(db, alert_id, lock=True)
    _ensure_open(alert)

    result = await db.execute(select(Donor).where(Donor.id == donor_id).with_for_update())
    donor = result.scalar_one_or_none()
    if donor is None:
        raise NotFoundError("donor", donor_id)

    response = await _get_response(db, alert.id, donor.id)
    if response is not None:
        _check_transition(response, ResponseStatus.UNAVAILABLE)

    donor.availability = False
    donor.last_availability_update = now
    if response is not None:
        response.status = ResponseStatus.UNAVAILABLE
        response.unavailable_at = now
        response.unavailability_reason = reason
        response.is_primary_donor = False
        if notes:
            response.notes = notes
    if alert.accepted_donor_id == donor.id:
        alert.accepted_donor_id = None
        alert.status = AlertStatus.ACTIVE
    await db.flush()
    logger.info("Donor %s unavailable for alert %s (%s)", donor.id, alert.id, reason.value)

    if AlertStatus(alert.status) == AlertStatus.DONOR_CONFIRMED:
        return {
            "success": True,
            "replacement_donors": [],
            "message": "Alert already has an accepted donor. No replacement needed.",
        }

    result = await db.execute(select(DonorResponse).where(DonorResponse.alert_id == alert.id))
    existing = {str(r.donor_id): r for r in result.scalars().all()}
    excluded = {str(donor.id)} | {
        d for d, r in existing.items() if ResponseStatus(r.status) in _EXCLUDED_FROM_REPLACEMENT
    }

    ctx = await MatchingContext.load(db, alert)
    ranked = await rank_context(ctx, now=now)
    available = [
        m for m in ranked
        if m.donor_id not in excluded and m.availability and m.match_score > 0
    ]

    if not available:
        return await _escalate(db, alert, donor, existing.values(), now)

    top = available[:settings.MATCHED_DONORS_LIMIT]
    alert.matched_donors = [m.donor_id for m in top]
    alert.last_matching_update = now
    alert.last_replacement_at = now
    alert.replaced_response_id = response.id if response is not None else None
    alert.notifications_sent = (alert.notifications_sent or 0) + len(top)

    for match in top:
        previous = existing.get(match.donor_id)
        if previous is not None and ResponseStatus(previous.status) == ResponseStatus.ALERT_FULFILLED:
            previous.status = ResponseStatus.INTERESTED
            previous.is_replacement = True
            previous.replacement_for = alert.replaced_response_id
            previous.hospital_notes = REOPENED_NOTE
    await db.flush()

    logger.info("Alert %s: %d replacement donors matched after %s became unavailable",
                alert.id, len(top), donor.id)
    for match in top:
        await _safe_notify(notify_donor, match.donor_id, {
            "type": "replacement_request",
            "alert_id": str(alert.id),
            "blood_type": alert.blood_type,
            "urgency": alert.urgency.value,
            "location": alert.location,
            "estimated_travel_time": match.estimated_travel_time,
        })
    await _safe_notify(notify_hospital, str(alert.hospital_id), {
        "type": "donor_unavailable",
        "alert_id": str(alert.id),
        "donor_id": str(donor.id),
        "reason": reason.value,
        "replacements": [m.donor_id for m in top],
    })

    return {
        "success": True,
        "replacement_donors": [
            {
                "donor_id": m.donor_id,
                "name": m.name,
                "match_score": m.match_score,
                "final_score": m.final_score,
                "estimated_travel_time": m.estimated_travel_time,
                "availability": m.availability,
            }
            for m in top
        ],
        "message": f"Found {len(available)} replacement donors. "
                   f"Top {len(top)} have been notified.",
    }


async def _escalate(
    db: AsyncSession,
    alert: BloodAlert,
    donor: Donor,
    responses,
    now: datetime,
) -> dict[str, Any]:
    alert.status = AlertStatus.ESCALATED
    alert.escalated_at = now
    alert.escalation_reason = f"No replacement donors found after {donor.name} became unavailable"
    alert.escalation_level = ESCALATION_LEVEL
    for response in responses:
        if can_transition(response.status, ResponseStatus.ESCALATED):
            response.status = ResponseStatus.ESCALATED
    await db.flush()

    logger.warning("Alert %s status -> escalated: %s", alert.id, alert.escalation_reason)
    payload = {
        "type": "alert_escalated",
        "alert_id": str(alert.id),
        "blood_type": alert.blood_type,
        "urgency": alert.urgency.value,
        "escalation_level": alert.escalation_level,
        "reason": alert.escalation_reason,
    }
    await _safe_notify(notify_hospital, str(alert.hospital_id), payload)
    try:
        await broadcast_alert(payload)
    except Exception:
        logger.exception("Failed to broadcast escalation for alert %s", alert.id)

    return {
        "success": False,
        "replacement_donors": [],
        "message": "No replacement donors found. Alert has been escalated for urgent attention.",
    }
