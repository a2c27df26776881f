"""
Analytics aggregator: read-only rollups over an alert's responses.

The ``summarize_*`` functions are pure.  They accept any objects exposing the
response attributes (ORM rows, or records rebuilt from serialized
snapshots), so the same rollup can be recomputed from an export.  The async
wrappers load the rows and never modify them.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.models.alert import AlertStatus
from raktdaan.models.donor import Donor
from raktdaan.models.donor_response import DonorResponse, ResponseStatus
from raktdaan.services.ranking_service import get_alert_or_404

logger = logging.getLogger(__name__)

BREAKDOWN_STATUSES = (
    ResponseStatus.INTERESTED,
    ResponseStatus.CONFIRMED,
    ResponseStatus.ACCEPTED,
    ResponseStatus.REJECTED,
    ResponseStatus.ON_HOLD,
    ResponseStatus.COMPLETED,
    ResponseStatus.ALERT_FULFILLED,
    ResponseStatus.UNAVAILABLE,
    ResponseStatus.ESCALATED,
)

TOP_RESPONDERS = 5
DEFAULT_COMPLETION_MINUTES = 30
ASSUMED_TRAVEL_MINUTES = 30


def _status(resp) -> ResponseStatus:
    return ResponseStatus(resp.status or ResponseStatus.INTERESTED)


def _speed_minutes(resp) -> float | None:
    if resp.response_speed_s is None:
        return None
    return resp.response_speed_s / 60


def responder_score(resp) -> float:
    """``0.7 * match + 0.3 * (30 - speed minutes)``; missing speed counts as 30 minutes."""
    speed = _speed_minutes(resp)
    speed = 30 if speed is None else speed
    return 0.7 * (resp.match_score or 0) + 0.3 * (30 - speed)


def fulfillment_status(breakdown: Mapping[str, int]) -> str:
    if breakdown.get("completed"):
        return "completed"
    if breakdown.get("accepted"):
        return "donor_confirmed"
    if breakdown.get("confirmed"):
        return "donors_interested"
    if breakdown.get("interested"):
        return "initial_responses"
    return "waiting"


def summarize_responses(
    responses: Iterable[Any],
    donor_names: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Counts, timeline, average speed, top responders and fulfilment state."""
    responses = list(responses)
    donor_names = donor_names or {}

    counts = Counter(_status(r) for r in responses)
    breakdown = {s.value: counts.get(s, 0) for s in BREAKDOWN_STATUSES}

    speeds = [r.response_speed_s for r in responses if r.response_speed_s and r.response_speed_s > 0]
    average_minutes = round(sum(speeds) / len(speeds) / 60) if speeds else 0

    timeline = sorted(
        (
            {
                "donor_id": str(r.donor_id),
                "donor_name": donor_names.get(str(r.donor_id), "Unknown"),
                "status": _status(r).value,
                "responded_at": r.responded_at.isoformat() if r.responded_at else None,
                "match_score": r.match_score or 0,
                "priority_rank": r.priority_rank or 0,
                "accepted_at": r.accepted_at.isoformat() if r.accepted_at else None,
                "hospital_notes": r.hospital_notes,
            }
            for r in responses
        ),
        key=lambda item: (item["responded_at"] or "", item["donor_id"]),
    )

    ranked = sorted(responses, key=lambda r: (-responder_score(r), str(r.donor_id)))
    top_responders = [
        {
            "donor_id": str(r.donor_id),
            "name": donor_names.get(str(r.donor_id), "Unknown"),
            "match_score": r.match_score or 0,
            "response_speed_s": r.response_speed_s or 0,
            "status": _status(r).value,
        }
        for r in ranked[:TOP_RESPONDERS]
    ]

    accepted = next((r for r in responses if _status(r) == ResponseStatus.ACCEPTED), None)
    if accepted is not None and accepted.estimated_travel_time:
        completion = accepted.estimated_travel_time
    else:
        completion = DEFAULT_COMPLETION_MINUTES

    return {
        "total_responses": len(responses),
        "response_breakdown": breakdown,
        "response_timeline": timeline,
        "average_response_time": average_minutes,
        "top_responders": top_responders,
        "fulfillment_status": fulfillment_status(breakdown),
        "estimated_completion_time": completion,
    }


def summarize_matching(notifications_sent: int | None, responses: Iterable[Any]) -> dict[str, Any]:
    """Notified donors vs. responders, response rate and fulfilment estimate (hours)."""
    responses = list(responses)
    notified = notifications_sent or 0
    responders = len(responses)
    rate = responders / notified * 100 if notified > 0 else 0

    average_minutes = (
        sum(r.response_speed_s or 0 for r in responses) / responders / 60 if responders else 0
    )
    successful = sum(
        1 for r in responses if _status(r) in (ResponseStatus.CONFIRMED, ResponseStatus.COMPLETED)
    )
    return {
        "total_donors_found": notified,
        "eligible_donors": responders,
        "response_rate": round(rate, 2),
        "average_response_time": round(average_minutes, 2),
        "successful_matches": successful,
        "estimated_fulfillment_time": (
            round((average_minutes + ASSUMED_TRAVEL_MINUTES) / 60) if responders else 0
        ),
    }


def summarize_unavailability(responses: Iterable[Any]) -> dict[str, Any]:
    """Why donors dropped out and how often a replacement was accepted."""
    responses = list(responses)
    unavailable = [r for r in responses if _status(r) == ResponseStatus.UNAVAILABLE]

    reasons = Counter(
        (r.unavailability_reason.value if hasattr(r.unavailability_reason, "value")
         else r.unavailability_reason) or "unknown"
        for r in unavailable
    )
    reason_rows = [
        {"reason": reason, "count": count, "percentage": round(count / len(unavailable) * 100)}
        for reason, count in sorted(reasons.items())
    ]

    replaced = sum(
        1 for r in responses if _status(r) == ResponseStatus.ACCEPTED and r.is_replacement
    )
    return {
        "total_unavailable": len(unavailable),
        "unavailability_reasons": reason_rows,
        "average_response_time": (
            round(sum(r.response_speed_s or 0 for r in unavailable) / len(unavailable) / 60)
            if unavailable else 0
        ),
        "replacement_success_rate": round(replaced / len(unavailable) * 100) if unavailable else 0,
        "escalated_responses": sum(1 for r in responses if _status(r) == ResponseStatus.ESCALATED),
    }


# ---------------------------------------------------------------------------
# Database-backed views
# ---------------------------------------------------------------------------

async def _load_responses(db: AsyncSession, alert_id: uuid.UUID) -> list[DonorResponse]:
    result = await db.execute(
        select(DonorResponse)
        .where(DonorResponse.alert_id == alert_id)
        .order_by(DonorResponse.responded_at)
    )
    return list(result.scalars().all())


async def _donor_names(db: AsyncSession, donor_ids: list[uuid.UUID]) -> dict[str, str]:
    if not donor_ids:
        return {}
    result = await db.execute(select(Donor.id, Donor.name).where(Donor.id.in_(donor_ids)))
    return {str(row.id): row.name for row in result.all()}


async def get_response_analytics(db: AsyncSession, alert_id: uuid.UUID) -> dict[str, Any]:
    alert = await get_alert_or_404(db, alert_id)
    responses = await _load_responses(db, alert.id)
    names = await _donor_names(db, [r.donor_id for r in responses])
    return summarize_responses(responses, names)


async def get_matching_analytics(db: AsyncSession, alert_id: uuid.UUID) -> dict[str, Any]:
    alert = await get_alert_or_404(db, alert_id)
    responses = await _load_responses(db, alert.id)
    return summarize_matching(alert.notifications_sent, responses)


async def get_unavailability_analytics(db: AsyncSession, alert_id: uuid.UUID) -> dict[str, Any]:
    alert = await get_alert_or_404(db, alert_id)
    data = summarize_unavailability(await _load_responses(db, alert.id))
    data["alert_escalated"] = AlertStatus(alert.status) == AlertStatus.ESCALATED
    return data


async def get_donor_availability_updates(db: AsyncSession, alert_id: uuid.UUID) -> list[dict[str, Any]]:
    """Per-responder availability, status, rank and ETA."""
    alert = await get_alert_or_404(db, alert_id)
    responses = await _load_responses(db, alert.id)
    if not responses:
        return []
    result = await db.execute(select(Donor).where(Donor.id.in_([r.donor_id for r in responses])))
    donors = {str(d.id): d for d in result.scalars().all()}

    updates = []
    for r in responses:
        donor = donors.get(str(r.donor_id))
        if donor is None:
            continue
        last_update: datetime | None = donor.last_availability_update
        updates.append({
            "donor_id": str(donor.id),
            "name": donor.name,
            "availability": bool(donor.availability),
            "last_update": last_update.isoformat() if last_update else None,
            "status": _status(r).value,
            "match_score": r.match_score or 0,
            "priority_rank": r.priority_rank or 0,
            "estimated_travel_time": r.estimated_travel_time or 0,
        })
    return updates
