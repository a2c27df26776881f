"""
Ranking engine: final scores and the total order over candidate donors.

    final = match + 0.3 * historical + 25 (available)
          + 30 (critical alert and emergency-only donor)
          + health bonus + max(0, 30 - response minutes)

Two final scores within ``TIE_BAND`` points are treated as tied and broken by
availability, health priority, response time (ascending), success rate
(descending) and finally donor id.  Candidates are pre-sorted by donor id so
the same inputs always produce the same order, which keeps re-ranking
idempotent.

Each operation loads its alert, hospital, donors, verifications and donor
histories once into a ``MatchingContext`` and scores from that snapshot.
"""

from __future__ import annotations

import functools
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.models.alert import BloodAlert, AlertUrgency
from raktdaan.models.donor import Donor, DonorVerification, HealthStatus
from raktdaan.models.donor_response import DonorResponse
from raktdaan.models.hospital import Hospital
from raktdaan.services.eligibility import DonorProfile, filter_eligible, resolve_donor_profile
from raktdaan.services.errors import NotFoundError
from raktdaan.services.match_scoring import ScoreBreakdown, score_donor, donor_location, hospital_location
from raktdaan.services.performance import historical_score, load_histories
from raktdaan.services.travel_service import Location, estimate_many

logger = logging.getLogger(__name__)

TIE_BAND = 15
HISTORICAL_WEIGHT = 0.3
AVAILABILITY_BONUS = 25
EMERGENCY_BONUS = 30
DEFAULT_RESPONSE_MINUTES = 30
DEFAULT_ESTIMATED_RESPONSE_MINUTES = 5
TOP_DONORS = 3

HEALTH_BONUS: dict[HealthStatus, int] = {
    HealthStatus.EXCELLENT: 20,
    HealthStatus.GOOD: 15,
    HealthStatus.FAIR: 10,
    HealthStatus.RESTRICTED: 0,
}
DEFAULT_HEALTH_BONUS = 10

HEALTH_PRIORITY: dict[HealthStatus, int] = {
    HealthStatus.EXCELLENT: 4,
    HealthStatus.GOOD: 3,
    HealthStatus.FAIR: 2,
    HealthStatus.RESTRICTED: 1,
}


@dataclass
class DonorMatch:
    donor_id: str
    name: str
    blood_type: str
    location: str
    distance: float
    estimated_travel_time: int
    match_score: float
    final_score: float
    historical_score: int
    availability: bool
    health_status: HealthStatus | None = None
    response_time: float | None = None
    success_rate: float | None = None
    emergency_only: bool = False
    last_donation: datetime | None = None
    priority_rank: int | None = None
    breakdown: ScoreBreakdown | None = field(default=None, repr=False)

    @property
    def estimated_response_time(self) -> int:
        if self.response_time is None:
            return DEFAULT_ESTIMATED_RESPONSE_MINUTES
        return round(self.response_time)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("breakdown")
        data["health_status"] = self.health_status.value if self.health_status else None
        data["last_donation"] = self.last_donation.isoformat() if self.last_donation else None
        data["estimated_response_time"] = self.estimated_response_time
        return data


# ---------------------------------------------------------------------------
# Pure scoring and ordering
# ---------------------------------------------------------------------------

def derived_health(profile: DonorProfile) -> HealthStatus:
    """Health status used for the ranking bonus.

    Unset status counts as ``good`` when the donor's verification reports no
    conditions at all, otherwise ``fair``.
    """
    if profile.health_status is not None:
        return profile.health_status
    if profile.health_conditions is not None and len(profile.health_conditions) == 0:
        return HealthStatus.GOOD
    return HealthStatus.FAIR


def compute_final_score(
    match_score: float,
    historical: float,
    profile: DonorProfile,
    urgency: AlertUrgency | str,
) -> float:
    score = match_score + historical * HISTORICAL_WEIGHT
    if profile.availability:
        score += AVAILABILITY_BONUS
    if AlertUrgency(urgency) == AlertUrgency.CRITICAL and profile.emergency_only:
        score += EMERGENCY_BONUS
    score += HEALTH_BONUS.get(derived_health(profile), DEFAULT_HEALTH_BONUS)
    response_minutes = profile.response_time if profile.response_time is not None else DEFAULT_RESPONSE_MINUTES
    score += max(0.0, 30 - response_minutes)
    return round(score, 2)


def _health_priority(status: HealthStatus | None) -> int:
    return HEALTH_PRIORITY.get(status or HealthStatus.FAIR, 2)


def compare_matches(a: DonorMatch, b: DonorMatch) -> int:
    """``cmp``-style comparator: negative when *a* ranks ahead of *b*."""
    if abs(a.final_score - b.final_score) > TIE_BAND:
        return -1 if a.final_score > b.final_score else 1

    if a.availability != b.availability:
        return -1 if a.availability else 1

    a_health, b_health = _health_priority(a.health_status), _health_priority(b.health_status)
    if a_health != b_health:
        return b_health - a_health

    a_rt = a.response_time if a.response_time is not None else DEFAULT_RESPONSE_MINUTES
    b_rt = b.response_time if b.response_time is not None else DEFAULT_RESPONSE_MINUTES
    if a_rt != b_rt:
        return -1 if a_rt < b_rt else 1

    a_sr, b_sr = a.success_rate or 0, b.success_rate or 0
    if a_sr != b_sr:
        return -1 if a_sr > b_sr else 1

    return (a.donor_id > b.donor_id) - (a.donor_id < b.donor_id)


def rank_matches(matches: list[DonorMatch]) -> list[DonorMatch]:
    """Order matches best-first; input order does not affect the result."""
    ordered = sorted(matches, key=lambda m: m.donor_id)
    return sorted(ordered, key=functools.cmp_to_key(compare_matches))


def build_match(
    profile: DonorProfile,
    urgency: AlertUrgency | str,
    destination: Location,
    history: list,
    blood_type: str,
    estimated_travel_time: int = 0,
) -> DonorMatch:
    breakdown = score_donor(profile, urgency, destination)
    hist = historical_score(history, blood_type, AlertUrgency(urgency).value)
    return DonorMatch(
        donor_id=profile.donor_id,
        name=profile.name,
        blood_type=profile.blood_type,
        location=profile.location,
        distance=breakdown.distance,
        estimated_travel_time=estimated_travel_time,
        match_score=breakdown.total_score,
        final_score=compute_final_score(breakdown.total_score, hist, profile, urgency),
        historical_score=hist,
        availability=profile.availability,
        health_status=profile.health_status,
        response_time=profile.response_time,
        success_rate=profile.success_rate,
        emergency_only=profile.emergency_only,
        last_donation=profile.last_donation,
        breakdown=breakdown,
    )


# ---------------------------------------------------------------------------
# Request-scoped snapshot
# ---------------------------------------------------------------------------

@dataclass
class MatchingContext:
    alert: BloodAlert
    hospital: Hospital | None
    donors: list[Donor]
    verifications: dict[str, DonorVerification]
    histories: dict[str, list]
    _by_id: dict[str, Donor] = field(init=False, repr=False)

    def __post_init__(self):
        self._by_id = {str(d.id): d for d in self.donors}

    @property
    def destination(self) -> Location:
        return hospital_location(self.hospital, self.alert.location)

    @property
    def urgency(self) -> AlertUrgency:
        return AlertUrgency(self.alert.urgency)

    def profile(self, donor_id: str) -> DonorProfile | None:
        donor = self._by_id.get(donor_id)
        if donor is None:
            return None
        return resolve_donor_profile(donor, self.verifications.get(donor_id))

    @classmethod
    async def load(
        cls,
        db: AsyncSession,
        alert: BloodAlert,
        *,
        donor_ids: list[uuid.UUID] | None = None,
    ) -> "MatchingContext":
        """Snapshot the alert's hospital plus either every same-type donor or *donor_ids*."""
        hospital = await db.get(Hospital, alert.hospital_id)

        query = select(Donor)
        if donor_ids is None:
            query = query.where(Donor.blood_type == alert.blood_type)
        else:
            query = query.where(Donor.id.in_(donor_ids))
        result = await db.execute(query)
        donors = sorted(result.scalars().all(), key=lambda d: str(d.id))

        ids = [d.id for d in donors]
        verifications: dict[str, DonorVerification] = {}
        if ids:
            result = await db.execute(
                select(DonorVerification).where(DonorVerification.donor_id.in_(ids))
            )
            verifications = {str(v.donor_id): v for v in result.scalars().all()}

        histories = await load_histories(db, ids)
        return cls(alert=alert, hospital=hospital, donors=donors,
                   verifications=verifications, histories=histories)


async def get_alert_or_404(db: AsyncSession, alert_id: uuid.UUID, *, lock: bool = False) -> BloodAlert:
    query = select(BloodAlert).where(BloodAlert.id == alert_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    alert = result.scalar_one_or_none()
    if alert is None:
        raise NotFoundError("alert", alert_id)
    return alert


async def rank_context(
    ctx: MatchingContext,
    *,
    now: datetime | None = None,
) -> list[DonorMatch]:
    """Eligibility filter, scoring, ETA fan-out and ordering over *ctx*."""
    alert = ctx.alert
    profiles = filter_eligible(alert.blood_type, ctx.donors, ctx.verifications, now=now)
    if not profiles:
        return []

    destination = ctx.destination
    etas = await estimate_many(
        [(donor_location(p), destination) for p in profiles], ctx.urgency,
    )
    matches = [
        build_match(p, ctx.urgency, destination, ctx.histories.get(p.donor_id, []),
                    alert.blood_type, estimated_travel_time=eta)
        for p, eta in zip(profiles, etas)
    ]
    return rank_matches(matches)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def find_eligible_donors(
    db: AsyncSession,
    alert_id: uuid.UUID,
    limit: int | None = None,
    *,
    now: datetime | None = None,
) -> list[DonorMatch]:
    """Eligible donors for an alert, best first.  Empty when nobody qualifies."""
    alert = await get_alert_or_404(db, alert_id)
    ctx = await MatchingContext.load(db, alert)
    ranked = await rank_context(ctx, now=now)
    if limit is not None:
        ranked = ranked[:limit]
    return ranked


async def get_top_recommended_donors(
    db: AsyncSession,
    alert_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> list[DonorMatch]:
    top = await find_eligible_donors(db, alert_id, limit=TOP_DONORS, now=now)
    for rank, match in enumerate(top, start=1):
        match.priority_rank = rank
    return top


async def refresh_rankings(
    db: AsyncSession,
    alert_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Re-score the alert's existing responders and reassign ``priority_rank``.

    Eligibility is not re-run.  Responses whose donor no longer resolves keep
    no rank.  Safe to call repeatedly.
    """
    now = now or datetime.utcnow()
    alert = await get_alert_or_404(db, alert_id, lock=True)

    result = await db.execute(select(DonorResponse).where(DonorResponse.alert_id == alert.id))
    responses = {str(r.donor_id): r for r in result.scalars().all()}

    ctx = await MatchingContext.load(db, alert, donor_ids=[r.donor_id for r in responses.values()])
    destination = ctx.destination

    matches: list[DonorMatch] = []
    for donor_id, response in responses.items():
        profile = ctx.profile(donor_id)
        if profile is None:
            response.priority_rank = None
            logger.warning("Response %s references missing donor %s", response.id, donor_id)
            continue
        matches.append(build_match(
            profile, ctx.urgency, destination, ctx.histories.get(donor_id, []),
            alert.blood_type, estimated_travel_time=response.estimated_travel_time or 0,
        ))

    ranked = rank_matches(matches)
    for rank, match in enumerate(ranked, start=1):
        response = responses[match.donor_id]
        response.priority_rank = rank
        response.match_score = match.match_score
        response.final_score = match.final_score
        response.last_ranking_update = now
        match.priority_rank = rank

    alert.last_ranking_update = now
    alert.total_responses = len(ranked)
    alert.top_donor_score = ranked[0].final_score if ranked else 0
    await db.flush()

    logger.info("Re-ranked %d responses for alert %s", len(ranked), alert.id)
    return [
        {"donor_id": m.donor_id, "priority_rank": m.priority_rank, "final_score": m.final_score}
        for m in ranked
    ]


async def refresh_travel_times(
    db: AsyncSession,
    alert_id: uuid.UUID,
) -> dict[str, int]:
    """Recompute every responder's ETA in one bounded fan-out."""
    alert = await get_alert_or_404(db, alert_id, lock=True)
    result = await db.execute(select(DonorResponse).where(DonorResponse.alert_id == alert.id))
    responses = {str(r.donor_id): r for r in result.scalars().all()}

    ctx = await MatchingContext.load(db, alert, donor_ids=[r.donor_id for r in responses.values()])
    profiles = [p for p in (ctx.profile(d) for d in sorted(responses)) if p is not None]
    destination = ctx.destination
    etas = await estimate_many([(donor_location(p), destination) for p in profiles], ctx.urgency)

    updated: dict[str, int] = {}
    for profile, eta in zip(profiles, etas):
        responses[profile.donor_id].estimated_travel_time = eta
        updated[profile.donor_id] = eta
    await db.flush()
    return updated
