"""
Historical performance model.

``historical_score`` rates a donor's reliability from past responses for a
target (blood type, urgency).  ``apply_response_outcome`` is the incremental
update applied after an outcome; ``learn_from_outcome`` runs it against the
database under a per-donor row lock.  ``update_donor_availability`` flips the
donor back into (or out of) the matching pool under the same lock.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.models.alert import BloodAlert
from raktdaan.models.donor import Donor
from raktdaan.models.donor_response import DonorResponse, ResponseStatus
from raktdaan.services.errors import NotFoundError

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50
DEFAULT_RESPONSE_MINUTES = 30
DEFAULT_SUCCESS_RATE = 50

STATUS_POINTS: dict[ResponseStatus, int] = {
    ResponseStatus.COMPLETED: 30,
    ResponseStatus.CONFIRMED: 20,
    ResponseStatus.INTERESTED: 10,
}

SUCCESS_RATE_NUDGE: dict[ResponseStatus, int] = {
    ResponseStatus.COMPLETED: 5,
    ResponseStatus.CONFIRMED: 2,
    ResponseStatus.INTERESTED: -1,
}


def historical_score(
    history: Iterable[tuple[Any, Any]],
    blood_type: str,
    urgency: str,
) -> int:
    """Average reliability over ``(response, alert)`` pairs.

    Pairs whose alert is ``None`` (deleted) are skipped.  Returns the neutral
    50 when nothing usable remains.
    """
    total = 0.0
    valid = 0
    for response, alert in history:
        if alert is None:
            continue
        valid += 1
        total += STATUS_POINTS.get(ResponseStatus(response.status), 0)
        minutes = (response.response_speed_s or 0) / 60
        total += max(0.0, 20 - minutes)
        if alert.blood_type == blood_type:
            total += 25
        if alert.urgency == urgency:
            total += 25
    if not valid:
        return NEUTRAL_SCORE
    return round(total / valid)


def apply_response_outcome(
    response_time: float | None,
    success_rate: float | None,
    outcome: ResponseStatus,
    new_response_minutes: float,
) -> tuple[int, float]:
    """Return the updated ``(response_time, success_rate)`` pair."""
    current = response_time if response_time is not None else DEFAULT_RESPONSE_MINUTES
    new_avg = round((current + new_response_minutes) / 2)

    rate = success_rate if success_rate is not None else DEFAULT_SUCCESS_RATE
    rate = min(100, max(0, rate + SUCCESS_RATE_NUDGE.get(outcome, 0)))
    return new_avg, rate


async def load_histories(
    db: AsyncSession,
    donor_ids: list[uuid.UUID],
) -> dict[str, list[tuple[DonorResponse, BloodAlert | None]]]:
    """Fetch past responses (with their alerts) for many donors in one query."""
    histories: dict[str, list[tuple[DonorResponse, BloodAlert | None]]] = {str(d): [] for d in donor_ids}
    if not donor_ids:
        return histories
    result = await db.execute(
        select(DonorResponse, BloodAlert)
        .outerjoin(BloodAlert, BloodAlert.id == DonorResponse.alert_id)
        .where(DonorResponse.donor_id.in_(donor_ids))
    )
    for response, alert in result.all():
        histories[str(response.donor_id)].append((response, alert))
    return histories


async def learn_from_outcome(
    db: AsyncSession,
    donor_id: uuid.UUID,
    outcome: ResponseStatus,
    response_minutes: float,
    *,
    now: datetime | None = None,
) -> Donor:
    """Fold one outcome into the donor's rolling averages.

    The donor row is locked for the read-modify-write so concurrent outcomes
    from different alerts do not lose updates.
    """
    result = await db.execute(
        select(Donor).where(Donor.id == donor_id).with_for_update()
    )
    donor = result.scalar_one_or_none()
    if donor is None:
        raise NotFoundError("donor", donor_id)

    donor.response_time, donor.success_rate = apply_response_outcome(
        donor.response_time, donor.success_rate, outcome, response_minutes,
    )
    donor.last_availability_update = now or datetime.utcnow()
    await db.flush()

    logger.info(
        "Donor %s learned from %s: response_time=%s success_rate=%s",
        donor_id, outcome.value, donor.response_time, donor.success_rate,
    )
    return donor


async def update_donor_availability(
    db: AsyncSession,
    donor_id: uuid.UUID,
    available: bool,
    response_time: float | None = None,
    *,
    now: datetime | None = None,
) -> Donor:
    """Set the donor's availability flag, optionally with a new response time.

    Unavailability on one alert clears the flag for every alert, so this is
    the only way a donor returns to the matching pool.
    """
    if response_time is not None and response_time < 0:
        raise ValueError("response_time must be non-negative")
    result = await db.execute(
        select(Donor).where(Donor.id == donor_id).with_for_update()
    )
    donor = result.scalar_one_or_none()
    if donor is None:
        raise NotFoundError("donor", donor_id)

    donor.availability = available
    donor.last_availability_update = now or datetime.utcnow()
    if response_time is not None:
        donor.response_time = response_time
    await db.flush()

    logger.info("Donor %s availability -> %s", donor_id, available)
    return donor
