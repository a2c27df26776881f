"""Alert priority: an urgency metric independent of any donor."""

from __future__ import annotations

from datetime import datetime

from raktdaan.models.alert import AlertUrgency

URGENCY_BASE: dict[AlertUrgency, int] = {
    AlertUrgency.CRITICAL: 100,
    AlertUrgency.URGENT: 70,
    AlertUrgency.NORMAL: 30,
}

RARE_BLOOD_TYPES = frozenset({"AB-", "B-", "AB+"})
RARITY_BONUS = 20


def time_sensitivity_bonus(hours_until_expiry: float) -> int:
    if hours_until_expiry < 1:
        return 50
    if hours_until_expiry < 3:
        return 30
    if hours_until_expiry < 6:
        return 15
    return 0


def units_bonus(units_needed: int) -> int:
    if units_needed > 5:
        return 25
    if units_needed > 2:
        return 15
    return 0


def calculate_priority(
    urgency: AlertUrgency | str,
    blood_type: str,
    units_needed: int,
    expires_at: datetime,
    *,
    now: datetime | None = None,
) -> int:
    """Urgency base + time-to-expiry bonus + rarity bonus + units bonus."""
    now = now or datetime.utcnow()
    hours = (expires_at - now).total_seconds() / 3600

    score = URGENCY_BASE[AlertUrgency(urgency)]
    score += time_sensitivity_bonus(hours)
    if blood_type in RARE_BLOOD_TYPES:
        score += RARITY_BONUS
    score += units_bonus(units_needed)
    return score
