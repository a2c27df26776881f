"""
Match scorer: multi-factor compatibility between one donor and one alert.

Components (each floored at 0):
- distance      max(0, 30 - 2 * km)
- health        excellent 25, good 20, fair 15, restricted 5, unset 15
- availability  20 when available
- response      max(0, 15 - average response minutes), default 10 minutes
- success       success rate / 10, capped at 10, default rate 50
- emergency     +10 for critical alerts and emergency-only donors
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, asdict
from typing import Any

from raktdaan.models.alert import AlertUrgency
from raktdaan.models.donor import HealthStatus
from raktdaan.services.eligibility import DonorProfile

EARTH_RADIUS_KM = 6371

HEALTH_SCORES: dict[HealthStatus, int] = {
    HealthStatus.EXCELLENT: 25,
    HealthStatus.GOOD: 20,
    HealthStatus.FAIR: 15,
    HealthStatus.RESTRICTED: 5,
}
DEFAULT_HEALTH_SCORE = 15
DEFAULT_RESPONSE_MINUTES = 10
DEFAULT_SUCCESS_RATE = 50

# Location-string fallback distances (km)
SAME_PLACE_KM = 1.0
SHARED_AREA_KM = 8.0
UNKNOWN_DISTANCE_KM = 20.0

_COORD_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")
_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class ScoreBreakdown:
    total_score: float
    distance: float
    distance_score: float
    health_score: float
    availability_score: float
    response_score: float
    success_score: float
    emergency_bonus: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------------

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def parse_coordinates(location: str | None) -> tuple[float, float] | None:
    """Parse a ``"lat,lng"`` string, or return ``None``."""
    if not location:
        return None
    m = _COORD_RE.match(location)
    if not m:
        return None
    lat, lng = float(m.group(1)), float(m.group(2))
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return lat, lng


def location_string_distance(a: str | None, b: str | None) -> float:
    """Deterministic stand-in distance for two free-text locations."""
    tokens_a = set(_TOKEN_RE.findall((a or "").lower()))
    tokens_b = set(_TOKEN_RE.findall((b or "").lower()))
    if not tokens_a or not tokens_b:
        return UNKNOWN_DISTANCE_KM
    if tokens_a == tokens_b:
        return SAME_PLACE_KM
    if tokens_a & tokens_b:
        return SHARED_AREA_KM
    return UNKNOWN_DISTANCE_KM


def estimate_distance_km(
    origin: tuple[float, float] | str | None,
    destination: tuple[float, float] | str | None,
) -> float:
    """Distance between two locations, each a ``(lat, lng)`` pair or a string.

    Coordinates (given directly or as ``"lat,lng"`` strings) use haversine;
    anything else falls back to the location-string heuristic.
    """
    a = origin if isinstance(origin, tuple) else parse_coordinates(origin)
    b = destination if isinstance(destination, tuple) else parse_coordinates(destination)
    if a is not None and b is not None:
        return haversine_km(a[0], a[1], b[0], b[1])
    return location_string_distance(
        origin if isinstance(origin, str) else None,
        destination if isinstance(destination, str) else None,
    )


def donor_location(profile: DonorProfile) -> tuple[float, float] | str:
    if profile.has_coordinates:
        return profile.latitude, profile.longitude
    return profile.location


def hospital_location(hospital, alert_location: str | None) -> tuple[float, float] | str:
    """Hospital coordinates when known, else the alert's location string."""
    if hospital is not None and hospital.latitude is not None and hospital.longitude is not None:
        return hospital.latitude, hospital.longitude
    return alert_location or ""


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def score_donor(
    profile: DonorProfile,
    urgency: AlertUrgency | str,
    destination: tuple[float, float] | str | None,
) -> ScoreBreakdown:
    """Score one donor for one alert located at *destination*."""
    urgency = AlertUrgency(urgency)
    distance = estimate_distance_km(donor_location(profile), destination)

    distance_score = max(0.0, 30 - distance * 2)
    health_score = HEALTH_SCORES.get(profile.health_status, DEFAULT_HEALTH_SCORE)
    availability_score = 20 if profile.availability else 0

    response_minutes = profile.response_time if profile.response_time is not None else DEFAULT_RESPONSE_MINUTES
    response_score = max(0.0, 15 - response_minutes)

    success_rate = profile.success_rate if profile.success_rate is not None else DEFAULT_SUCCESS_RATE
    success_score = min(10.0, max(0.0, success_rate / 10))

    emergency_bonus = 10 if urgency == AlertUrgency.CRITICAL and profile.emergency_only else 0

    total = (
        distance_score + health_score + availability_score
        + response_score + success_score + emergency_bonus
    )
    return ScoreBreakdown(
        total_score=round(total, 2),
        distance=round(distance, 2),
        distance_score=distance_score,
        health_score=health_score,
        availability_score=availability_score,
        response_score=response_score,
        success_score=success_score,
        emergency_bonus=emergency_bonus,
    )
