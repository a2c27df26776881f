"""
Travel estimator: donor-to-hospital ETA in whole minutes.

``HeuristicEstimator`` is the shipped implementation: 2 minutes per km,
scaled by an urgency multiplier (critical routes faster), then by a
time-of-day traffic multiplier.  Anything honouring the ``TravelEstimator``
protocol can replace it through ``set_travel_estimator``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, Protocol

from raktdaan.config import get_settings
from raktdaan.models.alert import AlertUrgency
from raktdaan.services.match_scoring import estimate_distance_km

logger = logging.getLogger(__name__)

Location = tuple[float, float] | str

MINUTES_PER_KM = 2

URGENCY_MULTIPLIERS: dict[AlertUrgency, float] = {
    AlertUrgency.CRITICAL: 0.7,
    AlertUrgency.URGENT: 0.85,
    AlertUrgency.NORMAL: 1.0,
}


def traffic_multiplier(hour: int) -> float:
    """Rush hours slow travel down, nights speed it up."""
    if 7 <= hour <= 9:
        return 1.3
    if 17 <= hour <= 19:
        return 1.4
    if hour >= 22 or hour <= 6:
        return 0.8
    return 1.0


class TravelEstimator(Protocol):
    async def estimate(self, origin: Location, destination: Location, urgency: AlertUrgency | str) -> int:
        ...


class HeuristicEstimator:
    """Distance-based ETA.  *clock* is injectable so tests can pin the hour."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or datetime.now

    def estimate_sync(self, origin: Location, destination: Location, urgency: AlertUrgency | str) -> int:
        urgency = AlertUrgency(urgency)
        distance = estimate_distance_km(origin, destination)
        minutes = round(distance * MINUTES_PER_KM * URGENCY_MULTIPLIERS[urgency])
        return round(minutes * traffic_multiplier(self._clock().hour))

    async def estimate(self, origin: Location, destination: Location, urgency: AlertUrgency | str) -> int:
        return self.estimate_sync(origin, destination, urgency)


_estimator: TravelEstimator = HeuristicEstimator()


def get_travel_estimator() -> TravelEstimator:
    return _estimator


def set_travel_estimator(estimator: TravelEstimator) -> None:
    global _estimator
    _estimator = estimator


async def estimate_many(
    pairs: Iterable[tuple[Location, Location]],
    urgency: AlertUrgency | str,
    *,
    estimator: TravelEstimator | None = None,
    concurrency: int | None = None,
) -> list[int]:
    """Estimate several ETAs concurrently, preserving input order."""
    estimator = estimator or get_travel_estimator()
    semaphore = asyncio.Semaphore(concurrency or get_settings().TRAVEL_ESTIMATE_CONCURRENCY)

    async def _one(origin: Location, destination: Location) -> int:
        async with semaphore:
            return await estimator.estimate(origin, destination, urgency)

    return list(await asyncio.gather(*(_one(o, d) for o, d in pairs)))
