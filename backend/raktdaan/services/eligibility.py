"""
Eligibility filter: which donors may answer a given blood alert.

A donor is eligible when they
- share the alert's blood type,
- do not have health status ``restricted``,
- report no disqualifying condition in their verification record,
- have not donated within ``MIN_DONATION_INTERVAL_DAYS`` (the verification
  record's last-donation date wins over the donor's own field).

Everything here is pure.  A donor whose profile cannot be resolved is treated
as ineligible (fail closed).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from raktdaan.config import get_settings
from raktdaan.models.donor import Donor, DonorVerification, HealthStatus

logger = logging.getLogger(__name__)

DISQUALIFYING_CONDITIONS = re.compile(
    r"hepatitis|hiv|malaria|recent surgery|pregnan", re.IGNORECASE,
)


@dataclass
class DonorProfile:
    """A donor merged with their verification record.

    Defaults for absent optional data:
    ``health_conditions`` is ``None`` when there is no verification record
    (distinct from an empty list, which means "verified, nothing reported");
    ``last_donation`` prefers the verification override.
    """
    donor_id: str
    name: str
    blood_type: str
    location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    availability: bool = False
    health_status: HealthStatus | None = None
    emergency_only: bool = False
    response_time: float | None = None
    success_rate: float | None = None
    last_donation: datetime | None = None
    last_availability_update: datetime | None = None
    health_conditions: list[str] | None = None
    verified: bool = False

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def resolve_donor_profile(
    donor: Donor,
    verification: DonorVerification | None = None,
) -> DonorProfile:
    """Merge a donor row and its (optional) verification row."""
    if donor is None:
        raise ValueError("donor is required")

    conditions = None
    last_donation = donor.last_donation
    if verification is not None:
        conditions = list(verification.health_conditions or [])
        if verification.last_donation_date is not None:
            last_donation = verification.last_donation_date

    health = donor.health_status
    if isinstance(health, str):
        health = HealthStatus(health)

    return DonorProfile(
        donor_id=str(donor.id),
        name=donor.name,
        blood_type=donor.blood_type,
        location=donor.location or "",
        latitude=donor.latitude,
        longitude=donor.longitude,
        availability=bool(donor.availability),
        health_status=health,
        emergency_only=bool(donor.emergency_only),
        response_time=donor.response_time,
        success_rate=donor.success_rate,
        last_donation=last_donation,
        last_availability_update=donor.last_availability_update,
        health_conditions=conditions,
        verified=verification is not None,
    )


def explain_ineligibility(
    profile: DonorProfile,
    blood_type: str,
    *,
    now: datetime | None = None,
) -> str | None:
    """Return the first reason *profile* cannot answer an alert, or ``None``."""
    now = now or datetime.utcnow()
    interval = timedelta(days=get_settings().MIN_DONATION_INTERVAL_DAYS)

    if profile.blood_type != blood_type:
        return "blood type mismatch"
    if profile.health_status == HealthStatus.RESTRICTED:
        return "health status restricted"
    for condition in profile.health_conditions or []:
        if DISQUALIFYING_CONDITIONS.search(str(condition)):
            return f"reported condition: {condition}"
    if profile.last_donation is not None and now - profile.last_donation < interval:
        return "donated within minimum interval"
    return None


def is_eligible(profile: DonorProfile, blood_type: str, *, now: datetime | None = None) -> bool:
    return explain_ineligibility(profile, blood_type, now=now) is None


def filter_eligible(
    blood_type: str,
    donors: Iterable[Donor],
    verifications: dict[str, DonorVerification] | None = None,
    *,
    now: datetime | None = None,
) -> list[DonorProfile]:
    """Reduce a donor population to eligible profiles, preserving input order."""
    verifications = verifications or {}
    eligible: list[DonorProfile] = []
    for donor in donors:
        try:
            profile = resolve_donor_profile(donor, verifications.get(str(donor.id)))
        except (ValueError, TypeError, AttributeError):
            logger.warning("Could not resolve donor profile for %s; treating as ineligible",
                           getattr(donor, "id", None))
            continue

        reason = explain_ineligibility(profile, blood_type, now=now)
        if reason is not None:
            logger.debug("Donor %s ineligible for %s: %s", profile.donor_id, blood_type, reason)
            continue
        eligible.append(profile)
    return eligible
