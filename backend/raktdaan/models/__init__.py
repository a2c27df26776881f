from raktdaan.models.donor import Donor, DonorVerification, BloodType, HealthStatus
from raktdaan.models.hospital import Hospital
from raktdaan.models.alert import BloodAlert, AlertUrgency, AlertStatus, TERMINAL_ALERT_STATUSES
from raktdaan.models.donor_response import DonorResponse, ResponseStatus, UnavailabilityReason
from raktdaan.models.user import User, UserRole

__all__ = [
    "Donor",
    "DonorVerification",
    "BloodType",
    "HealthStatus",
    "Hospital",
    "BloodAlert",
    "AlertUrgency",
    "AlertStatus",
    "TERMINAL_ALERT_STATUSES",
    "DonorResponse",
    "ResponseStatus",
    "UnavailabilityReason",
    "User",
    "UserRole",
]
