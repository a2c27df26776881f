"""
Match scorer tests

Distance helpers and the multi-factor donor score.
"""

import pytest

from raktdaan.models.alert import AlertUrgency
from raktdaan.models.donor import HealthStatus
from raktdaan.services.eligibility import DonorProfile
from raktdaan.services.match_scoring import (
    estimate_distance_km,
    haversine_km,
    hospital_location,
    location_string_distance,
    parse_coordinates,
    score_donor,
)

from conftest import HOSPITAL_COORDS


def profile(**kw) -> DonorProfile:
    fields = dict(
        donor_id="d1",
        name="Asha",
        blood_type="O-",
        location="Kathmandu",
        latitude=HOSPITAL_COORDS[0],
        longitude=HOSPITAL_COORDS[1],
        availability=True,
        health_status=HealthStatus.EXCELLENT,
        response_time=5,
        success_rate=80,
    )
    fields.update(kw)
    return DonorProfile(**fields)


class TestDistance:
    def test_haversine_zero(self):
        assert haversine_km(27.7, 85.3, 27.7, 85.3) == 0

    def test_haversine_one_degree_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)

    def test_parse_coordinates(self):
        assert parse_coordinates("27.7172, 85.3240") == (27.7172, 85.324)
        assert parse_coordinates("Kathmandu") is None
        assert parse_coordinates("95,10") is None
        assert parse_coordinates(None) is None

    def test_location_string_fallback(self):
        """Should map free-text locations onto fixed stand-in distances"""
        assert location_string_distance("Kathmandu", "kathmandu") == 1.0
        assert location_string_distance("New Baneshwor, Kathmandu", "Kathmandu Durbar") == 8.0
        assert location_string_distance("Pokhara", "Kathmandu") == 20.0
        assert location_string_distance("", "Kathmandu") == 20.0

    def test_coordinate_strings_use_haversine(self):
        assert estimate_distance_km("0,0", (1.0, 0.0)) == pytest.approx(111.19, abs=0.01)

    def test_hospital_location_falls_back_to_alert_location(self):
        assert hospital_location(None, "Lalitpur") == "Lalitpur"


class TestScoreDonor:
    """Score composition"""

    def test_full_score_for_ideal_critical_donor(self):
        breakdown = score_donor(profile(emergency_only=True), AlertUrgency.CRITICAL, HOSPITAL_COORDS)
        # 30 distance + 25 health + 20 available + 10 response + 8 success + 10 emergency
        assert breakdown.total_score == 103
        assert breakdown.distance == 0
        assert breakdown.emergency_bonus == 10

    def test_emergency_bonus_only_for_critical(self):
        breakdown = score_donor(profile(emergency_only=True), AlertUrgency.URGENT, HOSPITAL_COORDS)
        assert breakdown.emergency_bonus == 0
        assert breakdown.total_score == 93

    def test_defaults_for_unknown_fields(self):
        """Should use default health, response time and success rate when unset"""
        breakdown = score_donor(
            profile(health_status=None, response_time=None, success_rate=None),
            "normal", HOSPITAL_COORDS,
        )
        assert breakdown.health_score == 15
        assert breakdown.response_score == 5
        assert breakdown.success_score == 5

    def test_components_never_negative(self):
        """Should clamp every component at zero for terrible inputs"""
        breakdown = score_donor(
            profile(latitude=0.0, longitude=0.0, availability=False,
                    health_status=HealthStatus.RESTRICTED, response_time=90, success_rate=-40),
            AlertUrgency.NORMAL, HOSPITAL_COORDS,
        )
        for value in (breakdown.distance_score, breakdown.health_score, breakdown.availability_score,
                      breakdown.response_score, breakdown.success_score, breakdown.emergency_bonus):
            assert value >= 0
        assert breakdown.total_score == 5

    def test_success_score_capped(self):
        breakdown = score_donor(profile(success_rate=250), AlertUrgency.NORMAL, HOSPITAL_COORDS)
        assert breakdown.success_score == 10

    def test_string_locations(self):
        breakdown = score_donor(
            profile(latitude=None, longitude=None, location="Kathmandu"),
            AlertUrgency.NORMAL, "Kathmandu",
        )
        assert breakdown.distance == 1.0
        assert breakdown.distance_score == 28
