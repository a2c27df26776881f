"""
Eligibility filter tests

Blood type, health status, reported conditions and the donation interval.
"""

import uuid
from datetime import timedelta

import pytest

from raktdaan.models.donor import Donor, DonorVerification, HealthStatus
from raktdaan.services.eligibility import (
    explain_ineligibility,
    filter_eligible,
    is_eligible,
    resolve_donor_profile,
)

from conftest import NOW


def make_donor(**kw) -> Donor:
    fields = dict(
        id=uuid.uuid4(),
        name="Asha",
        blood_type="O-",
        location="Lalitpur",
        availability=True,
        health_status=HealthStatus.GOOD,
        emergency_only=False,
    )
    fields.update(kw)
    return Donor(**fields)


def make_verification(donor: Donor, **kw) -> DonorVerification:
    fields = dict(id=uuid.uuid4(), donor_id=donor.id, health_conditions=[])
    fields.update(kw)
    return DonorVerification(**fields)


class TestResolveDonorProfile:
    """Merging donor rows with verification records"""

    def test_missing_verification_leaves_conditions_unknown(self):
        """Should keep health_conditions None when there is no verification"""
        profile = resolve_donor_profile(make_donor())
        assert profile.health_conditions is None
        assert profile.verified is False

    def test_verification_last_donation_wins(self):
        """Should prefer the verification record's last donation date"""
        donor = make_donor(last_donation=NOW - timedelta(days=200))
        verification = make_verification(donor, last_donation_date=NOW - timedelta(days=3))
        profile = resolve_donor_profile(donor, verification)
        assert profile.last_donation == NOW - timedelta(days=3)
        assert profile.verified is True

    def test_none_donor_rejected(self):
        with pytest.raises(ValueError):
            resolve_donor_profile(None)


class TestEligibilityRules:
    """Each rule on its own"""

    def test_blood_type_must_match(self):
        profile = resolve_donor_profile(make_donor(blood_type="A+"))
        assert explain_ineligibility(profile, "O-", now=NOW) == "blood type mismatch"

    def test_restricted_health_excluded(self):
        profile = resolve_donor_profile(make_donor(health_status=HealthStatus.RESTRICTED))
        assert not is_eligible(profile, "O-", now=NOW)

    @pytest.mark.parametrize("condition", ["Hepatitis B", "HIV positive", "malaria (2024)",
                                           "Recent surgery on knee", "Pregnancy"])
    def test_disqualifying_conditions(self, condition):
        """Should exclude donors reporting a disqualifying condition, case-insensitively"""
        donor = make_donor()
        profile = resolve_donor_profile(donor, make_verification(donor, health_conditions=[condition]))
        assert not is_eligible(profile, "O-", now=NOW)

    def test_harmless_condition_allowed(self):
        donor = make_donor()
        profile = resolve_donor_profile(donor, make_verification(donor, health_conditions=["mild asthma"]))
        assert is_eligible(profile, "O-", now=NOW)

    def test_recent_donation_excluded(self):
        """Should exclude donors who gave blood within the last 56 days"""
        profile = resolve_donor_profile(make_donor(last_donation=NOW - timedelta(days=30)))
        assert explain_ineligibility(profile, "O-", now=NOW) == "donated within minimum interval"

    def test_donation_outside_interval_allowed(self):
        profile = resolve_donor_profile(make_donor(last_donation=NOW - timedelta(days=60)))
        assert is_eligible(profile, "O-", now=NOW)

    def test_verification_recent_donation_overrides_old_donor_field(self):
        donor = make_donor(last_donation=NOW - timedelta(days=100))
        verification = make_verification(donor, last_donation_date=NOW - timedelta(days=10))
        assert not is_eligible(resolve_donor_profile(donor, verification), "O-", now=NOW)

    def test_availability_is_not_an_eligibility_rule(self):
        profile = resolve_donor_profile(make_donor(availability=False))
        assert is_eligible(profile, "O-", now=NOW)


class TestFilterEligible:
    """Population filtering"""

    def test_preserves_input_order(self):
        donors = [make_donor(name=f"D{i}") for i in range(4)]
        result = filter_eligible("O-", donors, now=NOW)
        assert [p.name for p in result] == ["D0", "D1", "D2", "D3"]

    def test_mixed_population(self):
        ok = make_donor(name="ok")
        wrong_type = make_donor(name="wrong", blood_type="B+")
        sick = make_donor(name="sick")
        verifications = {str(sick.id): make_verification(sick, health_conditions=["hepatitis"])}

        result = filter_eligible("O-", [ok, wrong_type, sick], verifications, now=NOW)
        assert [p.name for p in result] == ["ok"]

    def test_unresolvable_donor_fails_closed(self):
        """Should drop entries that cannot be resolved instead of raising"""
        result = filter_eligible("O-", [None, make_donor(name="ok")], now=NOW)
        assert [p.name for p in result] == ["ok"]

    def test_empty_population(self):
        assert filter_eligible("O-", [], now=NOW) == []
