"""
Historical performance model tests
"""

import uuid
from types import SimpleNamespace

import pytest

from raktdaan.models.donor_response import ResponseStatus
from raktdaan.services.errors import NotFoundError
from raktdaan.services.performance import (
    apply_response_outcome,
    historical_score,
    learn_from_outcome,
    load_histories,
    update_donor_availability,
)

from conftest import NOW


def past(status, speed_s=120, blood_type="O-", urgency="critical"):
    return (
        SimpleNamespace(status=status, response_speed_s=speed_s),
        SimpleNamespace(blood_type=blood_type, urgency=urgency),
    )


class TestHistoricalScore:
    def test_neutral_without_history(self):
        assert historical_score([], "O-", "critical") == 50

    def test_perfect_match(self):
        """30 completed + 18 speed + 25 blood type + 25 urgency"""
        assert historical_score([past(ResponseStatus.COMPLETED)], "O-", "critical") == 98

    def test_averages_over_valid_pairs(self):
        history = [
            past(ResponseStatus.COMPLETED),
            past(ResponseStatus.REJECTED, speed_s=3600, blood_type="A+", urgency="normal"),
        ]
        assert historical_score(history, "O-", "critical") == 49

    def test_deleted_alerts_skipped(self):
        history = [past(ResponseStatus.COMPLETED), (SimpleNamespace(status="completed", response_speed_s=0), None)]
        assert historical_score(history, "O-", "critical") == 98

    def test_only_deleted_alerts_is_neutral(self):
        assert historical_score([(SimpleNamespace(status="interested", response_speed_s=0), None)],
                                "O-", "normal") == 50


class TestApplyResponseOutcome:
    def test_defaults(self):
        assert apply_response_outcome(None, None, ResponseStatus.COMPLETED, 10) == (20, 55)

    def test_success_rate_clamped(self):
        assert apply_response_outcome(5, 98, ResponseStatus.COMPLETED, 5) == (5, 100)
        assert apply_response_outcome(5, 0, ResponseStatus.INTERESTED, 5) == (5, 0)

    def test_confirmed_nudge(self):
        assert apply_response_outcome(20, 60, ResponseStatus.CONFIRMED, 10) == (15, 62)


class TestLearnFromOutcome:
    async def test_updates_donor(self, db, factory):
        donor = await factory.donor(response_time=5.0, success_rate=80.0)
        updated = await learn_from_outcome(db, donor.id, ResponseStatus.COMPLETED, 10, now=NOW)
        assert updated.response_time == 8
        assert updated.success_rate == 85
        assert updated.last_availability_update == NOW

    async def test_missing_donor(self, db):
        with pytest.raises(NotFoundError):
            await learn_from_outcome(db, uuid.uuid4(), ResponseStatus.COMPLETED, 10)


class TestUpdateDonorAvailability:
    async def test_both_directions(self, db, factory):
        donor = await factory.donor(response_time=5.0)

        await update_donor_availability(db, donor.id, False, now=NOW)
        assert donor.availability is False
        assert donor.last_availability_update == NOW
        assert donor.response_time == 5.0

        await update_donor_availability(db, donor.id, True, 12.5, now=NOW)
        assert donor.availability is True
        assert donor.response_time == 12.5

    async def test_missing_donor(self, db):
        with pytest.raises(NotFoundError):
            await update_donor_availability(db, uuid.uuid4(), True, now=NOW)

    async def test_negative_response_time(self, db, factory):
        donor = await factory.donor()
        with pytest.raises(ValueError):
            await update_donor_availability(db, donor.id, True, -1, now=NOW)


class TestLoadHistories:
    async def test_groups_by_donor(self, db, factory):
        hospital = await factory.hospital()
        a1 = await factory.alert(hospital)
        a2 = await factory.alert(hospital)
        donor = await factory.donor()
        other = await factory.donor()
        await factory.response(a1, donor)
        await factory.response(a2, donor)

        histories = await load_histories(db, [donor.id, other.id])
        assert len(histories[str(donor.id)]) == 2
        assert histories[str(other.id)] == []
        assert all(alert is not None for _, alert in histories[str(donor.id)])
