"""
Priority calculator tests
"""

from datetime import timedelta

import pytest

from raktdaan.models.alert import AlertUrgency
from raktdaan.services.priority import calculate_priority, time_sensitivity_bonus, units_bonus

from conftest import NOW


class TestCalculatePriority:
    def test_critical_o_negative_two_hours_six_units(self):
        """100 critical + 30 (<3h) + 25 (>5 units); O- carries no rarity bonus"""
        score = calculate_priority("critical", "O-", 6, NOW + timedelta(hours=2), now=NOW)
        assert score == 155

    def test_rare_type_bonus(self):
        score = calculate_priority("critical", "AB-", 6, NOW + timedelta(hours=2), now=NOW)
        assert score == 175

    def test_monotonic_in_urgency(self):
        expires = NOW + timedelta(hours=10)
        critical, urgent, normal = (
            calculate_priority(u, "A+", 1, expires, now=NOW)
            for u in (AlertUrgency.CRITICAL, AlertUrgency.URGENT, AlertUrgency.NORMAL)
        )
        assert critical > urgent > normal

    def test_already_expired_counts_as_most_urgent(self):
        score = calculate_priority("normal", "A+", 1, NOW - timedelta(minutes=5), now=NOW)
        assert score == 80


class TestBonuses:
    @pytest.mark.parametrize("hours,expected", [(0.5, 50), (2, 30), (5, 15), (6, 0), (48, 0)])
    def test_time_sensitivity(self, hours, expected):
        assert time_sensitivity_bonus(hours) == expected

    @pytest.mark.parametrize("units,expected", [(1, 0), (2, 0), (3, 15), (5, 15), (6, 25)])
    def test_units(self, units, expected):
        assert units_bonus(units) == expected
