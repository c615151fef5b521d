"""
Tests for the standard wine protocols.
"""
import pytest

from ferment_analyzer.core.models import (
    DurationCriteria,
    GravityStableCriteria,
    ManualCriteria,
    TemperatureUnit,
)
from ferment_analyzer.core.templates import get_protocol, list_protocols, select_phases


class TestStandardProtocols:
    """Test protocol definitions."""

    @pytest.mark.parametrize("key", ["red", "white"])
    def test_phase_order(self, key):
        protocol = get_protocol(key)

        assert [p.slug for p in protocol.phases] == [
            "primary", "secondary", "clearing", "aging", "bottling", "bottle-aging",
        ]
        assert protocol.optional_slugs == ["secondary", "aging", "bottle-aging"]

    def test_primary_waits_for_stable_gravity(self):
        primary = get_protocol("red").phases[0]

        assert primary.completion_criteria == GravityStableCriteria(
            consecutive_readings=3, tolerance_sg=0.002, stable_duration_hours=24,
        )
        assert primary.expected_duration_days == 14
        assert primary.target_temp_unit == TemperatureUnit.FAHRENHEIT

    def test_white_ferments_cooler_than_red(self):
        red, white = get_protocol("red"), get_protocol("white")

        assert (red.phases[0].target_temp_low, red.phases[0].target_temp_high) == (65, 78)
        assert (white.phases[0].target_temp_low, white.phases[0].target_temp_high) == (55, 68)
        assert (white.phases[2].target_temp_low, white.phases[2].target_temp_high) == (55, 62)

    def test_clearing_and_bottling_criteria(self):
        phases = get_protocol("white").phases

        assert phases[2].completion_criteria == DurationCriteria(min_days=14)
        assert isinstance(phases[4].completion_criteria, ManualCriteria)
        assert phases[3].allowed_criteria_types == ["manual", "duration"]

    def test_criteria_dump_with_stored_keys(self):
        """Templates serialise with the camelCase keys phases are stored with."""
        dumped = get_protocol("red").phases[0].completion_criteria.model_dump(by_alias=True)

        assert dumped == {
            "type": "gravity_stable",
            "consecutiveReadings": 3,
            "toleranceSG": 0.002,
            "stableDurationHours": 24,
        }

    def test_lookup_is_case_insensitive(self):
        assert get_protocol(" Red ").key == "red"

    def test_unknown_protocol(self):
        with pytest.raises(ValueError, match="red, white"):
            get_protocol("mead")

    def test_list_protocols(self):
        assert [p.key for p in list_protocols()] == ["red", "white"]


class TestSelectPhases:
    """Test optional phase filtering."""

    def test_none_keeps_everything(self):
        protocol = get_protocol("red")

        assert select_phases(protocol) == protocol.phases

    def test_required_phases_always_kept(self):
        selected = select_phases(get_protocol("red"), [])

        assert [p.slug for p in selected] == ["primary", "clearing", "bottling"]

    def test_enabled_optional_phases_kept_in_order(self):
        selected = select_phases(get_protocol("red"), ["bottle-aging", "secondary"])

        assert [p.slug for p in selected] == [
            "primary", "secondary", "clearing", "bottling", "bottle-aging",
        ]

    def test_unknown_slugs_ignored(self):
        selected = select_phases(get_protocol("white"), ["malolactic"])

        assert len(selected) == 3
