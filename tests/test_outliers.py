"""
Tests for hydrometer outlier detection.

Covers the small-dataset bypass, head/tail trim contiguity, mid-log spike
detection and the clean-range bounds.
"""
import pytest
from datetime import datetime, timedelta, timezone

from ferment_analyzer.core.models import ExcludeReason, OutlierOptions
from ferment_analyzer.core.outliers import (
    OutlierDetector,
    detect_outliers,
    median,
    rolling_median,
)

START = datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc)
BASE = 1.040


class TestHelpers:
    """Test median helpers."""

    def test_median_empty_is_zero(self):
        """Empty input has no median; 0.0 keeps callers simple."""
        assert median([]) == 0.0

    def test_median_even_count(self):
        assert median([1.0, 3.0, 2.0, 4.0]) == pytest.approx(2.5)

    def test_rolling_median_truncates_at_edges(self):
        """Edge windows shrink instead of padding."""
        # i=0 -> [1,2], i=1 -> [1,2,3], ..., i=4 -> [4,5]
        assert rolling_median([1.0, 2.0, 3.0, 4.0, 5.0], 3) == pytest.approx(
            [1.5, 2.0, 3.0, 4.0, 4.5]
        )


class TestSmallDataset:
    """Fewer than 14 readings use the neighbour comparison only."""

    def test_too_few_readings_returns_empty(self, reading_series):
        """Two readings can't be judged at all."""
        result = detect_outliers(reading_series([1.050, 1.100], START))

        assert result.total_flagged == 0
        assert result.all_flags == []
        assert result.clean_range_start is None

    def test_spike_flagged_against_neighbours(self, reading_series):
        """A reading 0.030 off both neighbours exceeds the 0.020 threshold."""
        readings = reading_series([1.050, 1.050, 1.080, 1.050, 1.050], START)

        result = detect_outliers(readings)

        # Neighbours of the spike are only 0.015 from their neighbour median
        assert result.flagged_ids == [readings[2].id]
        assert result.mid_log_outliers[0].reason == ExcludeReason.OUTLIER_AUTO
        assert result.mid_log_outliers[0].deviation == pytest.approx(0.030)

    def test_no_head_or_tail_trim_for_small_dataset(self, reading_series):
        """Head/tail detection is bypassed below 14 readings."""
        gravities = [BASE + 0.030] + [BASE] * 9
        result = detect_outliers(reading_series(gravities, START))

        assert result.head_outliers == []
        assert result.tail_outliers == []
        assert result.total_flagged == 1
        assert result.mid_log_outliers[0].reason == ExcludeReason.OUTLIER_AUTO


class TestHeadDetection:
    """Test head trim detection."""

    def test_settling_readings_flagged_as_head_trim(self, reading_series):
        """Two settling readings 0.020 above a flat log are head trim."""
        gravities = [BASE + 0.020, BASE + 0.020] + [BASE] * 18
        readings = reading_series(gravities, START)

        result = detect_outliers(readings)

        assert [f.reading_id for f in result.head_outliers] == [readings[0].id, readings[1].id]
        assert all(f.reason == ExcludeReason.HEAD_TRIM for f in result.head_outliers)
        assert result.tail_outliers == []
        assert result.mid_log_outliers == []
        assert result.clean_range_start == readings[2].recorded_at
        assert result.total_flagged == 2

    def test_head_flags_are_contiguous_prefix(self, reading_series):
        """Scanning stops at the first in-range reading."""
        gravities = [BASE + 0.020, BASE, BASE + 0.020] + [BASE] * 17
        readings = reading_series(gravities, START)

        result = detect_outliers(readings)

        assert [f.reading_id for f in result.head_outliers] == [readings[0].id]
        # The later spike is caught by the rolling median instead
        mid_ids = [f.reading_id for f in result.mid_log_outliers]
        assert readings[2].id in mid_ids
        assert result.mid_log_outliers[0].reason == ExcludeReason.OUTLIER_AUTO

    def test_head_scan_bounded_by_check_size(self, reading_series):
        """Only the first head_tail_check_size readings can be head trim."""
        options = OutlierOptions(head_tail_check_size=2, head_tail_ref_size=8)
        gravities = [BASE + 0.050] * 3 + [BASE] * 17
        readings = reading_series(gravities, START)

        result = OutlierDetector(options).detect(readings)

        assert len(result.head_outliers) == 2


class TestTailDetection:
    """Test tail trim detection."""

    def test_transfer_readings_flagged_as_tail_trim(self, reading_series):
        """Readings after the hydrometer is pulled out are tail trim."""
        gravities = [BASE] * 18 + [BASE - 0.030, BASE - 0.030]
        readings = reading_series(gravities, START)

        result = detect_outliers(readings)

        # Stored nearest-to-end first
        assert [f.reading_id for f in result.tail_outliers] == [readings[19].id, readings[18].id]
        assert all(f.reason == ExcludeReason.TAIL_TRIM for f in result.tail_outliers)
        assert result.clean_range_end == readings[17].recorded_at
        assert result.head_outliers == []
        assert result.mid_log_outliers == []

    def test_tail_flags_are_contiguous_suffix(self, reading_series):
        """Scanning backwards stops at the first in-range reading."""
        gravities = [BASE] * 17 + [BASE - 0.030, BASE, BASE - 0.030]
        readings = reading_series(gravities, START)

        result = detect_outliers(readings)

        assert [f.reading_id for f in result.tail_outliers] == [readings[19].id]
        assert result.tail_outliers[0].reason == ExcludeReason.TAIL_TRIM
        assert readings[18].id not in result.flagged_ids
        assert result.clean_range_end == readings[18].recorded_at
        # The earlier drop is left to the rolling median
        assert [f.reading_id for f in result.mid_log_outliers] == [readings[17].id]


class TestMidLogDetection:
    """Test rolling-median spike detection."""

    def test_spike_above_threshold_flagged(self, reading_series):
        gravities = [BASE] * 20
        gravities[10] = BASE + 0.015
        readings = reading_series(gravities, START)

        result = detect_outliers(readings)

        assert [f.reading_id for f in result.mid_log_outliers] == [readings[10].id]
        assert result.mid_log_outliers[0].deviation == pytest.approx(0.015)

    def test_small_wobble_not_flagged(self, reading_series):
        """0.008 SG is within the 0.010 mid-log threshold."""
        gravities = [BASE] * 20
        gravities[10] = BASE + 0.008

        result = detect_outliers(reading_series(gravities, START))

        assert result.total_flagged == 0

    def test_custom_threshold(self, reading_series):
        gravities = [BASE] * 20
        gravities[10] = BASE + 0.008
        options = OutlierOptions(mid_log_threshold=0.005)

        result = detect_outliers(reading_series(gravities, START), options)

        assert result.total_flagged == 1


class TestDeterminism:
    """Same input, same output."""

    def test_repeated_detection_is_identical(self, reading_series):
        gravities = [BASE + 0.020, BASE + 0.020] + [BASE] * 16 + [BASE - 0.030, BASE - 0.030]
        gravities[9] = BASE + 0.015
        readings = reading_series(gravities, START, step=timedelta(minutes=15))

        first = detect_outliers(readings)
        second = detect_outliers(readings)

        assert first == second
        assert first.total_flagged == len(first.all_flags) == 5
