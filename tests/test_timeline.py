"""
Tests for timeline consolidation of unrecapped readings.
"""
import pytest
from datetime import date, datetime, timedelta, timezone

from ferment_analyzer.core.models import (
    DailyRecap,
    EntryType,
    HourlySummary,
    ReadingSnapshot,
    TimelineEntry,
)
from ferment_analyzer.core.timeline import (
    consolidate_readings,
    merge_timeline,
    summarize_by_hour,
)

UTC = timezone.utc
TODAY = date(2024, 6, 15)


@pytest.fixture
def todays_readings(make_reading):
    """Ten readings today, 30 minutes apart from 08:05 to 12:35 UTC."""
    start = datetime(2024, 6, 15, 8, 5, tzinfo=UTC)
    return [
        make_reading(i + 1, 1.050 - i * 0.001, start + timedelta(minutes=30 * i), temperature=64 + i % 3)
        for i in range(10)
    ]


class TestConsolidateReadings:
    """Test snapshot/hourly split."""

    def test_recent_readings_kept_individually(self, todays_readings):
        items = consolidate_readings(todays_readings, set())

        snapshots = [i for i in items if isinstance(i, ReadingSnapshot)]
        summaries = [i for i in items if isinstance(i, HourlySummary)]

        assert [s.reading_id for s in snapshots] == [10, 9, 8, 7]
        # Six older readings, two per hour: 08:xx, 09:xx, 10:xx
        assert len(summaries) == 3
        assert all(s.reading_count == 2 for s in summaries)

    def test_newest_first(self, todays_readings):
        items = consolidate_readings(todays_readings, set())

        timestamps = [i.timestamp for i in items]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_hourly_summary_values(self, todays_readings):
        items = consolidate_readings(todays_readings, set())
        eight_oclock = [i for i in items if isinstance(i, HourlySummary)][-1]

        assert eight_oclock.hour_start == datetime(2024, 6, 15, 8, 0, tzinfo=UTC)
        assert eight_oclock.hour_label == "8am – 9am"
        assert eight_oclock.start_gravity == pytest.approx(1.050)
        assert eight_oclock.end_gravity == pytest.approx(1.049)
        assert eight_oclock.gravity_delta == pytest.approx(0.001)
        assert eight_oclock.timestamp == todays_readings[1].recorded_at
        assert eight_oclock.temp_range.min == 64
        assert eight_oclock.temp_range.max == 65

    def test_fewer_readings_than_recent_count(self, todays_readings):
        items = consolidate_readings(todays_readings[:3], set())

        assert len(items) == 3
        assert all(isinstance(i, ReadingSnapshot) for i in items)

    def test_recapped_dates_and_excluded_readings_dropped(self, todays_readings, make_reading):
        yesterday = make_reading(99, 1.060, datetime(2024, 6, 14, 20, 0, tzinfo=UTC))
        excluded = todays_readings[-1].model_copy(update={"is_excluded": True})
        readings = todays_readings[:-1] + [excluded, yesterday]

        items = consolidate_readings(readings, {date(2024, 6, 14)})

        snapshot_ids = [i.reading_id for i in items if isinstance(i, ReadingSnapshot)]
        assert 99 not in snapshot_ids
        assert 10 not in snapshot_ids
        assert snapshot_ids == [9, 8, 7, 6]

    def test_nothing_pending(self, todays_readings):
        recapped = {TODAY}

        assert consolidate_readings(todays_readings, recapped) == []

    def test_labels_use_local_timezone(self, make_reading):
        """23:30 in Chicago is 04:30 UTC the next day."""
        readings = [
            make_reading(i + 1, 1.020, datetime(2024, 6, 15, 4, 30, tzinfo=UTC) + timedelta(minutes=i))
            for i in range(6)
        ]

        items = consolidate_readings(readings, set(), timezone="America/Chicago", recent_count=1)
        summary = [i for i in items if isinstance(i, HourlySummary)][0]

        assert summary.hour_label == "11pm – 12am"
        assert summary.reading_count == 5

    def test_ephemeral_items_not_persisted(self):
        assert ReadingSnapshot.is_persisted is False
        assert HourlySummary.is_persisted is False
        assert DailyRecap.is_persisted is True
        assert TimelineEntry.is_persisted is True


class TestSummarizeByHour:
    def test_empty(self):
        assert summarize_by_hour([]) == []

    def test_half_hour_offset_buckets_follow_local_hours(self, make_reading):
        """Kolkata is UTC+5:30, so 09:35-10:10 UTC all fall in 3pm-4pm local."""
        times = [(9, 35), (9, 50), (10, 10), (10, 35)]
        readings = [
            make_reading(i + 1, 1.020, datetime(2024, 6, 15, h, m, tzinfo=UTC))
            for i, (h, m) in enumerate(times)
        ]

        summaries = summarize_by_hour(readings, "Asia/Kolkata")

        assert [s.reading_count for s in summaries] == [3, 1]
        assert summaries[0].hour_start == datetime(2024, 6, 15, 9, 30, tzinfo=UTC)
        assert summaries[0].hour_label == "3pm – 4pm"
        assert summaries[1].hour_label == "4pm – 5pm"

    def test_repeated_fall_back_hour_stays_split(self, make_reading):
        """1am CDT and 1am CST on 2024-11-03 are different hours."""
        readings = [
            make_reading(1, 1.020, datetime(2024, 11, 3, 6, 15, tzinfo=UTC)),
            make_reading(2, 1.019, datetime(2024, 11, 3, 7, 15, tzinfo=UTC)),
        ]

        summaries = summarize_by_hour(readings, "America/Chicago")

        assert len(summaries) == 2
        assert [s.hour_start for s in summaries] == [
            datetime(2024, 11, 3, 6, 0, tzinfo=UTC),
            datetime(2024, 11, 3, 7, 0, tzinfo=UTC),
        ]
        assert all(s.hour_label == "1am – 2am" for s in summaries)


class TestMergeTimeline:
    def test_merge_sorted_newest_first(self, todays_readings):
        entry = TimelineEntry(
            id=1,
            entry_type=EntryType.NOTE,
            data={"type": "note", "content": "Pitched yeast"},
            created_at=datetime(2024, 6, 13, 9, 0, tzinfo=UTC),
        )
        recap = DailyRecap(
            id=1,
            batch_id=1,
            recap_date=date(2024, 6, 14),
            timestamp=datetime(2024, 6, 14, 23, 59, 59, tzinfo=UTC),
            opening_gravity=1.070,
            closing_gravity=1.060,
            gravity_delta=0.010,
            reading_count=12,
            day_number=2,
        )
        consolidated = consolidate_readings(todays_readings, {date(2024, 6, 14)})

        items = merge_timeline([entry], [recap], consolidated)

        assert items[-1] is entry
        assert items[-2] is recap
        assert isinstance(items[0], ReadingSnapshot)
