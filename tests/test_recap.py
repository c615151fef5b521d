"""
Tests for daily recap building and lazy generation.
"""
import pytest
from datetime import date, datetime, timezone

from ferment_analyzer.core.models import TemperatureUnit
from ferment_analyzer.core.recap import (
    InMemoryRecapStore,
    RecapGenerator,
    build_daily_recap,
    generate_missing_recaps,
)
from ferment_analyzer.utils.dates import resolve_timezone

UTC = timezone.utc
CREATED = datetime(2024, 6, 8, 12, 0, tzinfo=UTC)


@pytest.fixture
def day_readings(make_reading):
    """Three readings on 2024-06-10 (UTC)."""
    return [
        make_reading(1, 1.050, datetime(2024, 6, 10, 6, 0, tzinfo=UTC), temperature=68),
        make_reading(2, 1.045, datetime(2024, 6, 10, 12, 0, tzinfo=UTC), temperature=70),
        make_reading(3, 1.040, datetime(2024, 6, 10, 18, 0, tzinfo=UTC), temperature=72),
    ]


@pytest.fixture
def store(make_reading, now):
    """Batch with readings on June 12, 13, 14 and today (June 15)."""
    store = InMemoryRecapStore()
    store.add_batch(1, CREATED)
    readings = []
    reading_id = 1
    for day in (12, 13, 14, 15):
        for hour in (2, 8):
            recorded_at = datetime(2024, 6, day, hour, 0, tzinfo=UTC)
            gravity = 1.060 - reading_id * 0.002
            readings.append(make_reading(reading_id, gravity, recorded_at, temperature=66))
            reading_id += 1
    store.add_readings(1, readings)
    return store


class TestBuildDailyRecap:
    """Test single-day recap construction."""

    def test_summary_values(self, day_readings):
        recap = build_daily_recap(1, CREATED, date(2024, 6, 10), day_readings)

        assert recap.opening_gravity == 1.050
        assert recap.closing_gravity == 1.040
        assert recap.gravity_delta == pytest.approx(0.010)
        assert recap.avg_temperature == 70.0
        assert recap.temp_range.min == 68
        assert recap.temp_range.max == 72
        assert recap.reading_count == 3
        assert recap.timestamp == datetime(2024, 6, 10, 23, 59, 59, tzinfo=UTC)

    def test_day_number_counts_from_batch_creation(self, day_readings):
        """Created June 8 noon; end of June 10 is 2 whole days later -> day 3."""
        recap = build_daily_recap(1, CREATED, date(2024, 6, 10), day_readings)

        assert recap.day_number == 3

    def test_unsorted_input(self, day_readings):
        recap = build_daily_recap(1, CREATED, date(2024, 6, 10), list(reversed(day_readings)))

        assert recap.opening_gravity == 1.050
        assert recap.closing_gravity == 1.040

    def test_excluded_readings_ignored(self, day_readings):
        first = day_readings[0].model_copy(update={"is_excluded": True})

        recap = build_daily_recap(1, CREATED, date(2024, 6, 10), [first] + day_readings[1:])

        assert recap.opening_gravity == 1.045
        assert recap.reading_count == 2

    def test_all_excluded_returns_none(self, day_readings):
        excluded = [r.model_copy(update={"is_excluded": True}) for r in day_readings]

        assert build_daily_recap(1, CREATED, date(2024, 6, 10), excluded) is None

    def test_no_temperatures(self, make_reading):
        readings = [
            make_reading(1, 1.050, datetime(2024, 6, 10, 6, tzinfo=UTC), unit=TemperatureUnit.CELSIUS),
            make_reading(2, 1.048, datetime(2024, 6, 10, 7, tzinfo=UTC), unit=TemperatureUnit.CELSIUS),
        ]

        recap = build_daily_recap(1, CREATED, date(2024, 6, 10), readings)

        assert recap.avg_temperature is None
        assert recap.temp_range is None
        assert recap.temp_unit == TemperatureUnit.CELSIUS

    def test_unit_from_first_reading_with_temperature(self, make_reading):
        readings = [
            make_reading(1, 1.050, datetime(2024, 6, 10, 6, tzinfo=UTC)),
            make_reading(2, 1.048, datetime(2024, 6, 10, 7, tzinfo=UTC),
                         temperature=19.5, unit=TemperatureUnit.CELSIUS),
        ]

        recap = build_daily_recap(1, CREATED, date(2024, 6, 10), readings)

        assert recap.temp_unit == TemperatureUnit.CELSIUS
        assert recap.avg_temperature == 19.5


class TestGenerateMissingRecaps:
    """Test lazy, idempotent generation."""

    def test_creates_past_days_only(self, store, now):
        created = generate_missing_recaps(store, 1, now=now)

        assert created == 3
        assert store.recapped_dates(1) == {date(2024, 6, 12), date(2024, 6, 13), date(2024, 6, 14)}

    def test_second_run_creates_nothing(self, store, now):
        generate_missing_recaps(store, 1, now=now)

        assert generate_missing_recaps(store, 1, now=now) == 0
        assert len(store.recaps) == 3

    def test_explicit_today(self, store):
        """Passing today=June 13 leaves June 13 alone and recaps June 15."""
        created = generate_missing_recaps(store, 1, today=date(2024, 6, 13))

        assert created == 3
        assert date(2024, 6, 13) not in store.recapped_dates(1)
        assert date(2024, 6, 15) in store.recapped_dates(1)

    def test_stale_recapped_snapshot_creates_no_duplicates(self, store, now):
        """
        A generator working from an outdated "already recapped" view
        tries to insert again; the store rejects every duplicate.
        """
        generate_missing_recaps(store, 1, now=now)

        class StaleStore(InMemoryRecapStore):
            def recapped_dates(self, batch_id):
                return set()

        stale = StaleStore()
        stale.batches, stale.readings, stale.recaps = store.batches, store.readings, store.recaps
        stale._lock = store._lock

        assert generate_missing_recaps(stale, 1, now=now) == 0
        assert len(store.recaps) == 3

    def test_failure_on_one_date_does_not_stop_others(self, store, now):
        class FlakyStore(InMemoryRecapStore):
            def readings_for_date(self, batch_id, day, zone):
                if day == date(2024, 6, 13):
                    raise RuntimeError("disk hiccup")
                return super().readings_for_date(batch_id, day, zone)

        flaky = FlakyStore()
        flaky.batches, flaky.readings = store.batches, store.readings

        assert generate_missing_recaps(flaky, 1, now=now) == 2
        assert flaky.recapped_dates(1) == {date(2024, 6, 12), date(2024, 6, 14)}

    def test_unknown_batch(self, now):
        assert generate_missing_recaps(InMemoryRecapStore(), 42, now=now) == 0

    def test_local_timezone_day_boundaries(self, make_reading):
        """03:00 UTC on June 10 is still June 9 in Chicago."""
        store = InMemoryRecapStore()
        store.add_batch(1, CREATED)
        store.add_readings(1, [
            make_reading(1, 1.050, datetime(2024, 6, 10, 3, 0, tzinfo=UTC)),
            make_reading(2, 1.048, datetime(2024, 6, 10, 4, 0, tzinfo=UTC)),
        ])

        generator = RecapGenerator(store, timezone="America/Chicago")
        created = generator.generate_missing(1, today=date(2024, 6, 15))

        assert created == 1
        recap = store.recaps[(1, date(2024, 6, 9))]
        chicago = resolve_timezone("America/Chicago")
        assert recap.timestamp.astimezone(chicago).replace(tzinfo=None) == datetime(2024, 6, 9, 23, 59, 59)
        assert recap.timestamp.tzinfo is not None

    def test_inserted_recaps_get_ids(self, store, now):
        generate_missing_recaps(store, 1, now=now)

        assert sorted(r.id for r in store.recaps.values()) == [1, 2, 3]

    def test_missing_dates(self, store, now):
        generator = RecapGenerator(store)
        assert generator.missing_dates(1, today=now.date()) == [
            date(2024, 6, 12), date(2024, 6, 13), date(2024, 6, 14),
        ]
