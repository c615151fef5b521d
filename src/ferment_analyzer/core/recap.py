"""
Daily recap generation.

A recap compresses one calendar day of a batch's readings into a single
durable record. Generation is lazy and idempotent: each timeline read asks
for any missing recaps, today is never recapped, and a date that already
has a recap is skipped.

The at-most-one-recap-per-date guarantee lives in the store:
``insert_recap_if_absent`` must make the existence check and the insert a
single decision (a unique constraint, or a lock).
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ferment_analyzer.core.models import (
    DailyRecap,
    Reading,
    TemperatureRange,
    TemperatureUnit,
)
from ferment_analyzer.utils.dates import (
    days_between,
    end_of_local_date,
    ensure_utc,
    local_date,
    local_today,
    resolve_timezone,
)

logger = logging.getLogger(__name__)


@dataclass
class ReadingStats:
    """Gravity/temperature summary shared by daily recaps and hourly summaries."""
    opening_gravity: float
    closing_gravity: float
    gravity_delta: float
    avg_temperature: Optional[float]
    temp_range: Optional[TemperatureRange]
    temp_unit: TemperatureUnit
    reading_count: int


def summarize_readings(readings: Sequence[Reading]) -> Optional[ReadingStats]:
    """
    Summarize readings sorted ascending by time.

    Delta is opening minus closing (positive while fermenting), rounded to
    4 decimal places. Temperature stats use only readings with a temperature.
    """
    if not readings:
        return None

    opening = readings[0].gravity
    closing = readings[-1].gravity
    with_temp = [r for r in readings if r.temperature is not None]
    temps = [r.temperature for r in with_temp]

    if temps:
        avg_temperature = round(float(np.mean(temps)), 1)
        temp_range = TemperatureRange(min=min(temps), max=max(temps))
        temp_unit = with_temp[0].temperature_unit
    else:
        avg_temperature = None
        temp_range = None
        temp_unit = readings[0].temperature_unit

    return ReadingStats(
        opening_gravity=opening,
        closing_gravity=closing,
        gravity_delta=round(opening - closing, 4),
        avg_temperature=avg_temperature,
        temp_range=temp_range,
        temp_unit=temp_unit,
        reading_count=len(readings),
    )


def build_daily_recap(
    batch_id: int,
    batch_created_at: datetime,
    recap_date: date,
    readings: Sequence[Reading],
    zone: Optional[tzinfo] = None,
) -> Optional[DailyRecap]:
    """
    Build (but do not store) the recap for one date.

    Excluded readings are ignored. Returns None when no readings remain.
    """
    zone = zone or resolve_timezone(None)
    included = sorted(
        (r for r in readings if not r.is_excluded),
        key=lambda r: r.recorded_at,
    )
    stats = summarize_readings(included)
    if stats is None:
        return None

    end_of_day = end_of_local_date(recap_date, zone)
    return DailyRecap(
        batch_id=batch_id,
        recap_date=recap_date,
        timestamp=end_of_day,
        opening_gravity=stats.opening_gravity,
        closing_gravity=stats.closing_gravity,
        gravity_delta=stats.gravity_delta,
        avg_temperature=stats.avg_temperature,
        temp_range=stats.temp_range,
        temp_unit=stats.temp_unit,
        reading_count=stats.reading_count,
        day_number=days_between(batch_created_at, end_of_day) + 1,
    )


class RecapStore(ABC):
    """Persistence operations the recap generator needs."""

    @abstractmethod
    def batch_created_at(self, batch_id: int) -> Optional[datetime]:
        """Creation time of the batch, or None if it doesn't exist."""

    @abstractmethod
    def reading_dates(self, batch_id: int, zone: tzinfo) -> List[date]:
        """Distinct local dates with at least one non-excluded reading, ascending."""

    @abstractmethod
    def recapped_dates(self, batch_id: int) -> Set[date]:
        """Dates that already have a recap."""

    @abstractmethod
    def readings_for_date(self, batch_id: int, day: date, zone: tzinfo) -> List[Reading]:
        """Non-excluded readings on ``day`` (local), ascending."""

    @abstractmethod
    def insert_recap_if_absent(self, recap: DailyRecap) -> bool:
        """
        Atomically insert ``recap`` unless one exists for its batch/date.

        Returns:
            True if inserted, False if a recap already existed
        """


class RecapGenerator:
    """Fills in missing daily recaps for a batch."""

    def __init__(self, store: RecapStore, timezone: Optional[str] = None):
        self.store = store
        self.zone = resolve_timezone(timezone)

    def generate_for_date(self, batch_id: int, day: date) -> Optional[DailyRecap]:
        """
        Create the recap for ``day`` if it has readings and none exists yet.

        Returns:
            The stored recap, or None if there was nothing to store
        """
        created_at = self.store.batch_created_at(batch_id)
        if created_at is None:
            logger.warning(f"Cannot recap batch {batch_id}: batch not found")
            return None

        readings = self.store.readings_for_date(batch_id, day, self.zone)
        recap = build_daily_recap(batch_id, created_at, day, readings, self.zone)
        if recap is None:
            return None

        if not self.store.insert_recap_if_absent(recap):
            logger.info(f"Recap for batch {batch_id} on {day} already exists, skipping")
            return None

        logger.info(
            f"Created recap for batch {batch_id} on {day}: "
            f"{recap.reading_count} readings, delta {recap.gravity_delta:+.4f}"
        )
        return recap

    def missing_dates(self, batch_id: int, today: date) -> List[date]:
        recapped = self.store.recapped_dates(batch_id)
        return [
            day
            for day in self.store.reading_dates(batch_id, self.zone)
            if day != today and day not in recapped
        ]

    def generate_missing(
        self,
        batch_id: int,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Generate every missing recap except today's.

        Safe to call repeatedly or concurrently; a date recapped in the
        meantime is detected at insert time and skipped.

        Returns:
            Number of recaps created by this call
        """
        if today is None:
            today = local_today(self.zone, now)

        generated = 0
        for day in self.missing_dates(batch_id, today):
            try:
                if self.generate_for_date(batch_id, day) is not None:
                    generated += 1
            except Exception as e:
                logger.error(f"Failed to generate recap for batch {batch_id} date {day}: {e}")
        return generated


def generate_missing_recaps(
    store: RecapStore,
    batch_id: int,
    timezone: Optional[str] = None,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> int:
    """Functional wrapper around ``RecapGenerator.generate_missing``."""
    return RecapGenerator(store, timezone).generate_missing(batch_id, today=today, now=now)


class InMemoryRecapStore(RecapStore):
    """
    Dict-backed RecapStore.

    Used by tests and offline tools. A lock makes the check-then-insert in
    ``insert_recap_if_absent`` atomic across threads.
    """

    def __init__(self):
        self.batches: Dict[int, datetime] = {}
        self.readings: Dict[int, List[Reading]] = {}
        self.recaps: Dict[Tuple[int, date], DailyRecap] = {}
        self._lock = threading.Lock()
        self._next_id = 1

    def add_batch(self, batch_id: int, created_at: datetime) -> None:
        self.batches[batch_id] = ensure_utc(created_at)
        self.readings.setdefault(batch_id, [])

    def add_readings(self, batch_id: int, readings: Sequence[Reading]) -> None:
        self.readings.setdefault(batch_id, []).extend(readings)

    def batch_created_at(self, batch_id: int) -> Optional[datetime]:
        return self.batches.get(batch_id)

    def _included(self, batch_id: int) -> List[Reading]:
        return sorted(
            (r for r in self.readings.get(batch_id, []) if not r.is_excluded),
            key=lambda r: r.recorded_at,
        )

    def reading_dates(self, batch_id: int, zone: tzinfo) -> List[date]:
        return sorted({local_date(r.recorded_at, zone) for r in self._included(batch_id)})

    def recapped_dates(self, batch_id: int) -> Set[date]:
        return {day for (bid, day) in self.recaps if bid == batch_id}

    def readings_for_date(self, batch_id: int, day: date, zone: tzinfo) -> List[Reading]:
        return [r for r in self._included(batch_id) if local_date(r.recorded_at, zone) == day]

    def insert_recap_if_absent(self, recap: DailyRecap) -> bool:
        key = (recap.batch_id, recap.recap_date)
        with self._lock:
            if key in self.recaps:
                return False
            self.recaps[key] = recap.model_copy(update={"id": self._next_id})
            self._next_id += 1
            return True
