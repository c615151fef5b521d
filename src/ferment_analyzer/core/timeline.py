"""
Timeline consolidation for display.

Readings on dates without a daily recap (always including today) would
otherwise flood the timeline. The newest few are shown individually and
everything older is grouped by clock hour. Nothing here is persisted;
the view is rebuilt on every timeline read.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional, Sequence, Set

import pandas as pd

from ferment_analyzer.core.models import (
    DailyRecap,
    HourlySummary,
    Reading,
    ReadingSnapshot,
    TimelineEntry,
    TimelineItem,
)
from ferment_analyzer.core.recap import summarize_readings
from ferment_analyzer.utils.constants import RECENT_RAW_READINGS
from ferment_analyzer.utils.dates import (
    ensure_utc,
    hour_label,
    local_date,
    local_hour_start,
    resolve_timezone,
)

logger = logging.getLogger(__name__)


def _snapshot(reading: Reading) -> ReadingSnapshot:
    return ReadingSnapshot(
        reading_id=reading.id,
        timestamp=reading.recorded_at,
        gravity=reading.gravity,
        temperature=reading.temperature,
        temperature_unit=reading.temperature_unit,
    )


def summarize_by_hour(readings: Sequence[Reading], timezone: Optional[str] = None) -> List[HourlySummary]:
    """
    Group ascending readings into one summary per local clock hour.

    Buckets are keyed by the UTC instant the local hour starts, so the
    repeated hour on a DST fall-back stays two buckets.
    """
    if not readings:
        return []

    zone = resolve_timezone(timezone)
    frame = pd.DataFrame({
        "position": range(len(readings)),
        "hour_start": pd.to_datetime(
            [local_hour_start(r.recorded_at, zone) for r in readings], utc=True
        ),
    })

    summaries = []
    for hour_start, group in frame.groupby("hour_start", sort=True):
        bucket = sorted((readings[i] for i in group["position"]), key=lambda r: r.recorded_at)
        stats = summarize_readings(bucket)
        start = ensure_utc(hour_start.to_pydatetime())
        summaries.append(HourlySummary(
            hour_start=start,
            hour_label=hour_label(start, zone),
            timestamp=bucket[-1].recorded_at,
            start_gravity=stats.opening_gravity,
            end_gravity=stats.closing_gravity,
            gravity_delta=stats.gravity_delta,
            avg_temperature=stats.avg_temperature,
            temp_range=stats.temp_range,
            temp_unit=stats.temp_unit,
            reading_count=stats.reading_count,
        ))
    return summaries


def consolidate_readings(
    readings: Iterable[Reading],
    recapped_dates: Set[date],
    timezone: Optional[str] = None,
    recent_count: int = RECENT_RAW_READINGS,
) -> List[TimelineItem]:
    """
    Build the display view of unrecapped readings.

    Args:
        readings: Candidate readings for the batch (any order)
        recapped_dates: Local dates that already have a durable recap
        timezone: User timezone for date boundaries and labels
        recent_count: How many of the newest readings to show individually

    Returns:
        ReadingSnapshot and HourlySummary items, newest first
    """
    zone = resolve_timezone(timezone)
    pending = sorted(
        (
            r for r in readings
            if not r.is_excluded and local_date(r.recorded_at, zone) not in recapped_dates
        ),
        key=lambda r: r.recorded_at,
    )
    if not pending:
        return []

    split = max(0, len(pending) - recent_count)
    older, recent = pending[:split], pending[split:]

    items: List[TimelineItem] = [_snapshot(r) for r in recent]
    items.extend(summarize_by_hour(older, timezone))
    items.sort(key=lambda item: item.timestamp, reverse=True)

    logger.debug(
        f"Consolidated {len(pending)} unrecapped readings into {len(items)} timeline items"
    )
    return items


def merge_timeline(
    entries: Sequence[TimelineEntry],
    recaps: Sequence[DailyRecap],
    consolidated: Sequence[TimelineItem],
) -> List[TimelineItem]:
    """Combine persisted entries, recaps and consolidated items, newest first."""
    items: List[TimelineItem] = [*entries, *recaps, *consolidated]
    items.sort(key=lambda item: item.timestamp, reverse=True)
    return items
