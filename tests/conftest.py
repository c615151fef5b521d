"""
Pytest configuration and shared fixtures for Ferment Analyzer tests.
"""
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

# Add src to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from ferment_analyzer.config import Config
from ferment_analyzer.core.models import EntryType, Reading, TemperatureUnit, TimelineEntry
from ferment_analyzer.database.manager import DatabaseManager


@pytest.fixture
def now():
    """Fixed evaluation time (midday UTC) so date math is reproducible."""
    return datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_reading():
    """Factory for Reading models."""
    def _make(reading_id, gravity, recorded_at, temperature=None,
              unit=TemperatureUnit.FAHRENHEIT, batch_id=1, excluded=False):
        return Reading(
            id=reading_id,
            batch_id=batch_id,
            gravity=gravity,
            temperature=temperature,
            temperature_unit=unit,
            recorded_at=recorded_at,
            is_excluded=excluded,
        )
    return _make


@pytest.fixture
def reading_series(make_reading):
    """Ascending readings from a list of gravities at a fixed spacing."""
    def _series(gravities, start, step=timedelta(hours=1)):
        return [
            make_reading(i + 1, g, start + step * i)
            for i, g in enumerate(gravities)
        ]
    return _series


@pytest.fixture
def reading_entries():
    """
    Newest-first reading entries, as the evaluator and alert detector get them.

    Takes (gravity, created_at) or (gravity, created_at, temperature) tuples
    in any order.
    """
    def _entries(points):
        entries = []
        for point in points:
            gravity, created_at = point[0], point[1]
            temperature = point[2] if len(point) > 2 else None
            entries.append(TimelineEntry(
                entry_type=EntryType.READING,
                source="hydrometer",
                data={"type": "reading", "gravity": gravity, "temperature": temperature},
                created_at=created_at,
            ))
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries
    return _entries


@pytest.fixture
def config():
    """Default configuration (UTC day boundaries)."""
    return Config()


@pytest.fixture
def db(tmp_path, config):
    """DatabaseManager on a temporary SQLite file."""
    manager = DatabaseManager(tmp_path / "ferment_test.db", config=config)
    yield manager
    manager.close()
