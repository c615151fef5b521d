"""
Tests for the Click command-line interface.
"""
import pytest
from datetime import datetime, timedelta, timezone

from click.testing import CliRunner

from ferment_analyzer.cli import cli
from ferment_analyzer.config import Config
from ferment_analyzer.core.models import DurationCriteria
from ferment_analyzer.database.manager import DatabaseManager


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_paths(tmp_path):
    """Config file and database path isolated from the user's home directory."""
    db_path = tmp_path / "cli.db"
    config = Config()
    config.database.path = db_path
    config_path = tmp_path / "config.yaml"
    config.save(config_path)
    return config_path, db_path


@pytest.fixture
def seeded(cli_paths):
    """A batch with two phases and a few days of readings."""
    config_path, db_path = cli_paths
    db = DatabaseManager(db_path, config=Config.load(config_path))
    batch = db.create_batch("Blackberry Melomel")
    db.add_phase(batch.id, "Primary", DurationCriteria(min_days=0))
    db.add_phase(batch.id, "Secondary")
    start = datetime.now(timezone.utc) - timedelta(days=3)
    db.start_protocol(batch.id, now=start)
    for i in range(6):
        at = start + timedelta(hours=12 * i)
        db.add_reading(batch.id, 1.110 - i * 0.006, temperature=68, recorded_at=at, now=at)
    db.close()
    return batch.id


def invoke(runner, cli_paths, *args):
    config_path, db_path = cli_paths
    return runner.invoke(cli, ["-c", str(config_path), "-d", str(db_path), *args], obj={})


class TestBatchesCommand:
    def test_lists_batches(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "batches")

        assert result.exit_code == 0
        assert "Blackberry Melomel" in result.output

    def test_status_filter(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "batches", "--status", "completed")

        assert result.exit_code == 0
        assert "No batches found" in result.output


def open_db(cli_paths):
    config_path, db_path = cli_paths
    return DatabaseManager(db_path, config=Config.load(config_path))


class TestNewCommand:
    def test_plain_batch(self, runner, cli_paths):
        result = invoke(runner, cli_paths, "new", "Pale Ale", "--style", "beer", "--og", "1.050")

        assert result.exit_code == 0
        assert "Created batch 1: Pale Ale" in result.output
        batch = open_db(cli_paths).get_batch(1)
        assert batch.style == "beer"
        assert batch.original_gravity == 1.050

    def test_batch_from_template(self, runner, cli_paths):
        result = invoke(runner, cli_paths, "new", "Merlot", "-t", "red", "--optional", "aging")

        assert result.exit_code == 0
        assert "1. Primary Fermentation (active)" in result.output
        phases = open_db(cli_paths).get_phases(1)
        assert [p.name for p in phases] == [
            "Primary Fermentation", "Clearing / Fining", "Bulk Aging", "Bottling",
        ]

    def test_unknown_template_rejected(self, runner, cli_paths):
        result = invoke(runner, cli_paths, "new", "Rosé", "-t", "rose")

        assert result.exit_code == 2
        assert open_db(cli_paths).list_batches() == []


class TestReadingCommand:
    def test_records_reading(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "reading", str(seeded), "1.070", "--temp", "66")

        assert result.exit_code == 0
        assert "Recorded 1.070 SG at 66°F" in result.output
        db = open_db(cli_paths)
        assert len(db.get_readings(seeded)) == 7
        assert db.get_batch(seeded).final_gravity == 1.070

    def test_celsius_reading(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "reading", str(seeded), "1.068", "--temp", "19", "--unit", "C")

        assert result.exit_code == 0
        newest = open_db(cli_paths).get_readings(seeded)[-1]
        assert newest.temperature == 19
        assert newest.temperature_unit.value == "C"

    def test_unknown_batch_fails(self, runner, cli_paths):
        result = invoke(runner, cli_paths, "reading", "404", "1.050")

        assert result.exit_code == 1
        assert "Batch 404 not found" in result.output

    def test_invalid_gravity_fails(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "reading", str(seeded), "0")

        assert result.exit_code == 1
        assert len(open_db(cli_paths).get_readings(seeded)) == 6


class TestStatusCommand:
    def test_status_shows_batch_and_phase(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "status", str(seeded))

        assert result.exit_code == 0
        assert "Blackberry Melomel" in result.output
        assert "Primary" in result.output
        assert "Ready to advance" in result.output

    def test_unknown_batch_fails(self, runner, cli_paths):
        result = invoke(runner, cli_paths, "status", "404")

        assert result.exit_code == 1
        assert "Batch 404 not found" in result.output


class TestAdvanceCommand:
    def test_advance_then_finish(self, runner, cli_paths, seeded):
        first = invoke(runner, cli_paths, "advance", str(seeded))
        second = invoke(runner, cli_paths, "advance", str(seeded), "--skip")
        third = invoke(runner, cli_paths, "advance", str(seeded))

        assert "Now in: Secondary" in first.output
        assert "Protocol complete" in second.output
        assert third.exit_code == 1


class TestRecapAndTimelineCommands:
    def test_recaps_generated(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "recaps", str(seeded))

        assert result.exit_code == 0
        assert "Generated" in result.output

    def test_timeline(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "timeline", str(seeded))

        assert result.exit_code == 0
        assert "Timeline" in result.output


class TestAlertsCommand:
    def test_no_open_alerts(self, runner, cli_paths):
        result = invoke(runner, cli_paths, "alerts")

        assert result.exit_code == 0
        assert "No open alerts" in result.output

    def test_resolve_unknown_alert(self, runner, cli_paths):
        result = invoke(runner, cli_paths, "alerts", "--resolve", "7")

        assert result.exit_code == 1


class TestCleanupCommand:
    def test_nothing_flagged(self, runner, cli_paths, seeded):
        result = invoke(runner, cli_paths, "cleanup", str(seeded))

        assert result.exit_code == 0
        assert "Nothing to clean up" in result.output
