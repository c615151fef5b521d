"""
Database modules for Ferment Analyzer.

Modules:
- models: SQLAlchemy ORM models
- manager: Batch workflows over a single SQLite file
"""

from ferment_analyzer.database.models import (
    Base,
    Alert,
    Batch,
    DailyRecap,
    Phase,
    PhaseAction,
    Reading,
    TimelineEntry,
)

from ferment_analyzer.database.manager import (
    BatchNotFoundError,
    DatabaseManager,
    DatabaseError,
    PhaseNotFoundError,
)

__all__ = [
    # Models
    "Base",
    "Alert",
    "Batch",
    "DailyRecap",
    "Phase",
    "PhaseAction",
    "Reading",
    "TimelineEntry",
    # Manager
    "BatchNotFoundError",
    "DatabaseManager",
    "DatabaseError",
    "PhaseNotFoundError",
]
