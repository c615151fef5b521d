"""
Analysis core for Ferment Analyzer.

Modules:
- models: Pydantic data models
- outliers: Head/tail/mid-log outlier detection
- phase_engine: Completion criteria and action schedule evaluation
- alerts: Stuck fermentation, temperature drift and gravity anomaly rules
- recap: Daily recap generation
- timeline: Hourly consolidation of unrecapped readings
- templates: Standard red and white wine protocols
"""

from ferment_analyzer.core.models import (
    # Enums
    AlertSeverity,
    AlertType,
    EntryType,
    ExcludeReason,
    PhaseStatus,
    TemperatureUnit,
    # Data models
    Alert,
    CompletionCriteria,
    DailyRecap,
    EvaluationContext,
    HourlySummary,
    OutlierDetectionResult,
    OutlierFlag,
    OutlierOptions,
    Phase,
    PhaseAction,
    PhaseEvaluation,
    PhaseTemplate,
    ProtocolTemplate,
    Reading,
    ReadingSnapshot,
    TimelineEntry,
    TimelineItem,
)
from ferment_analyzer.core.outliers import OutlierDetector, detect_outliers
from ferment_analyzer.core.phase_engine import evaluate_criteria, evaluate_phase
from ferment_analyzer.core.alerts import run_alert_detection
from ferment_analyzer.core.recap import (
    InMemoryRecapStore,
    RecapGenerator,
    RecapStore,
    build_daily_recap,
    generate_missing_recaps,
)
from ferment_analyzer.core.templates import get_protocol, list_protocols, select_phases
from ferment_analyzer.core.timeline import consolidate_readings

__all__ = [
    # Enums
    "AlertSeverity",
    "AlertType",
    "EntryType",
    "ExcludeReason",
    "PhaseStatus",
    "TemperatureUnit",
    # Data models
    "Alert",
    "CompletionCriteria",
    "DailyRecap",
    "EvaluationContext",
    "HourlySummary",
    "OutlierDetectionResult",
    "OutlierFlag",
    "OutlierOptions",
    "Phase",
    "PhaseAction",
    "PhaseEvaluation",
    "PhaseTemplate",
    "ProtocolTemplate",
    "Reading",
    "ReadingSnapshot",
    "TimelineEntry",
    "TimelineItem",
    # Functions
    "OutlierDetector",
    "detect_outliers",
    "evaluate_criteria",
    "evaluate_phase",
    "run_alert_detection",
    "InMemoryRecapStore",
    "RecapGenerator",
    "RecapStore",
    "build_daily_recap",
    "generate_missing_recaps",
    "consolidate_readings",
    "get_protocol",
    "list_protocols",
    "select_phases",
]
