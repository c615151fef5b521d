"""
Constants for Ferment Analyzer.

Thresholds used by the analysis core. Tunable values are mirrored in
config.AnalysisConfig / AlertConfig so they can be overridden from YAML.
"""

from typing import Final

# Application info
APP_NAME: Final[str] = "Ferment Analyzer"
APP_VERSION: Final[str] = "1.0.0"

# Float tolerance for inclusive SG comparisons (1.012 - 1.010 != 0.002 in binary)
SG_EPSILON: Final[float] = 1e-9

# Outlier detection
OUTLIER_WINDOW_SIZE: Final[int] = 7
OUTLIER_MID_LOG_THRESHOLD: Final[float] = 0.010
OUTLIER_SMALL_DATASET_THRESHOLD: Final[float] = 0.020
OUTLIER_HEAD_TAIL_CHECK_SIZE: Final[int] = 5
OUTLIER_HEAD_TAIL_REF_SIZE: Final[int] = 8
OUTLIER_MIN_READINGS: Final[int] = 3
OUTLIER_SMALL_DATASET_SIZE: Final[int] = 14

# Phase evaluation
DEFAULT_EXPECTED_FINAL_GRAVITY: Final[float] = 0.995

# Alert rules
STUCK_READING_COUNT: Final[int] = 4
STUCK_MIN_SPAN_HOURS: Final[float] = 48.0
STUCK_MAX_RANGE_SG: Final[float] = 0.001
TEMPERATURE_READING_COUNT: Final[int] = 2
GRAVITY_RISE_THRESHOLD_SG: Final[float] = 0.003
ALERT_DEDUP_HOURS: Final[float] = 24.0

# Feed sizes (how many recent timeline entries callers load)
ALERT_FEED_LIMIT: Final[int] = 20
STATUS_FEED_LIMIT: Final[int] = 100

# Timeline consolidation
RECENT_RAW_READINGS: Final[int] = 4

# ABV estimate: (OG - FG) * 131.25
ABV_FACTOR: Final[float] = 131.25

DEFAULT_TEMP_UNIT: Final[str] = "F"
DEFAULT_TIMEZONE: Final[str] = "UTC"
