"""
Rule-based anomaly detection over a batch's recent timeline.

Rules:
- Stuck fermentation: gravity flat for 48h+ while the phase waits on
  gravity stability
- Temperature drift: last two temperatures outside the phase target band
- Gravity anomaly: gravity rose between the last two readings

The detector is stateless and may report the same condition on every call.
Suppressing repeats (same type, unresolved, within 24h) is the caller's job.
"""

import logging
from typing import List, Optional, Sequence

from ferment_analyzer.core.models import (
    Alert,
    AlertSeverity,
    AlertType,
    Phase,
    TimelineEntry,
)
from ferment_analyzer.core.phase_engine import has_gravity_stable
from ferment_analyzer.utils.constants import (
    GRAVITY_RISE_THRESHOLD_SG,
    STUCK_MAX_RANGE_SG,
    STUCK_MIN_SPAN_HOURS,
    STUCK_READING_COUNT,
    TEMPERATURE_READING_COUNT,
)
from ferment_analyzer.utils.gravity import is_number

logger = logging.getLogger(__name__)


def detect_stuck_fermentation(
    entries: Sequence[TimelineEntry],
    phase: Optional[Phase],
) -> Optional[Alert]:
    """
    Flag a fermentation whose gravity has stopped moving.

    Only the newest four readings are considered. Their spacing is not
    checked: four readings spanning 48h count even if three of them are
    minutes apart.
    """
    if phase is None or not has_gravity_stable(phase.completion_criteria):
        return None

    readings = [
        (e.created_at, e.gravity)
        for e in entries
        if e.is_reading and e.gravity is not None
    ][:STUCK_READING_COUNT]

    if len(readings) < STUCK_READING_COUNT:
        return None

    span_hours = (readings[0][0] - readings[-1][0]).total_seconds() / 3600
    if span_hours < STUCK_MIN_SPAN_HOURS:
        return None

    gravities = [g for _, g in readings]
    if not all(is_number(g) for g in gravities):
        return None
    if max(gravities) - min(gravities) < STUCK_MAX_RANGE_SG:
        return Alert(
            alert_type=AlertType.STUCK_FERMENTATION,
            severity=AlertSeverity.WARNING,
            message=f"Gravity hasn't moved in {round(span_hours / 24)} days. Might be stuck.",
        )
    return None


def detect_temperature_drift(
    entries: Sequence[TimelineEntry],
    phase: Optional[Phase],
) -> Optional[Alert]:
    """Flag when the last two temperatures are both outside the target band."""
    if phase is None or not phase.has_temperature_target:
        return None

    low, high = phase.target_temp_low, phase.target_temp_high
    temperatures = [
        e.temperature for e in entries if e.is_reading and e.temperature is not None
    ][:TEMPERATURE_READING_COUNT]

    if len(temperatures) < TEMPERATURE_READING_COUNT:
        return None

    if all(t < low or t > high for t in temperatures):
        direction = "low" if temperatures[0] < low else "high"
        unit = phase.target_temp_unit.value if phase.target_temp_unit else "F"
        return Alert(
            alert_type=AlertType.TEMPERATURE,
            severity=AlertSeverity.WARNING,
            message=(
                f"Temp is running {direction} — last {TEMPERATURE_READING_COUNT} readings "
                f"outside {low:g}–{high:g}°{unit} range."
            ),
        )
    return None


def detect_gravity_anomaly(entries: Sequence[TimelineEntry]) -> Optional[Alert]:
    """Flag a gravity rise of more than 0.003 SG between the last two readings."""
    gravities = [e.gravity for e in entries if e.is_reading and e.gravity is not None][:2]
    if len(gravities) < 2:
        return None

    latest, previous = gravities
    if latest > previous + GRAVITY_RISE_THRESHOLD_SG:
        return Alert(
            alert_type=AlertType.CUSTOM,
            severity=AlertSeverity.INFO,
            message=(
                f"Gravity jumped up from {previous:.3f} to {latest:.3f} SG — "
                f"worth double-checking that reading."
            ),
        )
    return None


def run_alert_detection(
    entries: Sequence[TimelineEntry],
    current_phase: Optional[Phase],
) -> List[Alert]:
    """
    Run every alert rule against the newest-first entry feed.

    Returns:
        Alerts in rule order (stuck, temperature, gravity anomaly)
    """
    alerts = [
        detect_stuck_fermentation(entries, current_phase),
        detect_temperature_drift(entries, current_phase),
        detect_gravity_anomaly(entries),
    ]
    found = [a for a in alerts if a is not None]
    if found:
        logger.debug(f"Alert rules fired: {[a.alert_type.value for a in found]}")
    return found
