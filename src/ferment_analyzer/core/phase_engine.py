"""
Phase criteria evaluation.

Decides whether a phase's completion criteria are met and which of its
actions are overdue or upcoming. Called on every status poll, so it is
cheap, side-effect free and never raises for missing data: every branch
returns met/unmet plus a human-readable explanation.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from ferment_analyzer.core.models import (
    ActionCountCriteria,
    CompletionCriteria,
    CompoundCriteria,
    CriteriaResult,
    DurationCriteria,
    EvaluationContext,
    GravityReachedCriteria,
    GravityStableCriteria,
    ManualCriteria,
    Phase,
    PhaseAction,
    PhaseEvaluation,
    TimelineEntry,
)
from ferment_analyzer.utils.constants import SG_EPSILON
from ferment_analyzer.utils.dates import days_between, ensure_utc, utcnow
from ferment_analyzer.utils.gravity import attenuation_target, is_number

logger = logging.getLogger(__name__)


# ============================================================================
# Criteria
# ============================================================================

def evaluate_criteria(
    criteria: CompletionCriteria,
    phase: Phase,
    entries: Sequence[TimelineEntry],
    context: Optional[EvaluationContext] = None,
    now: Optional[datetime] = None,
) -> CriteriaResult:
    """
    Evaluate one criteria node (recursively for compound criteria).

    Args:
        criteria: Criteria to evaluate
        phase: Phase the criteria belong to (start time scopes the entries)
        entries: Timeline entries, newest first
        context: Gravity context for gravity_reached
        now: Evaluation time (defaults to current UTC time)

    Returns:
        CriteriaResult with met flag and explanation
    """
    context = context or EvaluationContext()
    now = ensure_utc(now) if now is not None else utcnow()

    if isinstance(criteria, GravityStableCriteria):
        return _gravity_stable(criteria, phase, entries, now)
    if isinstance(criteria, GravityReachedCriteria):
        return _gravity_reached(criteria, context)
    if isinstance(criteria, DurationCriteria):
        return _duration(criteria, phase, now)
    if isinstance(criteria, ActionCountCriteria):
        return _action_count(criteria, phase, entries)
    if isinstance(criteria, ManualCriteria):
        return CriteriaResult(met=False, details="Manual advancement required")
    if isinstance(criteria, CompoundCriteria):
        return _compound(criteria, phase, entries, context, now)

    logger.warning(f"Unknown completion criteria: {criteria!r}")
    return CriteriaResult(met=False, details="Unknown completion criteria")


def _entries_in_phase(phase: Phase, entries: Sequence[TimelineEntry]) -> List[TimelineEntry]:
    if phase.started_at is None:
        return list(entries)
    return [e for e in entries if e.created_at >= phase.started_at]


def _phase_gravities(phase: Phase, entries: Sequence[TimelineEntry]) -> List[Tuple[datetime, float]]:
    """(timestamp, gravity) for reading entries in the phase, newest first."""
    return [
        (e.created_at, e.gravity)
        for e in _entries_in_phase(phase, entries)
        if e.is_reading and e.gravity is not None
    ]


def _gravity_stable(
    criteria: GravityStableCriteria,
    phase: Phase,
    entries: Sequence[TimelineEntry],
    now: datetime,
) -> CriteriaResult:
    needed = criteria.consecutive_readings
    readings = _phase_gravities(phase, entries)

    if criteria.stable_duration_hours is not None:
        window_start = now - timedelta(hours=criteria.stable_duration_hours)
        window = [g for ts, g in readings if ts >= window_start]
        hours = f"{criteria.stable_duration_hours:g}"
        if len(window) < needed:
            return CriteriaResult(
                met=False,
                details=f"Need {needed} gravity readings in the last {hours}h, have {len(window)}",
            )
        if not all(is_number(g) for g in window):
            return CriteriaResult(met=False, details=f"Invalid gravity reading in the last {hours}h")
        spread = max(window) - min(window)
        if spread <= criteria.tolerance_sg + SG_EPSILON:
            return CriteriaResult(
                met=True,
                details=(
                    f"Gravity stable — all {len(window)} readings in the last {hours}h "
                    f"within {criteria.tolerance_sg:.3f} SG"
                ),
            )
        return CriteriaResult(
            met=False,
            details=f"Gravity still moving — range of {spread:.3f} SG across the last {hours}h",
        )

    recent = [g for _, g in readings[:needed]]
    if len(recent) < needed:
        return CriteriaResult(
            met=False,
            details=f"Need {needed} gravity readings, have {len(recent)}",
        )
    if not all(is_number(g) for g in recent):
        return CriteriaResult(met=False, details=f"Invalid gravity reading among the last {needed}")

    spread = max(recent) - min(recent)
    if spread <= criteria.tolerance_sg + SG_EPSILON:
        return CriteriaResult(
            met=True,
            details=f"Gravity stable — last {needed} readings within {criteria.tolerance_sg:.3f} SG",
        )
    return CriteriaResult(
        met=False,
        details=f"Gravity still moving — range of {spread:.3f} SG across last {needed} readings",
    )


def _gravity_reached(
    criteria: GravityReachedCriteria,
    context: EvaluationContext,
) -> CriteriaResult:
    if criteria.target_gravity is None and criteria.attenuation_fraction is None:
        return CriteriaResult(met=False, details="No gravity target configured")

    latest = context.latest_gravity
    if not is_number(latest):
        return CriteriaResult(met=False, details="No gravity readings yet")

    if criteria.target_gravity is not None:
        target = criteria.target_gravity
        label = f"target {target:.3f} SG"
    else:
        original = context.original_gravity
        if not is_number(original):
            return CriteriaResult(
                met=False,
                details="Original gravity unknown — can't compute attenuation target",
            )
        target = attenuation_target(
            original, criteria.attenuation_fraction, context.expected_final_gravity
        )
        label = f"{criteria.attenuation_fraction:.0%} attenuation target {target:.3f} SG"

    if latest <= target + SG_EPSILON:
        return CriteriaResult(met=True, details=f"Gravity {latest:.3f} SG reached {label}")
    return CriteriaResult(met=False, details=f"Gravity {latest:.3f} SG, waiting for {label}")


def _duration(criteria: DurationCriteria, phase: Phase, now: datetime) -> CriteriaResult:
    if phase.started_at is None:
        return CriteriaResult(met=False, details="Phase hasn't started yet")
    days = days_between(phase.started_at, now)
    if days >= criteria.min_days:
        return CriteriaResult(met=True, details=f"{days} days elapsed (minimum {criteria.min_days})")
    return CriteriaResult(met=False, details=f"{days} of {criteria.min_days} days elapsed")


def _action_count(
    criteria: ActionCountCriteria,
    phase: Phase,
    entries: Sequence[TimelineEntry],
) -> CriteriaResult:
    count = sum(
        1
        for e in _entries_in_phase(phase, entries)
        if criteria.action_name in (e.data.get("name"), e.data.get("content"))
    )
    details = f"{criteria.action_name}: {count}/{criteria.min_count} completed"
    return CriteriaResult(met=count >= criteria.min_count, details=details)


def _compound(
    criteria: CompoundCriteria,
    phase: Phase,
    entries: Sequence[TimelineEntry],
    context: EvaluationContext,
    now: datetime,
) -> CriteriaResult:
    if not criteria.criteria:
        return CriteriaResult(met=True, details="No sub-criteria to satisfy")
    results = [evaluate_criteria(c, phase, entries, context, now) for c in criteria.criteria]
    return CriteriaResult(
        met=all(r.met for r in results),
        details="; ".join(r.details for r in results),
    )


# ============================================================================
# Actions
# ============================================================================

def effective_due_at(action: PhaseAction) -> Optional[datetime]:
    """
    When a time-based action is next due.

    A recurring action with a recorded completion is due ``interval_days``
    after that completion, overriding any static ``due_at``.
    """
    if action.interval_days and action.last_completed_at is not None:
        return action.last_completed_at + timedelta(days=action.interval_days)
    return action.due_at


def _gravity_trigger(action: PhaseAction, context: EvaluationContext) -> Optional[float]:
    if action.trigger_gravity is not None:
        return action.trigger_gravity
    if is_number(context.original_gravity):
        return attenuation_target(
            context.original_gravity,
            action.trigger_attenuation_fraction,
            context.expected_final_gravity,
        )
    return None


def classify_actions(
    actions: Sequence[PhaseAction],
    context: Optional[EvaluationContext] = None,
    now: Optional[datetime] = None,
) -> Tuple[List[PhaseAction], List[PhaseAction]]:
    """
    Split actions into (overdue, upcoming).

    Upcoming actions are sorted by effective due time with undated actions
    last; ties fall back to ``sort_order``.
    """
    context = context or EvaluationContext()
    now = ensure_utc(now) if now is not None else utcnow()

    overdue: List[PhaseAction] = []
    upcoming: List[Tuple[Optional[datetime], PhaseAction]] = []

    for action in actions:
        if action.is_gravity_triggered:
            if action.last_completed_at is not None:
                continue
            target = _gravity_trigger(action, context)
            latest = context.latest_gravity
            if target is not None and is_number(latest) and latest <= target + SG_EPSILON:
                overdue.append(action)
            else:
                upcoming.append((None, action))
            continue

        due = effective_due_at(action)
        if due is None:
            upcoming.append((None, action))
            continue

        # One-shot action already done on or after its due time
        if (
            not action.interval_days
            and action.last_completed_at is not None
            and action.last_completed_at >= due
        ):
            continue

        if due < now:
            overdue.append(action)
        else:
            upcoming.append((due, action))

    upcoming.sort(key=lambda item: (
        item[0] is None,
        item[0] or now,
        item[1].sort_order,
    ))
    return overdue, [action for _, action in upcoming]


# ============================================================================
# Phase
# ============================================================================

def evaluate_phase(
    phase: Phase,
    actions: Sequence[PhaseAction],
    entries: Sequence[TimelineEntry],
    context: Optional[EvaluationContext] = None,
    now: Optional[datetime] = None,
) -> PhaseEvaluation:
    """
    Evaluate a phase's readiness and action schedule.

    Args:
        phase: Phase to evaluate (normally the batch's active phase)
        actions: Actions attached to the phase
        entries: Recent timeline entries for the batch, newest first
        context: Optional gravity context (latest/original/expected final)
        now: Evaluation time (defaults to current UTC time)

    Returns:
        PhaseEvaluation with criteria verdict, action lists and days in phase
    """
    context = context or EvaluationContext()
    now = ensure_utc(now) if now is not None else utcnow()

    days_in_phase = days_between(phase.started_at, now) if phase.started_at else 0

    if phase.completion_criteria is not None:
        result = evaluate_criteria(phase.completion_criteria, phase, entries, context, now)
    else:
        result = CriteriaResult(met=False, details="No completion criteria set")

    overdue, upcoming = classify_actions(actions, context, now)

    logger.debug(
        f"Phase {phase.id} ({phase.name}): met={result.met}, "
        f"overdue={len(overdue)}, upcoming={len(upcoming)}"
    )

    return PhaseEvaluation(
        criteria_met=result.met,
        criteria_details=result.details,
        overdue_actions=overdue,
        next_actions=upcoming,
        days_in_phase=days_in_phase,
    )


def has_gravity_stable(criteria: Optional[CompletionCriteria]) -> bool:
    """True if ``criteria`` contains a gravity_stable node at any depth."""
    if criteria is None:
        return False
    if isinstance(criteria, GravityStableCriteria):
        return True
    if isinstance(criteria, CompoundCriteria):
        return any(has_gravity_stable(c) for c in criteria.criteria)
    return False
