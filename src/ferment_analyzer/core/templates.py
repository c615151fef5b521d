"""
Standard wine protocols.

Opinionated defaults for new batches: primary through bottle aging, with
target temperature bands and completion criteria per phase. Phases start
without actions. Optional phases can be left out when a protocol is applied.
"""

from typing import Dict, Iterable, List, Optional

from ferment_analyzer.core.models import (
    DurationCriteria,
    GravityStableCriteria,
    ManualCriteria,
    PhaseTemplate,
    ProtocolTemplate,
    TemperatureUnit,
)

F = TemperatureUnit.FAHRENHEIT


def _standard_wine(
    key: str,
    name: str,
    primary_temps: tuple,
    clearing_temps: tuple,
    secondary_description: str,
) -> ProtocolTemplate:
    return ProtocolTemplate(
        key=key,
        name=name,
        phases=[
            PhaseTemplate(
                slug="primary",
                name="Primary Fermentation",
                description="Active yeast fermentation. Ends when gravity stabilizes.",
                expected_duration_days=14,
                target_temp_low=primary_temps[0],
                target_temp_high=primary_temps[1],
                target_temp_unit=F,
                completion_criteria=GravityStableCriteria(
                    consecutive_readings=3,
                    tolerance_sg=0.002,
                    stable_duration_hours=24,
                ),
            ),
            PhaseTemplate(
                slug="secondary",
                name="Secondary / MLF",
                description=secondary_description,
                optional=True,
                completion_criteria=ManualCriteria(),
            ),
            PhaseTemplate(
                slug="clearing",
                name="Clearing / Fining",
                description="Wine clarifies with or without fining agents.",
                expected_duration_days=14,
                target_temp_low=clearing_temps[0],
                target_temp_high=clearing_temps[1],
                target_temp_unit=F,
                completion_criteria=DurationCriteria(min_days=14),
            ),
            PhaseTemplate(
                slug="aging",
                name="Bulk Aging",
                description="Extended aging on oak or in carboy.",
                optional=True,
                completion_criteria=ManualCriteria(),
                allowed_criteria_types=["manual", "duration"],
            ),
            PhaseTemplate(
                slug="bottling",
                name="Bottling",
                description="Final additions and bottling.",
                completion_criteria=ManualCriteria(),
            ),
            PhaseTemplate(
                slug="bottle-aging",
                name="Bottle Aging",
                description="Rest in bottle before drinking.",
                optional=True,
                completion_criteria=ManualCriteria(),
            ),
        ],
    )


STANDARD_PROTOCOLS: Dict[str, ProtocolTemplate] = {
    "red": _standard_wine(
        "red",
        "Standard Red Wine",
        primary_temps=(65, 78),
        clearing_temps=(60, 68),
        secondary_description="Malolactic fermentation or extended maceration.",
    ),
    "white": _standard_wine(
        "white",
        "Standard White Wine",
        primary_temps=(55, 68),
        clearing_temps=(55, 62),
        secondary_description="Malolactic fermentation (less common for whites).",
    ),
}


def list_protocols() -> List[ProtocolTemplate]:
    return list(STANDARD_PROTOCOLS.values())


def get_protocol(key: str) -> ProtocolTemplate:
    """
    Look up a standard protocol by key ("red" or "white").

    Raises:
        ValueError: If no protocol has that key
    """
    protocol = STANDARD_PROTOCOLS.get(key.strip().lower())
    if protocol is None:
        known = ", ".join(sorted(STANDARD_PROTOCOLS))
        raise ValueError(f"Unknown protocol template '{key}' (expected one of: {known})")
    return protocol


def select_phases(
    protocol: ProtocolTemplate,
    enabled_optional: Optional[Iterable[str]] = None,
) -> List[PhaseTemplate]:
    """
    Phases to create for ``protocol``, in order.

    Required phases are always kept. Optional phases are kept when their
    slug is in ``enabled_optional``; passing None keeps every phase.
    """
    if enabled_optional is None:
        return list(protocol.phases)
    enabled = set(enabled_optional)
    return [p for p in protocol.phases if not p.optional or p.slug in enabled]
