"""Gravity arithmetic and formatting helpers."""

import math
from typing import Optional

from ferment_analyzer.utils.constants import ABV_FACTOR


def calculate_abv(original_gravity: float, final_gravity: float) -> float:
    """Estimated ABV (%) from original and current/final gravity."""
    return round((original_gravity - final_gravity) * ABV_FACTOR, 1)


def attenuation_target(
    original_gravity: float,
    fraction: float,
    expected_final_gravity: float,
) -> float:
    """
    Gravity at which ``fraction`` of the expected drop has happened.

    Example: OG 1.090, expected FG 0.995, fraction 1/3 -> 1.0583.
    """
    return original_gravity - fraction * (original_gravity - expected_final_gravity)


def apparent_attenuation(
    original_gravity: float,
    current_gravity: float,
    expected_final_gravity: float,
) -> Optional[float]:
    """Fraction of the expected gravity drop achieved so far."""
    drop = original_gravity - expected_final_gravity
    if drop <= 0:
        return None
    return (original_gravity - current_gravity) / drop


def format_gravity(gravity: float) -> str:
    return f"{gravity:.3f} SG"


def is_number(value: Optional[float]) -> bool:
    """True for a real, finite float (rejects None, NaN and infinity)."""
    return value is not None and math.isfinite(value)
