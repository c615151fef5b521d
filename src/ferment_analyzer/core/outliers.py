"""
Outlier detection for hydrometer readings.

Flags sensor artifacts in a batch's reading history:
- Head trim: settling readings at the start of a log (contiguous prefix)
- Tail trim: transfer/removal readings at the end of a log (contiguous suffix)
- Mid-log spikes: readings far from their centred rolling median

Pure functions only. Flags are suggestions; the caller persists whatever
exclusions a user confirms.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from ferment_analyzer.core.models import (
    ExcludeReason,
    OutlierDetectionResult,
    OutlierFlag,
    OutlierOptions,
    Reading,
)
from ferment_analyzer.utils.constants import (
    OUTLIER_MIN_READINGS,
    OUTLIER_SMALL_DATASET_SIZE,
)

logger = logging.getLogger(__name__)


def median(values: Sequence[float]) -> float:
    """Median of ``values``; 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def rolling_median(gravities: Sequence[float], window_size: int) -> List[float]:
    """
    Centred rolling median.

    The window is truncated at both ends of the series, so the first and
    last points use a smaller neighbourhood rather than padding.
    """
    half = window_size // 2
    n = len(gravities)
    return [
        median(gravities[max(0, i - half):min(n, i + half + 1)])
        for i in range(n)
    ]


class OutlierDetector:
    """
    Rolling-median outlier detector.

    Readings must be ascending by ``recorded_at`` and should include
    previously excluded readings so earlier decisions stay visible.
    """

    def __init__(self, options: Optional[OutlierOptions] = None):
        self.options = options or OutlierOptions()

    def detect(self, readings: Sequence[Reading]) -> OutlierDetectionResult:
        """Run head, tail and mid-log detection over ``readings``."""
        result = OutlierDetectionResult()

        if len(readings) < OUTLIER_MIN_READINGS:
            logger.debug(f"Outlier detection skipped: only {len(readings)} readings")
            return result

        gravities = [r.gravity for r in readings]

        if len(readings) < OUTLIER_SMALL_DATASET_SIZE:
            result.mid_log_outliers = self._detect_small_dataset(readings, gravities)
            result.total_flagged = len(result.mid_log_outliers)
            return result

        result.head_outliers = self._detect_head(readings, gravities)
        result.tail_outliers = self._detect_tail(readings, gravities)

        trimmed = {flag.reading_id for flag in result.head_outliers}
        trimmed.update(flag.reading_id for flag in result.tail_outliers)
        result.mid_log_outliers = self._detect_mid_log(readings, gravities, trimmed)

        if result.head_outliers:
            # Reading right after the last head outlier
            idx = len(result.head_outliers)
            if idx < len(readings):
                result.clean_range_start = readings[idx].recorded_at

        if result.tail_outliers:
            # Tail flags are stored nearest-to-end first; the last one is earliest
            idx = len(readings) - len(result.tail_outliers)
            if idx > 0:
                result.clean_range_end = readings[idx - 1].recorded_at

        result.total_flagged = (
            len(result.head_outliers)
            + len(result.tail_outliers)
            + len(result.mid_log_outliers)
        )

        logger.debug(
            f"Outliers: head={len(result.head_outliers)}, tail={len(result.tail_outliers)}, "
            f"mid={len(result.mid_log_outliers)} of {len(readings)} readings"
        )
        return result

    def _detect_small_dataset(
        self,
        readings: Sequence[Reading],
        gravities: List[float],
    ) -> List[OutlierFlag]:
        """Compare each reading to the median of its immediate neighbours."""
        flags = []
        last = len(gravities) - 1
        for i, reading in enumerate(readings):
            neighbours = []
            if i > 0:
                neighbours.append(gravities[i - 1])
            if i < last:
                neighbours.append(gravities[i + 1])

            deviation = abs(gravities[i] - median(neighbours))
            if deviation > self.options.small_dataset_threshold:
                flags.append(_flag(reading, deviation, ExcludeReason.OUTLIER_AUTO))
        return flags

    def _detect_head(
        self,
        readings: Sequence[Reading],
        gravities: List[float],
    ) -> List[OutlierFlag]:
        check = self.options.head_tail_check_size
        ref_start = check
        ref_end = min(ref_start + self.options.head_tail_ref_size, len(gravities))
        reference = median(gravities[ref_start:ref_end])

        flags = []
        for i in range(min(check, len(readings))):
            deviation = abs(gravities[i] - reference)
            if deviation <= self.options.mid_log_threshold:
                break
            flags.append(_flag(readings[i], deviation, ExcludeReason.HEAD_TRIM))
        return flags

    def _detect_tail(
        self,
        readings: Sequence[Reading],
        gravities: List[float],
    ) -> List[OutlierFlag]:
        check = self.options.head_tail_check_size
        n = len(gravities)
        ref_end = max(0, n - check)
        ref_start = max(0, ref_end - self.options.head_tail_ref_size)
        reference = median(gravities[ref_start:ref_end])

        flags = []
        for i in range(n - 1, max(0, n - check) - 1, -1):
            deviation = abs(gravities[i] - reference)
            if deviation <= self.options.mid_log_threshold:
                break
            flags.append(_flag(readings[i], deviation, ExcludeReason.TAIL_TRIM))
        return flags

    def _detect_mid_log(
        self,
        readings: Sequence[Reading],
        gravities: List[float],
        skip_ids: set,
    ) -> List[OutlierFlag]:
        medians = rolling_median(gravities, self.options.window_size)
        flags = []
        for i, reading in enumerate(readings):
            if reading.id in skip_ids:
                continue
            deviation = abs(gravities[i] - medians[i])
            if deviation > self.options.mid_log_threshold:
                flags.append(_flag(reading, deviation, ExcludeReason.OUTLIER_AUTO))
        return flags


def _flag(reading: Reading, deviation: float, reason: ExcludeReason) -> OutlierFlag:
    return OutlierFlag(
        reading_id=reading.id,
        gravity=reading.gravity,
        recorded_at=reading.recorded_at,
        deviation=deviation,
        reason=reason,
    )


def detect_outliers(
    readings: Sequence[Reading],
    options: Optional[OutlierOptions] = None,
) -> OutlierDetectionResult:
    """Convenience wrapper around ``OutlierDetector(options).detect(readings)``."""
    return OutlierDetector(options).detect(readings)
