"""
Interval analyzer for recurring pattern detection.

Scores how regular the gaps between a cluster's transaction dates are and
classifies the mean gap into a frequency bucket.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import List, Dict, Tuple, Optional, Sequence

import numpy as np

from models.recurring_pattern import RecurrenceFrequency
from services.recurring_patterns.config import DetectionConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Nearest whole number of days; halves round up."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class IntervalAnalysis:
    """Result of analysing one cluster's dates."""
    frequency: RecurrenceFrequency
    interval_days: int
    confidence: float
    mean_interval: float
    std_interval: float
    max_deviation: float


class IntervalAnalyzer:
    """
    Computes interval statistics, a confidence score and a frequency for a
    sorted list of dates.

    confidence = clamp01(max(0, 1 - sd/avg) + min(0.2, 0.05 * n)), multiplied by
    the variance penalty when any interval deviates from the mean by more than
    max_days_variance. n is the number of intervals and sd is the population
    standard deviation.
    """

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self.frequency_thresholds: Dict[RecurrenceFrequency, Tuple[float, float]] = (
            self.config.frequency_thresholds.to_dict()
        )

    def analyze(self, dates: Sequence[date]) -> Optional[IntervalAnalysis]:
        """
        Analyse sorted dates.

        Returns:
            IntervalAnalysis, or None when there are fewer than two dates, the
            mean interval is zero, or confidence is below min_confidence.
        """
        if len(dates) < 2:
            return None

        intervals = self.calculate_intervals(dates)
        mean_interval = float(np.mean(intervals))
        if mean_interval <= 0:
            logger.debug("All occurrences fall on the same day, no interval to analyse")
            return None

        std_interval = float(np.std(intervals))  # population (ddof=0)
        max_deviation = float(np.max(np.abs(np.asarray(intervals) - mean_interval)))

        confidence = self.calculate_confidence(len(intervals), mean_interval, std_interval, max_deviation)
        if confidence < self.config.min_confidence:
            logger.debug(
                f"Rejecting cluster: confidence {confidence:.3f} below {self.config.min_confidence} "
                f"(mean={mean_interval:.1f}, std={std_interval:.1f})"
            )
            return None

        return IntervalAnalysis(
            frequency=self.classify_frequency(mean_interval),
            interval_days=round_half_up(mean_interval),
            confidence=confidence,
            mean_interval=mean_interval,
            std_interval=std_interval,
            max_deviation=max_deviation,
        )

    @staticmethod
    def calculate_intervals(dates: Sequence[date]) -> List[int]:
        """Day deltas between consecutive dates."""
        return [(later - earlier).days for earlier, later in zip(dates, dates[1:])]

    def calculate_confidence(
        self,
        interval_count: int,
        mean_interval: float,
        std_interval: float,
        max_deviation: float
    ) -> float:
        regularity = max(0.0, 1.0 - std_interval / mean_interval)
        occurrence_bonus = min(0.2, 0.05 * interval_count)
        confidence = min(1.0, max(0.0, regularity + occurrence_bonus))

        if max_deviation > self.config.max_days_variance:
            confidence *= self.config.variance_penalty

        return confidence

    def classify_frequency(self, mean_interval: float) -> RecurrenceFrequency:
        for frequency, (min_days, max_days) in self.frequency_thresholds.items():
            if min_days <= mean_interval <= max_days:
                return frequency
        return RecurrenceFrequency.CUSTOM
