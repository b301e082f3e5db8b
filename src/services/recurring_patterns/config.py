"""
Configuration classes for recurring pattern detection.

Centralizes the thresholds and weights used by the detection pipeline, the
matcher, the merger and the lifecycle sweeper. Values can be overridden from
the environment without code changes.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Tuple

from models.recurring_pattern import RecurrenceFrequency


@dataclass
class FrequencyThresholds:
    """
    Day range thresholds for frequency classification.

    Each threshold is an inclusive (min_days, max_days) range for the mean
    interval. A mean outside every range is classified CUSTOM.
    """

    weekly: Tuple[float, float] = (6, 8)
    bi_weekly: Tuple[float, float] = (13, 15)
    monthly: Tuple[float, float] = (28, 32)
    bi_monthly: Tuple[float, float] = (58, 62)
    quarterly: Tuple[float, float] = (88, 92)
    semi_annually: Tuple[float, float] = (178, 182)
    annually: Tuple[float, float] = (360, 370)

    def to_dict(self) -> Dict[RecurrenceFrequency, Tuple[float, float]]:
        """
        Convert thresholds to a dictionary mapping frequency enum to ranges.

        Returns:
            Dictionary mapping RecurrenceFrequency to (min_days, max_days) tuple
        """
        return {
            RecurrenceFrequency.WEEKLY: self.weekly,
            RecurrenceFrequency.BI_WEEKLY: self.bi_weekly,
            RecurrenceFrequency.MONTHLY: self.monthly,
            RecurrenceFrequency.BI_MONTHLY: self.bi_monthly,
            RecurrenceFrequency.QUARTERLY: self.quarterly,
            RecurrenceFrequency.SEMI_ANNUALLY: self.semi_annually,
            RecurrenceFrequency.ANNUALLY: self.annually,
        }


@dataclass
class DetectionConfig:
    """Master configuration for recurring pattern detection."""

    min_occurrences: int = 2
    """Minimum transactions in a merchant group and in a cluster."""

    max_days_variance: int = 7
    """An interval deviating from the mean by more than this triggers the variance penalty."""

    variance_penalty: float = 0.7
    """Multiplier applied to confidence when the variance limit is exceeded."""

    min_confidence: float = 0.6
    """Clusters scoring below this produce no pattern."""

    amount_tolerance_percent: float = 10.0
    """Allowed deviation from a cluster anchor or pattern amount."""

    lookback_months: int = 12
    """Trailing window of transactions analysed by a batch run."""

    existing_weight: float = 0.7
    candidate_weight: float = 0.3
    """Confidence blend used when reconciling a rebuilt pattern with a stored one."""

    irregular_multiplier: int = 2
    """Days past the next expected date, in intervals, before a pattern is IRREGULAR."""

    ended_multiplier: int = 3
    """Days since the last occurrence, in intervals, before a pattern is ENDED."""

    overdue_grace_days: int = 3

    max_conflict_retries: int = 3
    """Attempts at a compare-and-update before a version conflict is surfaced."""

    analysis_workers: int = 1

    frequency_thresholds: FrequencyThresholds = field(default_factory=FrequencyThresholds)

    def __post_init__(self):
        if abs(self.existing_weight + self.candidate_weight - 1.0) > 0.001:
            raise ValueError(
                f"Merge weights must sum to 1.0, got {self.existing_weight + self.candidate_weight}"
            )
        if self.min_occurrences < 2:
            raise ValueError("min_occurrences must be at least 2 to measure an interval")

    @property
    def amount_tolerance(self) -> Decimal:
        return Decimal(str(self.amount_tolerance_percent))

    @classmethod
    def from_environment(cls) -> 'DetectionConfig':
        """
        Create configuration from environment variables with fallback to defaults.

        Environment variables:
        - RECURRING_MIN_OCCURRENCES
        - RECURRING_MAX_DAYS_VARIANCE
        - RECURRING_MIN_CONFIDENCE
        - RECURRING_AMOUNT_TOLERANCE_PERCENT
        - RECURRING_LOOKBACK_MONTHS
        - RECURRING_MAX_CONFLICT_RETRIES
        - RECURRING_ANALYSIS_WORKERS
        """
        return cls(
            min_occurrences=int(os.getenv('RECURRING_MIN_OCCURRENCES', 2)),
            max_days_variance=int(os.getenv('RECURRING_MAX_DAYS_VARIANCE', 7)),
            min_confidence=float(os.getenv('RECURRING_MIN_CONFIDENCE', 0.6)),
            amount_tolerance_percent=float(os.getenv('RECURRING_AMOUNT_TOLERANCE_PERCENT', 10.0)),
            lookback_months=int(os.getenv('RECURRING_LOOKBACK_MONTHS', 12)),
            max_conflict_retries=int(os.getenv('RECURRING_MAX_CONFLICT_RETRIES', 3)),
            analysis_workers=int(os.getenv('RECURRING_ANALYSIS_WORKERS', 1)),
        )


# Default configuration instance
DEFAULT_CONFIG = DetectionConfig()

MIN_OCCURRENCES = DEFAULT_CONFIG.min_occurrences
MAX_DAYS_VARIANCE = DEFAULT_CONFIG.max_days_variance
MIN_CONFIDENCE = DEFAULT_CONFIG.min_confidence
AMOUNT_TOLERANCE_PERCENT = DEFAULT_CONFIG.amount_tolerance_percent
