"""
Pattern merger.

Reconciles a freshly built pattern with the stored pattern of the same
(merchant, amount) identity. This is the only way a batch run changes an
existing pattern.
"""

import logging
from typing import Optional

from models.recurring_pattern import RecurringPattern
from services.recurring_patterns.config import DetectionConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


class PatternMerger:
    """
    Blends confidence, keeps the larger occurrence count and adopts a strictly
    newer last occurrence. Re-running a batch over the same transactions
    therefore leaves occurrence counts unchanged.
    """

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def reconcile(self, existing: RecurringPattern, candidate: RecurringPattern) -> RecurringPattern:
        """Merge candidate into existing in place and return existing."""
        blended = (
            self.config.existing_weight * existing.confidence_score
            + self.config.candidate_weight * candidate.confidence_score
        )
        existing.confidence_score = min(1.0, max(0.0, blended))
        existing.occurrence_count = max(existing.occurrence_count, candidate.occurrence_count)
        existing.remember_transactions(candidate.recent_transaction_ids)

        if candidate.last_occurrence > existing.last_occurrence:
            logger.debug(
                f"Pattern {str(existing.pattern_id)}: last occurrence "
                f"{existing.last_occurrence} -> {candidate.last_occurrence}"
            )
            existing.last_occurrence = candidate.last_occurrence
            existing.refresh_next_expected_date()

        existing.touch()
        return existing
