"""
Pattern matcher.

Tests each newly ingested transaction against stored patterns and records the
occurrence on every match.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from models.recurring_pattern import RecurringPattern, PatternEvent, PatternStatus
from models.transaction import Transaction
from services.recurring_patterns.config import DetectionConfig, DEFAULT_CONFIG
from services.recurring_patterns.normalizer import normalize_merchant_name
from services.recurring_patterns.repository import PatternRepository

logger = logging.getLogger(__name__)


def record_occurrence(
    pattern: RecurringPattern,
    occurrence_date: date,
    amount: Decimal,
    category_type: Optional[str] = None,
    category: Optional[str] = None
) -> RecurringPattern:
    """
    Record one more occurrence on a pattern in place.

    The count always increases by one. The last occurrence (and the category,
    taken from the most recent transaction) only move forward. The next
    expected date is recomputed and PENDING_CONFIRMATION becomes ACTIVE.

    Raises:
        ValueError: If the amount is outside the pattern's tolerance
        IllegalTransitionError: If the pattern has ENDED
    """
    if not pattern.is_amount_within_tolerance(amount):
        raise ValueError(
            f"Amount {amount} is outside the tolerance of pattern {str(pattern.pattern_id)} ({pattern.amount})"
        )

    pattern.apply_event(PatternEvent.OCCURRENCE_RECORDED)
    if occurrence_date > pattern.last_occurrence:
        pattern.last_occurrence = occurrence_date
        if category_type is not None or category is not None:
            pattern.category_type = category_type
            pattern.category = category
    pattern.occurrence_count += 1
    pattern.refresh_next_expected_date()
    return pattern


class PatternMatcher:
    """Inline matcher called once per newly ingested transaction."""

    def __init__(self, repository: PatternRepository, config: Optional[DetectionConfig] = None):
        self.repository = repository
        self.config = config or DEFAULT_CONFIG

    def find_candidates(self, transaction: Transaction) -> List[RecurringPattern]:
        merchant_key = normalize_merchant_name(transaction.merchant_name)
        return self.repository.find_candidates(transaction.user_id, merchant_key, transaction.amount)

    def record_occurrence(self, pattern: RecurringPattern, transaction: Transaction) -> Optional[RecurringPattern]:
        """
        Record the transaction on one pattern under a version check.

        Returns:
            The saved pattern, or None if it ended, vanished in the meantime or
            already carries this transaction
        """
        state = {"recorded": False}

        def apply(current: RecurringPattern) -> bool:
            state["recorded"] = False
            if current.status == PatternStatus.ENDED or not current.is_active:
                logger.info(f"Pattern {str(current.pattern_id)} ended before the occurrence could be recorded")
                return False
            if current.has_recorded(transaction.transaction_id):
                logger.info(
                    f"Transaction {str(transaction.transaction_id)} already recorded on pattern "
                    f"{str(current.pattern_id)}, skipping"
                )
                return False
            record_occurrence(
                current,
                transaction.transaction_date,
                transaction.amount,
                transaction.category_type,
                transaction.category,
            )
            current.remember_transactions([transaction.transaction_id])
            state["recorded"] = True
            return True

        saved = self.repository.update_with_retry(pattern, apply, self.config.max_conflict_retries)
        return saved if state["recorded"] else None

    def process_new_transaction(self, transaction: Transaction) -> List[RecurringPattern]:
        """
        Record the transaction on every matching pattern.

        Each match is updated independently; a transaction may match zero,
        one, or several patterns.

        Returns:
            The updated patterns
        """
        candidates = self.find_candidates(transaction)
        if not candidates:
            logger.debug(f"Transaction {str(transaction.transaction_id)} matches no recurring pattern")
            return []

        updated: List[RecurringPattern] = []
        for pattern in candidates:
            saved = self.record_occurrence(pattern, transaction)
            if saved is not None:
                updated.append(saved)
                logger.info(
                    f"Recorded occurrence of transaction {str(transaction.transaction_id)} on pattern "
                    f"{str(saved.pattern_id)} ({saved.merchant_key}), count {saved.occurrence_count}, "
                    f"status {saved.status.value}"
                )
        return updated
