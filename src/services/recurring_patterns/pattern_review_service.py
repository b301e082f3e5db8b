"""
Pattern review service.

User-facing operations on detected patterns: confirming, editing and
deactivating them, plus the read views used for budgeting and reminders.
"""

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from models.recurring_pattern import (
    RecurringPattern,
    RecurringPatternUpdate,
    PatternEvent,
    PatternStatus,
)
from services.recurring_patterns.config import DetectionConfig, DEFAULT_CONFIG
from services.recurring_patterns.repository import PatternRepository, DynamoDBPatternRepository
from utils.db.base import NotFound

logger = logging.getLogger(__name__)

DEFAULT_DUE_SOON_DAYS = 7
DEFAULT_LOW_CONFIDENCE_THRESHOLD = 0.7


class PatternReviewService:
    """Review and query operations for a user's recurring patterns."""

    def __init__(self, repository: Optional[PatternRepository] = None, config: Optional[DetectionConfig] = None):
        self.repository = repository or DynamoDBPatternRepository()
        self.config = config or DEFAULT_CONFIG

    def get_pattern(self, user_id: str, pattern_id: uuid.UUID) -> RecurringPattern:
        """
        Raises:
            NotFound: If the user has no pattern with this ID
        """
        pattern = self.repository.get(user_id, pattern_id)
        if pattern is None:
            raise NotFound(f"Recurring pattern {str(pattern_id)} not found")
        return pattern

    # =========================================================================
    # Mutations
    # =========================================================================

    def _update(self, user_id: str, pattern_id: uuid.UUID, mutate) -> RecurringPattern:
        pattern = self.get_pattern(user_id, pattern_id)
        saved = self.repository.update_with_retry(pattern, mutate, self.config.max_conflict_retries)
        if saved is None:
            raise NotFound(f"Recurring pattern {str(pattern_id)} not found")
        return saved

    def confirm_pattern(self, user_id: str, pattern_id: uuid.UUID) -> RecurringPattern:
        """Mark the pattern as confirmed by the user. Status is unchanged."""
        def apply(current: RecurringPattern) -> bool:
            if current.user_confirmed:
                return False
            current.user_confirmed = True
            current.touch()
            return True

        saved = self._update(user_id, pattern_id, apply)
        logger.info(f"Pattern {str(pattern_id)} confirmed by user {user_id}")
        return saved

    def edit_pattern(self, user_id: str, pattern_id: uuid.UUID, data: Dict[str, Any]) -> RecurringPattern:
        """
        Apply a manual edit given as camelCase request data.

        Raises:
            PatternValidationError: If the edit is invalid; nothing is written
            NotFound: If the pattern does not exist
        """
        update = RecurringPatternUpdate.from_request(data)

        def apply(current: RecurringPattern) -> bool:
            return current.apply_update(update)

        saved = self._update(user_id, pattern_id, apply)
        logger.info(f"Pattern {str(pattern_id)} edited by user {user_id}: {sorted(data.keys())}")
        return saved

    def deactivate_pattern(self, user_id: str, pattern_id: uuid.UUID) -> RecurringPattern:
        """End the pattern at the user's request. Deactivating an ended pattern is a no-op."""
        def apply(current: RecurringPattern) -> bool:
            if current.status == PatternStatus.ENDED:
                if not current.is_active:
                    return False
                current.is_active = False
                current.touch()
                return True
            current.apply_event(PatternEvent.USER_DEACTIVATED)
            return True

        saved = self._update(user_id, pattern_id, apply)
        logger.info(f"Pattern {str(pattern_id)} deactivated by user {user_id}")
        return saved

    # =========================================================================
    # Views
    # =========================================================================

    def list_active(self, user_id: str) -> List[RecurringPattern]:
        return self.repository.find_all_active_ordered_by_merchant(user_id)

    def get_due_soon(
        self,
        user_id: str,
        days: int = DEFAULT_DUE_SOON_DAYS,
        today: Optional[date] = None
    ) -> List[RecurringPattern]:
        """ACTIVE patterns expected within the next `days` days, soonest first."""
        today = today or date.today()
        return self.repository.find_due_within(user_id, today, today + timedelta(days=days))

    def get_overdue(self, user_id: str, today: Optional[date] = None) -> List[RecurringPattern]:
        """ACTIVE patterns past their next expected date by more than the grace period."""
        today = today or date.today()
        grace = self.config.overdue_grace_days
        return [
            p for p in self.repository.find_overdue(user_id, today)
            if p.is_overdue(today, grace)
        ]

    def get_by_category_type(self, user_id: str, category_type: str) -> List[RecurringPattern]:
        return self.repository.find_by_category_type(user_id, category_type)

    def get_monthly_totals_by_category(self, user_id: str) -> Dict[str, Decimal]:
        return self.repository.monthly_totals_by_category(user_id)

    def get_low_confidence(
        self,
        user_id: str,
        threshold: float = DEFAULT_LOW_CONFIDENCE_THRESHOLD
    ) -> List[RecurringPattern]:
        """Unconfirmed patterns scoring below the threshold, least confident first."""
        patterns = [
            p for p in self.list_active(user_id)
            if not p.user_confirmed and p.confidence_score < threshold
        ]
        return sorted(patterns, key=lambda p: p.confidence_score)

    def get_unconfirmed(self, user_id: str) -> List[RecurringPattern]:
        """Patterns awaiting user review, most confident first."""
        patterns = [
            p for p in self.list_active(user_id)
            if not p.user_confirmed and p.status != PatternStatus.ENDED
        ]
        return sorted(patterns, key=lambda p: p.confidence_score, reverse=True)
