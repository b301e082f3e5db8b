"""
Pattern repository abstraction.

Services depend on PatternRepository rather than on the DynamoDB functions
directly. Every write is a compare-and-update on the pattern's version;
`update_with_retry` re-reads and re-applies a mutation when a concurrent
writer got there first.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from functools import wraps
from typing import Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from models.recurring_pattern import RecurringPattern
from utils.db.base import ConflictError, PersistenceError
from utils.db import recurring_patterns as patterns_db

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class PatternRepository(ABC):
    """Storage contract for recurring patterns."""

    @abstractmethod
    def get(self, user_id: str, pattern_id: uuid.UUID) -> Optional[RecurringPattern]:
        pass

    @abstractmethod
    def find_by_identity(self, user_id: str, merchant_key: str, amount: Decimal) -> Optional[RecurringPattern]:
        pass

    @abstractmethod
    def find_candidates(self, user_id: str, merchant_key: str, amount: Decimal) -> List[RecurringPattern]:
        pass

    @abstractmethod
    def find_all_active_ordered_by_merchant(self, user_id: str) -> List[RecurringPattern]:
        pass

    @abstractmethod
    def find_for_sweep(self, user_id: Optional[str] = None) -> List[RecurringPattern]:
        pass

    @abstractmethod
    def find_due_within(self, user_id: str, start: date, end: date) -> List[RecurringPattern]:
        pass

    @abstractmethod
    def find_overdue(self, user_id: str, as_of: date) -> List[RecurringPattern]:
        pass

    @abstractmethod
    def find_by_category_type(self, user_id: str, category_type: str) -> List[RecurringPattern]:
        pass

    @abstractmethod
    def save(self, pattern: RecurringPattern, expected_version: Optional[int]) -> RecurringPattern:
        """
        Write the pattern if the stored version equals expected_version
        (or, for None, if no item with its ID exists).

        Raises:
            ConflictError: On a version mismatch
            PersistenceError: On any other storage failure
        """
        pass

    @abstractmethod
    def monthly_totals_by_category(self, user_id: str) -> Dict[str, Decimal]:
        pass

    def update_with_retry(
        self,
        initial: RecurringPattern,
        mutate: Callable[[RecurringPattern], bool],
        max_retries: int = DEFAULT_MAX_RETRIES
    ) -> Optional[RecurringPattern]:
        """
        Apply `mutate` and save under a version check, retrying on conflict.

        `mutate` returns False when there is nothing to write. On a conflict
        the pattern is re-read by ID and `mutate` runs again on the fresh copy.

        Returns:
            The saved pattern, the unchanged pattern if mutate returned False,
            or None if the pattern disappeared between attempts

        Raises:
            ConflictError: If every attempt lost the race
        """
        current: Optional[RecurringPattern] = initial
        for attempt in range(max_retries):
            if current is None:
                logger.warning(f"Pattern {str(initial.pattern_id)} no longer exists, skipping update")
                return None

            expected_version = current.version
            if not mutate(current):
                return current
            try:
                return self.save(current, expected_version)
            except ConflictError:
                logger.info(
                    f"Version conflict on pattern {str(current.pattern_id)} "
                    f"(attempt {attempt + 1}/{max_retries}), re-reading"
                )
                current = self.get(initial.user_id, initial.pattern_id)

        raise ConflictError(
            f"Gave up updating pattern {str(initial.pattern_id)} after {max_retries} conflicting attempts"
        )


def _persistence_errors(operation: str):
    """
    Translate storage failures into PersistenceError; ConflictError passes through.

    Stored items that no longer validate surface as ValueError from the
    database layer and are reported the same way.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ConflictError:
                raise
            except (ClientError, ConnectionError, ValueError) as e:
                raise PersistenceError(operation, str(e)) from e
        return wrapper
    return decorator


class DynamoDBPatternRepository(PatternRepository):
    """PatternRepository backed by the recurring patterns DynamoDB table."""

    @_persistence_errors("get")
    def get(self, user_id: str, pattern_id: uuid.UUID) -> Optional[RecurringPattern]:
        return patterns_db.get_pattern_from_db(user_id, pattern_id)

    @_persistence_errors("find_by_identity")
    def find_by_identity(self, user_id: str, merchant_key: str, amount: Decimal) -> Optional[RecurringPattern]:
        return patterns_db.find_pattern_by_identity(user_id, merchant_key, amount)

    @_persistence_errors("find_candidates")
    def find_candidates(self, user_id: str, merchant_key: str, amount: Decimal) -> List[RecurringPattern]:
        return patterns_db.list_candidate_patterns(user_id, merchant_key, amount)

    @_persistence_errors("find_all_active_ordered_by_merchant")
    def find_all_active_ordered_by_merchant(self, user_id: str) -> List[RecurringPattern]:
        return patterns_db.list_active_patterns_by_merchant(user_id)

    @_persistence_errors("find_for_sweep")
    def find_for_sweep(self, user_id: Optional[str] = None) -> List[RecurringPattern]:
        return patterns_db.list_patterns_for_sweep(user_id)

    @_persistence_errors("find_due_within")
    def find_due_within(self, user_id: str, start: date, end: date) -> List[RecurringPattern]:
        return patterns_db.list_patterns_due_within(user_id, start, end)

    @_persistence_errors("find_overdue")
    def find_overdue(self, user_id: str, as_of: date) -> List[RecurringPattern]:
        return patterns_db.list_overdue_patterns(user_id, as_of)

    @_persistence_errors("find_by_category_type")
    def find_by_category_type(self, user_id: str, category_type: str) -> List[RecurringPattern]:
        return patterns_db.list_patterns_by_category_type(user_id, category_type)

    @_persistence_errors("save")
    def save(self, pattern: RecurringPattern, expected_version: Optional[int]) -> RecurringPattern:
        return patterns_db.save_pattern_in_db(pattern, expected_version)

    @_persistence_errors("monthly_totals_by_category")
    def monthly_totals_by_category(self, user_id: str) -> Dict[str, Decimal]:
        return patterns_db.get_monthly_totals_by_category(user_id)
