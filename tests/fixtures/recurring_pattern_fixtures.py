"""
Test fixtures and factory functions for recurring pattern detection.

Provides transaction and pattern builders plus an in-memory PatternRepository
that enforces the same version checks as the DynamoDB implementation.
"""

import threading
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from models.recurring_pattern import (
    RecurringPattern,
    RecurrenceFrequency,
    PatternStatus,
    quantize_amount,
    pattern_identity_id,
)
from models.transaction import Transaction
from services.recurring_patterns.repository import PatternRepository
from utils.db.base import ConflictError

TEST_USER = "test-user"
TODAY = date(2025, 6, 30)


def to_ms(day: date) -> int:
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp() * 1000)


def create_transaction(
    merchant_name: Optional[str] = "NETFLIX.COM",
    amount: str = "-15.99",
    on: date = TODAY,
    user_id: str = TEST_USER,
    category_type: Optional[str] = "EXPENSE",
    category: Optional[str] = "Streaming",
    created_at: Optional[int] = None
) -> Transaction:
    """
    Create a test transaction dated `on`.

    Returns:
        Transaction created (by default) on its transaction date
    """
    return Transaction(
        userId=user_id,
        transactionId=uuid.uuid4(),
        merchantName=merchant_name,
        amount=Decimal(amount),
        date=to_ms(on),
        categoryType=category_type,
        category=category,
        createdAt=created_at if created_at is not None else to_ms(on),
    )


def create_series(
    merchant_name: str,
    amount: str,
    start: date,
    interval_days: int,
    count: int,
    user_id: str = TEST_USER,
    **kwargs
) -> List[Transaction]:
    """Create `count` evenly spaced transactions starting on `start`."""
    return [
        create_transaction(merchant_name, amount, start + timedelta(days=interval_days * i), user_id, **kwargs)
        for i in range(count)
    ]


def create_pattern(
    merchant_key: str = "netflixcom",
    amount: str = "-15.99",
    interval_days: int = 30,
    last_occurrence: date = TODAY,
    occurrence_count: int = 3,
    status: PatternStatus = PatternStatus.ACTIVE,
    user_id: str = TEST_USER,
    frequency: Optional[RecurrenceFrequency] = None,
    confidence: float = 0.9,
    next_expected_date: Optional[date] = None,
    **kwargs
) -> RecurringPattern:
    """Create a stored-looking pattern with a deterministic ID."""
    first_occurrence = kwargs.pop(
        'first_occurrence', last_occurrence - timedelta(days=interval_days * max(occurrence_count - 1, 0))
    )
    return RecurringPattern(
        pattern_id=pattern_identity_id(user_id, merchant_key, Decimal(amount)),
        user_id=user_id,
        merchant_key=merchant_key,
        merchant_name=kwargs.pop('merchant_name', merchant_key.upper()),
        amount=Decimal(amount),
        frequency=frequency or RecurrenceFrequency.MONTHLY,
        interval_days=interval_days,
        confidence_score=confidence,
        status=status,
        first_occurrence=first_occurrence,
        last_occurrence=last_occurrence,
        next_expected_date=next_expected_date,
        occurrence_count=occurrence_count,
        **kwargs
    )


class InMemoryPatternRepository(PatternRepository):
    """
    Dictionary-backed repository.

    Stored patterns are copied on the way in and out so callers cannot mutate
    storage without a save, matching the DynamoDB round trip.
    """

    def __init__(self, patterns: Optional[List[RecurringPattern]] = None):
        self._items: Dict[Tuple[str, uuid.UUID], RecurringPattern] = {}
        self._lock = threading.Lock()
        self.save_calls = 0
        self.before_save: Optional[Callable[[RecurringPattern, Optional[int]], None]] = None
        for pattern in patterns or []:
            self._items[(pattern.user_id, pattern.pattern_id)] = pattern.model_copy(deep=True)

    @property
    def patterns(self) -> List[RecurringPattern]:
        return [p.model_copy(deep=True) for p in self._items.values()]

    def _user_patterns(self, user_id: str) -> List[RecurringPattern]:
        return [p.model_copy(deep=True) for (uid, _), p in self._items.items() if uid == user_id]

    def get(self, user_id: str, pattern_id: uuid.UUID) -> Optional[RecurringPattern]:
        stored = self._items.get((user_id, pattern_id))
        return stored.model_copy(deep=True) if stored else None

    def find_by_identity(self, user_id: str, merchant_key: str, amount: Decimal) -> Optional[RecurringPattern]:
        patterns = [p for p in self._user_patterns(user_id) if p.merchant_key == merchant_key]
        for pattern in patterns:
            if quantize_amount(pattern.amount) == quantize_amount(amount):
                return pattern
        within = [p for p in patterns if p.is_amount_within_tolerance(amount)]
        return min(within, key=lambda p: abs(p.amount - amount)) if within else None

    def find_candidates(self, user_id: str, merchant_key: str, amount: Decimal) -> List[RecurringPattern]:
        return [
            p for p in self._user_patterns(user_id)
            if p.merchant_key == merchant_key and p.is_active
            and p.status != PatternStatus.ENDED and p.is_amount_within_tolerance(amount)
        ]

    def find_all_active_ordered_by_merchant(self, user_id: str) -> List[RecurringPattern]:
        patterns = [p for p in self._user_patterns(user_id) if p.is_active]
        return sorted(patterns, key=lambda p: (p.merchant_key, p.amount))

    def find_for_sweep(self, user_id: Optional[str] = None) -> List[RecurringPattern]:
        patterns = [
            p.model_copy(deep=True) for (uid, _), p in self._items.items()
            if (user_id is None or uid == user_id) and p.is_active
            and p.status == PatternStatus.ACTIVE
        ]
        return sorted(patterns, key=lambda p: p.next_expected_date)

    def find_due_within(self, user_id: str, start: date, end: date) -> List[RecurringPattern]:
        patterns = [
            p for p in self.find_all_active_ordered_by_merchant(user_id)
            if p.status == PatternStatus.ACTIVE and start <= p.next_expected_date <= end
        ]
        return sorted(patterns, key=lambda p: p.next_expected_date)

    def find_overdue(self, user_id: str, as_of: date) -> List[RecurringPattern]:
        patterns = [
            p for p in self.find_all_active_ordered_by_merchant(user_id)
            if p.status == PatternStatus.ACTIVE and p.next_expected_date < as_of
        ]
        return sorted(patterns, key=lambda p: p.next_expected_date)

    def find_by_category_type(self, user_id: str, category_type: str) -> List[RecurringPattern]:
        patterns = [p for p in self.find_all_active_ordered_by_merchant(user_id) if p.category_type == category_type]
        return sorted(patterns, key=lambda p: abs(p.amount), reverse=True)

    def save(self, pattern: RecurringPattern, expected_version: Optional[int]) -> RecurringPattern:
        if self.before_save is not None:
            self.before_save(pattern, expected_version)
        with self._lock:
            self.save_calls += 1
            key = (pattern.user_id, pattern.pattern_id)
            stored = self._items.get(key)
            if expected_version is None:
                if stored is not None:
                    raise ConflictError(f"Pattern {pattern.pattern_id} already exists")
                new_version = 0
            else:
                if stored is None or stored.version != expected_version:
                    raise ConflictError(f"Pattern {pattern.pattern_id} changed concurrently")
                new_version = expected_version + 1
            pattern.version = new_version
            self._items[key] = pattern.model_copy(deep=True)
            return pattern

    def monthly_totals_by_category(self, user_id: str) -> Dict[str, Decimal]:
        totals: Dict[str, Decimal] = {}
        for pattern in self.find_all_active_ordered_by_merchant(user_id):
            if pattern.status == PatternStatus.ENDED:
                continue
            key = pattern.category_type or "Uncategorized"
            totals[key] = totals.get(key, Decimal("0")) + pattern.monthly_equivalent_amount
        return totals
