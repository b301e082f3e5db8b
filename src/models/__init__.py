"""
Models package for recurring pattern detection.
"""

from .transaction import Transaction

from .recurring_pattern import (
    RecurringPattern,
    RecurringPatternUpdate,
    RecurrenceFrequency,
    PatternStatus,
    PatternEvent,
    DetectionMethod,
    IllegalTransitionError,
    PatternValidationError,
    STATUS_TRANSITIONS,
    next_status,
    pattern_identity_id,
)

from .events import (
    BaseEvent,
    TransactionCreatedEvent,
    RecurringPatternAnalysisRequestedEvent,
)

__all__ = [
    'Transaction',
    'RecurringPattern',
    'RecurringPatternUpdate',
    'RecurrenceFrequency',
    'PatternStatus',
    'PatternEvent',
    'DetectionMethod',
    'IllegalTransitionError',
    'PatternValidationError',
    'STATUS_TRANSITIONS',
    'next_status',
    'pattern_identity_id',
    'BaseEvent',
    'TransactionCreatedEvent',
    'RecurringPatternAnalysisRequestedEvent',
]

__all__ = sorted(list(set(__all__)))
