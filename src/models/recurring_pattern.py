"""
Recurring Pattern Models.

This module provides Pydantic models for detected recurring payment patterns
(subscriptions, bills, periodic income), the closed enumerations describing
their cadence and lifecycle, and the status transition table.
"""

import uuid
import logging
from typing import Optional, Dict, Any, Tuple, List, Iterable
from datetime import datetime, timezone, date, timedelta
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict, ValidationError
from typing_extensions import Self

logger = logging.getLogger(__name__)

# Constants
TIMESTAMP_ERROR_MESSAGE = "Timestamp must be a positive integer representing milliseconds since epoch"
AMOUNT_QUANTUM = Decimal("0.01")
# Transactions remembered per pattern so a redelivered one is not counted twice
MAX_RECENT_TRANSACTION_IDS = 50


class IllegalTransitionError(ValueError):
    """Raised when a status has no transition for the given event."""

    def __init__(self, status: 'PatternStatus', event: 'PatternEvent'):
        self.status = status
        self.event = event
        super().__init__(f"No transition from {status.value} on {event.value}")


class PatternValidationError(ValueError):
    """Raised when a manual edit of a pattern is invalid. `field` names the offending attribute."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class RecurrenceFrequency(str, Enum):
    """Cadence of a recurring pattern."""
    WEEKLY = "weekly"                 # ~7 day intervals
    BI_WEEKLY = "bi_weekly"           # ~14 day intervals
    MONTHLY = "monthly"               # ~30 day intervals
    BI_MONTHLY = "bi_monthly"         # ~60 day intervals
    QUARTERLY = "quarterly"           # ~90 day intervals
    SEMI_ANNUALLY = "semi_annually"   # ~180 day intervals
    ANNUALLY = "annually"             # ~365 day intervals
    CUSTOM = "custom"                 # Any other regular interval

    @property
    def default_days(self) -> int:
        return FREQUENCY_DEFAULT_DAYS[self]

    @property
    def label(self) -> str:
        return FREQUENCY_LABELS[self]


FREQUENCY_DEFAULT_DAYS: Dict[RecurrenceFrequency, int] = {
    RecurrenceFrequency.WEEKLY: 7,
    RecurrenceFrequency.BI_WEEKLY: 14,
    RecurrenceFrequency.MONTHLY: 30,
    RecurrenceFrequency.BI_MONTHLY: 60,
    RecurrenceFrequency.QUARTERLY: 90,
    RecurrenceFrequency.SEMI_ANNUALLY: 180,
    RecurrenceFrequency.ANNUALLY: 365,
    RecurrenceFrequency.CUSTOM: 0,
}

FREQUENCY_LABELS: Dict[RecurrenceFrequency, str] = {
    RecurrenceFrequency.WEEKLY: "Weekly",
    RecurrenceFrequency.BI_WEEKLY: "Every 2 weeks",
    RecurrenceFrequency.MONTHLY: "Monthly",
    RecurrenceFrequency.BI_MONTHLY: "Every 2 months",
    RecurrenceFrequency.QUARTERLY: "Quarterly",
    RecurrenceFrequency.SEMI_ANNUALLY: "Every 6 months",
    RecurrenceFrequency.ANNUALLY: "Annually",
    RecurrenceFrequency.CUSTOM: "Custom",
}

# Occurrences per month, used for monthly budgeting totals
MONTHLY_MULTIPLIERS: Dict[RecurrenceFrequency, Decimal] = {
    RecurrenceFrequency.WEEKLY: Decimal("4.33"),
    RecurrenceFrequency.BI_WEEKLY: Decimal("2.17"),
    RecurrenceFrequency.MONTHLY: Decimal("1"),
    RecurrenceFrequency.BI_MONTHLY: Decimal("0.5"),
    RecurrenceFrequency.QUARTERLY: Decimal("0.33"),
    RecurrenceFrequency.SEMI_ANNUALLY: Decimal("0.17"),
    RecurrenceFrequency.ANNUALLY: Decimal("0.083"),
}


class PatternStatus(str, Enum):
    """Lifecycle status of a recurring pattern."""
    PENDING_CONFIRMATION = "pending_confirmation"  # Detected, not yet seen again
    ACTIVE = "active"                              # Confirmed by a new occurrence
    IRREGULAR = "irregular"                        # Significantly overdue
    ENDED = "ended"                                # Dormant or deactivated


class PatternEvent(str, Enum):
    """Events that drive status transitions."""
    OCCURRENCE_RECORDED = "occurrence_recorded"
    SIGNIFICANTLY_OVERDUE = "significantly_overdue"
    DORMANT = "dormant"
    USER_DEACTIVATED = "user_deactivated"


class DetectionMethod(str, Enum):
    """How a pattern was discovered."""
    AMOUNT_AND_MERCHANT = "amount_and_merchant"
    MERCHANT_ONLY = "merchant_only"
    DESCRIPTION_PATTERN = "description_pattern"
    USER_DEFINED = "user_defined"


STATUS_TRANSITIONS: Dict[Tuple[PatternStatus, PatternEvent], PatternStatus] = {
    (PatternStatus.PENDING_CONFIRMATION, PatternEvent.OCCURRENCE_RECORDED): PatternStatus.ACTIVE,
    (PatternStatus.PENDING_CONFIRMATION, PatternEvent.USER_DEACTIVATED): PatternStatus.ENDED,
    (PatternStatus.ACTIVE, PatternEvent.OCCURRENCE_RECORDED): PatternStatus.ACTIVE,
    (PatternStatus.ACTIVE, PatternEvent.SIGNIFICANTLY_OVERDUE): PatternStatus.IRREGULAR,
    (PatternStatus.ACTIVE, PatternEvent.DORMANT): PatternStatus.ENDED,
    (PatternStatus.ACTIVE, PatternEvent.USER_DEACTIVATED): PatternStatus.ENDED,
    (PatternStatus.IRREGULAR, PatternEvent.OCCURRENCE_RECORDED): PatternStatus.IRREGULAR,
    (PatternStatus.IRREGULAR, PatternEvent.DORMANT): PatternStatus.ENDED,
    (PatternStatus.IRREGULAR, PatternEvent.USER_DEACTIVATED): PatternStatus.ENDED,
}


def next_status(status: PatternStatus, event: PatternEvent) -> PatternStatus:
    """
    Look up the status reached from `status` on `event`.

    Raises:
        IllegalTransitionError: If the pair is not in the transition table
    """
    try:
        return STATUS_TRANSITIONS[(status, event)]
    except KeyError:
        raise IllegalTransitionError(status, event) from None


def quantize_amount(amount: Decimal) -> Decimal:
    """Round an amount to cents for identity comparisons."""
    return Decimal(amount).quantize(AMOUNT_QUANTUM)


PATTERN_ID_NAMESPACE = uuid.UUID("6f1c2a9e-3b7d-5e48-9a10-2c4d8e7f0b31")


def pattern_identity_id(user_id: str, merchant_key: str, amount: Decimal) -> uuid.UUID:
    """
    Deterministic pattern ID for a (user, merchant key, amount in cents) identity.

    Two writers creating the same identity target the same item, so the
    conditional create lets only one of them succeed.
    """
    return uuid.uuid5(PATTERN_ID_NAMESPACE, f"{user_id}|{merchant_key}|{quantize_amount(amount)}")


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class RecurringPattern(BaseModel):
    """
    A detected recurring payment pattern.

    Identity is the normalized merchant key plus the representative amount.
    `next_expected_date` always equals `last_occurrence + interval_days`; every
    mutating method recomputes it.
    """
    pattern_id: uuid.UUID = Field(default_factory=uuid.uuid4, alias="patternId")
    user_id: str = Field(alias="userId")

    # Identity
    merchant_key: str = Field(alias="merchantKey", min_length=1)
    merchant_name: str = Field(alias="merchantName")  # Display label from the latest transaction
    amount: Decimal
    amount_tolerance_pct: Decimal = Field(default=Decimal("10.0"), alias="amountTolerancePct", ge=0, le=100)

    # Cadence
    frequency: RecurrenceFrequency
    interval_days: int = Field(alias="intervalDays", ge=1)
    confidence_score: float = Field(alias="confidenceScore", ge=0.0, le=1.0)
    status: PatternStatus = Field(default=PatternStatus.PENDING_CONFIRMATION)

    first_occurrence: date = Field(alias="firstOccurrence")
    last_occurrence: date = Field(alias="lastOccurrence")
    next_expected_date: Optional[date] = Field(default=None, alias="nextExpectedDate")
    occurrence_count: int = Field(alias="occurrenceCount", ge=0)
    recent_transaction_ids: List[str] = Field(default_factory=list, alias="recentTransactionIds")

    # Category copied from the most recent matched transaction
    category_type: Optional[str] = Field(default=None, alias="categoryType")
    category: Optional[str] = None

    detection_method: DetectionMethod = Field(default=DetectionMethod.AMOUNT_AND_MERCHANT, alias="detectionMethod")
    user_confirmed: bool = Field(default=False, alias="userConfirmed")
    user_customized: bool = Field(default=False, alias="userCustomized")
    is_active: bool = Field(default=True, alias="isActive")
    notes: Optional[str] = Field(default=None, max_length=1000)

    # Optimistic concurrency
    version: int = Field(default=0, ge=0)
    created_at: int = Field(default_factory=_now_ms, alias="createdAt")
    updated_at: int = Field(default_factory=_now_ms, alias="updatedAt")

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
        json_encoders={
            Decimal: str,
            uuid.UUID: str
        },
        use_enum_values=False  # Preserve enum objects (not strings) for type safety
    )

    @field_validator('created_at', 'updated_at')
    @classmethod
    def check_positive_timestamp(cls, v: int) -> int:
        if v < 0:
            raise ValueError(TIMESTAMP_ERROR_MESSAGE)
        return v

    @field_validator('amount')
    @classmethod
    def check_non_zero_amount(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v

    @model_validator(mode='after')
    def check_occurrence_dates(self) -> Self:
        if self.last_occurrence < self.first_occurrence:
            raise ValueError("lastOccurrence must not be before firstOccurrence")
        expected = self.calculate_next_expected_date()
        if self.next_expected_date is None:
            # object.__setattr__ avoids re-entering validate_assignment
            object.__setattr__(self, 'next_expected_date', expected)
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def calculate_next_expected_date(self) -> date:
        return self.last_occurrence + timedelta(days=self.interval_days)

    def refresh_next_expected_date(self) -> None:
        self.next_expected_date = self.calculate_next_expected_date()

    @property
    def identity_key(self) -> Tuple[str, Decimal]:
        """(merchant key, amount in cents) dedup key."""
        return (self.merchant_key, quantize_amount(self.amount))

    def has_recorded(self, transaction_id: Any) -> bool:
        return str(transaction_id) in self.recent_transaction_ids

    def remember_transactions(self, transaction_ids: Iterable[Any]) -> None:
        """Append IDs not yet seen, keeping only the most recent MAX_RECENT_TRANSACTION_IDS."""
        remembered = list(self.recent_transaction_ids)
        for transaction_id in transaction_ids:
            key = str(transaction_id)
            if key not in remembered:
                remembered.append(key)
        self.recent_transaction_ids = remembered[-MAX_RECENT_TRANSACTION_IDS:]

    def is_amount_within_tolerance(self, amount: Optional[Decimal]) -> bool:
        if amount is None:
            return False
        allowed = abs(self.amount) * self.amount_tolerance_pct / Decimal(100)
        return abs(Decimal(amount) - self.amount) <= allowed

    def is_overdue(self, today: date, grace_days: int = 3) -> bool:
        """True when an ACTIVE pattern has missed its next expected date by more than the grace period."""
        if self.next_expected_date is None or self.status != PatternStatus.ACTIVE:
            return False
        return today > self.next_expected_date + timedelta(days=grace_days)

    @property
    def recurrence_description(self) -> str:
        if self.frequency == RecurrenceFrequency.CUSTOM:
            text = f"Every {self.interval_days} days"
        else:
            text = self.frequency.label
        return f"{text} - ${abs(self.amount):.2f}"

    @property
    def monthly_equivalent_amount(self) -> Decimal:
        multiplier = MONTHLY_MULTIPLIERS.get(self.frequency)
        if multiplier is None:
            multiplier = Decimal(30) / Decimal(self.interval_days)
        return (self.amount * multiplier).quantize(AMOUNT_QUANTUM)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_event(self, event: PatternEvent) -> PatternStatus:
        """Advance status through the transition table and return the new status."""
        new_status = next_status(self.status, event)
        if new_status != self.status:
            logger.debug(f"Pattern {self.pattern_id}: {self.status.value} -> {new_status.value} on {event.value}")
            self.status = new_status
        if event == PatternEvent.USER_DEACTIVATED:
            self.is_active = False
        self.touch()
        return new_status

    def touch(self) -> None:
        self.updated_at = _now_ms()

    def apply_update(self, update_data: 'RecurringPatternUpdate') -> bool:
        """
        Apply a manual edit. Returns True if any field changed.

        The edit is validated against this pattern before anything is assigned,
        so a rejected edit leaves the pattern untouched.

        Raises:
            PatternValidationError: If the edit is inconsistent with the pattern
        """
        update_dict = update_data.model_dump(exclude_unset=True, exclude_none=True, by_alias=False)
        if not update_dict:
            return False

        merged = self.model_dump(by_alias=False)
        merged.update(update_dict)
        if 'frequency' in update_dict and 'interval_days' not in update_dict:
            frequency = update_dict['frequency']
            if frequency != RecurrenceFrequency.CUSTOM:
                merged['interval_days'] = frequency.default_days
        merged['next_expected_date'] = None

        try:
            candidate = type(self).model_validate(merged)
        except ValidationError as e:
            raise _as_pattern_validation_error(e) from e

        changed = False
        for key in update_dict.keys() | {'interval_days', 'next_expected_date'}:
            new_value = getattr(candidate, key)
            if getattr(self, key) != new_value:
                setattr(self, key, new_value)
                changed = True

        if changed:
            self.user_customized = True
            self.touch()
        return changed

    # ------------------------------------------------------------------
    # DynamoDB conversion
    # ------------------------------------------------------------------

    def to_dynamodb_item(self) -> Dict[str, Any]:
        """Convert to DynamoDB item format."""
        data = self.model_dump(by_alias=True, exclude_none=True)

        for key, value in data.items():
            if isinstance(value, uuid.UUID):
                data[key] = str(value)
            elif isinstance(value, Enum):
                data[key] = value.value
            elif isinstance(value, date):
                data[key] = value.isoformat()

        # DynamoDB has no float type
        data['confidenceScore'] = Decimal(str(round(self.confidence_score, 6)))

        # Boolean fields are stored as 'true'/'false' strings for GSI compatibility
        for field in ('userConfirmed', 'userCustomized', 'isActive'):
            if field in data:
                data[field] = 'true' if data[field] else 'false'

        return data

    @classmethod
    def from_dynamodb_item(cls, data: Dict[str, Any]) -> Self:
        """Create from DynamoDB item data."""
        converted_data = data.copy()

        int_fields = ['intervalDays', 'occurrenceCount', 'version', 'createdAt', 'updatedAt']
        for field in int_fields:
            if field in converted_data and isinstance(converted_data[field], Decimal):
                converted_data[field] = int(converted_data[field])

        if isinstance(converted_data.get('confidenceScore'), Decimal):
            converted_data['confidenceScore'] = float(converted_data['confidenceScore'])

        if isinstance(converted_data.get('patternId'), str):
            try:
                converted_data['patternId'] = uuid.UUID(converted_data['patternId'])
            except ValueError:
                pass

        for field in ('firstOccurrence', 'lastOccurrence', 'nextExpectedDate'):
            if isinstance(converted_data.get(field), str):
                converted_data[field] = date.fromisoformat(converted_data[field])

        if 'frequency' in converted_data and isinstance(converted_data['frequency'], str):
            try:
                converted_data['frequency'] = RecurrenceFrequency(converted_data['frequency'])
            except ValueError:
                logger.warning(f"Invalid RecurrenceFrequency value: {converted_data['frequency']}")
                converted_data['frequency'] = RecurrenceFrequency.CUSTOM

        if 'status' in converted_data and isinstance(converted_data['status'], str):
            try:
                converted_data['status'] = PatternStatus(converted_data['status'])
            except ValueError:
                logger.warning(f"Invalid PatternStatus value: {converted_data['status']}")
                converted_data['status'] = PatternStatus.PENDING_CONFIRMATION

        if 'detectionMethod' in converted_data and isinstance(converted_data['detectionMethod'], str):
            try:
                converted_data['detectionMethod'] = DetectionMethod(converted_data['detectionMethod'])
            except ValueError:
                logger.warning(f"Invalid DetectionMethod value: {converted_data['detectionMethod']}")
                converted_data['detectionMethod'] = DetectionMethod.AMOUNT_AND_MERCHANT

        for field in ('userConfirmed', 'userCustomized', 'isActive'):
            if isinstance(converted_data.get(field), str):
                converted_data[field] = converted_data[field].lower() == 'true'

        return cls.model_validate(converted_data)


class RecurringPatternUpdate(BaseModel):
    """
    Data Transfer Object for a manual edit of a recurring pattern.

    Status is not editable here; deactivation goes through the transition table.
    `next_expected_date` is always recomputed from the edited values.
    """
    merchant_name: Optional[str] = Field(default=None, alias="merchantName", min_length=1)
    amount: Optional[Decimal] = None
    amount_tolerance_pct: Optional[Decimal] = Field(default=None, alias="amountTolerancePct", ge=0, le=100)
    frequency: Optional[RecurrenceFrequency] = None
    interval_days: Optional[int] = Field(default=None, alias="intervalDays", ge=1)
    category_type: Optional[str] = Field(default=None, alias="categoryType")
    category: Optional[str] = None
    last_occurrence: Optional[date] = Field(default=None, alias="lastOccurrence")
    occurrence_count: Optional[int] = Field(default=None, alias="occurrenceCount", ge=0)
    user_confirmed: Optional[bool] = Field(default=None, alias="userConfirmed")
    notes: Optional[str] = Field(default=None, max_length=1000)

    model_config = ConfigDict(
        populate_by_name=True,
        extra='forbid',
        use_enum_values=False
    )

    @field_validator('amount')
    @classmethod
    def check_non_zero_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v == 0:
            raise ValueError("amount must be non-zero")
        return v

    @classmethod
    def from_request(cls, data: Dict[str, Any]) -> Self:
        """
        Validate raw edit data.

        Raises:
            PatternValidationError: Naming the first offending field
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise _as_pattern_validation_error(e) from e


def _as_pattern_validation_error(error: ValidationError) -> PatternValidationError:
    first = error.errors()[0]
    location = first.get('loc') or ()
    field = str(location[0]) if location else '__root__'
    message = first.get('msg', str(error))
    if field == '__root__' or not location:
        # Cross-field failures from check_occurrence_dates
        field = 'lastOccurrence' if 'lastOccurrence' in message else field
    return PatternValidationError(field, message)
