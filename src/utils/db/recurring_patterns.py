"""
Recurring Pattern database operations.

Table layout: partition key `userId`, sort key `patternId`, and a
`UserMerchantIndex` GSI on (`userId`, `merchantKey`) for identity lookups.
Writes are conditional on the stored `version` so concurrent read-modify-write
cycles on the same pattern cannot silently overwrite each other.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import List, Dict, Any, Optional

from boto3.dynamodb.conditions import Key, Attr
from botocore.exceptions import ClientError

from models.recurring_pattern import RecurringPattern, PatternStatus, quantize_amount
from .base import (
    tables,
    dynamodb_operation,
    retry_on_throttle,
    monitor_performance,
    client_error_code,
    ConflictError,
)
from .helpers import paginated_query, paginated_scan, to_db_date, build_version_condition

logger = logging.getLogger(__name__)

# Constants
DB_TABLE_NOT_INITIALIZED_ERROR = "Database table not initialized"
MERCHANT_INDEX = "UserMerchantIndex"
UNCATEGORIZED = "Uncategorized"


def _patterns_table(operation: str) -> Any:
    table = tables.recurring_patterns
    if not table:
        logger.error(f"DB: RecurringPatterns table not initialized for {operation}")
        raise ConnectionError(DB_TABLE_NOT_INITIALIZED_ERROR)
    return table


def _active_filter() -> Any:
    return Attr('isActive').eq('true')


# ============================================================================
# Single Pattern Operations
# ============================================================================

@monitor_performance(warn_threshold_ms=200)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("get_pattern_from_db")
def get_pattern_from_db(user_id: str, pattern_id: uuid.UUID) -> Optional[RecurringPattern]:
    """
    Retrieve a pattern by its key.

    Returns:
        RecurringPattern if found, None otherwise
    """
    table = _patterns_table("get_pattern_from_db")
    logger.debug(f"DB: Getting pattern {str(pattern_id)} for user {user_id}")

    response = table.get_item(Key={'userId': user_id, 'patternId': str(pattern_id)})
    item = response.get('Item')
    if not item:
        return None
    return RecurringPattern.from_dynamodb_item(item)


@monitor_performance(warn_threshold_ms=300)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("save_pattern_in_db")
def save_pattern_in_db(pattern: RecurringPattern, expected_version: Optional[int]) -> RecurringPattern:
    """
    Conditionally write a pattern.

    Args:
        pattern: The pattern to store
        expected_version: Version the caller read, or None for a new pattern

    Returns:
        The pattern with its version advanced

    Raises:
        ConflictError: If the stored version no longer matches expected_version
        ConnectionError: If database table is not initialized
    """
    table = _patterns_table("save_pattern_in_db")

    new_version = 0 if expected_version is None else expected_version + 1
    item = pattern.to_dynamodb_item()
    item['version'] = new_version

    condition, names, values = build_version_condition(expected_version)
    put_params: Dict[str, Any] = {
        'Item': item,
        'ConditionExpression': condition,
        'ExpressionAttributeNames': names,
    }
    if values:
        put_params['ExpressionAttributeValues'] = values

    try:
        table.put_item(**put_params)
    except ClientError as e:
        if client_error_code(e) == 'ConditionalCheckFailedException':
            raise ConflictError(
                f"Pattern {str(pattern.pattern_id)} changed concurrently "
                f"(expected version {expected_version})"
            ) from e
        raise

    pattern.version = new_version
    logger.info(f"DB: Pattern {str(pattern.pattern_id)} saved at version {new_version} for user {pattern.user_id}.")
    return pattern


# ============================================================================
# Identity Lookups
# ============================================================================

@monitor_performance(warn_threshold_ms=200)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("list_patterns_for_merchant")
def list_patterns_for_merchant(user_id: str, merchant_key: str) -> List[RecurringPattern]:
    """List every pattern stored for one normalized merchant key."""
    table = _patterns_table("list_patterns_for_merchant")
    return paginated_query(
        table=table,
        query_params={
            'IndexName': MERCHANT_INDEX,
            'KeyConditionExpression': Key('userId').eq(user_id) & Key('merchantKey').eq(merchant_key),
        },
        transform=RecurringPattern.from_dynamodb_item
    )


def find_pattern_by_identity(user_id: str, merchant_key: str, amount: Decimal) -> Optional[RecurringPattern]:
    """
    Find the pattern with this (merchant, amount) identity, whatever its status.

    An exact match on the amount in cents wins; otherwise the closest pattern
    whose tolerance band contains the amount is returned. Deactivated patterns
    are included so that re-detection merges into them instead of duplicating.
    """
    patterns = list_patterns_for_merchant(user_id, merchant_key)
    target = quantize_amount(amount)

    for pattern in patterns:
        if quantize_amount(pattern.amount) == target:
            return pattern

    within = [p for p in patterns if p.is_amount_within_tolerance(amount)]
    if not within:
        return None
    return min(within, key=lambda p: abs(p.amount - amount))


def list_candidate_patterns(user_id: str, merchant_key: str, amount: Decimal) -> List[RecurringPattern]:
    """Active, non-ended patterns for the merchant whose tolerance band contains the amount."""
    return [
        p for p in list_patterns_for_merchant(user_id, merchant_key)
        if p.is_active and p.status != PatternStatus.ENDED and p.is_amount_within_tolerance(amount)
    ]


# ============================================================================
# Listing Queries
# ============================================================================

@monitor_performance(warn_threshold_ms=500)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("list_active_patterns_by_merchant")
def list_active_patterns_by_merchant(user_id: str) -> List[RecurringPattern]:
    """All active patterns for a user, ordered by merchant key."""
    table = _patterns_table("list_active_patterns_by_merchant")
    patterns = paginated_query(
        table=table,
        query_params={
            'KeyConditionExpression': Key('userId').eq(user_id),
            'FilterExpression': _active_filter(),
        },
        transform=RecurringPattern.from_dynamodb_item
    )
    return sorted(patterns, key=lambda p: (p.merchant_key, p.amount))


@monitor_performance(operation_type="scan", warn_threshold_ms=1000, error_threshold_ms=10000)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("list_patterns_for_sweep")
def list_patterns_for_sweep(user_id: Optional[str] = None) -> List[RecurringPattern]:
    """
    ACTIVE patterns eligible for the lifecycle sweep, ordered by
    next expected date. Without a user_id the whole table is scanned.
    """
    table = _patterns_table("list_patterns_for_sweep")
    status_filter = _active_filter() & Attr('status').eq(PatternStatus.ACTIVE.value)
    if user_id:
        patterns = paginated_query(
            table=table,
            query_params={
                'KeyConditionExpression': Key('userId').eq(user_id),
                'FilterExpression': status_filter,
            },
            transform=RecurringPattern.from_dynamodb_item
        )
    else:
        patterns = paginated_scan(
            table=table,
            scan_params={'FilterExpression': status_filter},
            transform=RecurringPattern.from_dynamodb_item
        )
    return sorted(patterns, key=lambda p: p.next_expected_date or p.last_occurrence)


@monitor_performance(warn_threshold_ms=500)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("list_patterns_due_within")
def list_patterns_due_within(user_id: str, start: date, end: date) -> List[RecurringPattern]:
    """ACTIVE patterns whose next expected date falls in [start, end], soonest first."""
    table = _patterns_table("list_patterns_due_within")
    patterns = paginated_query(
        table=table,
        query_params={
            'KeyConditionExpression': Key('userId').eq(user_id),
            'FilterExpression': _active_filter()
                & Attr('status').eq(PatternStatus.ACTIVE.value)
                & Attr('nextExpectedDate').between(to_db_date(start), to_db_date(end)),
        },
        transform=RecurringPattern.from_dynamodb_item
    )
    return sorted(patterns, key=lambda p: p.next_expected_date)


@monitor_performance(warn_threshold_ms=500)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("list_overdue_patterns")
def list_overdue_patterns(user_id: str, as_of: date) -> List[RecurringPattern]:
    """ACTIVE patterns whose next expected date is before as_of."""
    table = _patterns_table("list_overdue_patterns")
    patterns = paginated_query(
        table=table,
        query_params={
            'KeyConditionExpression': Key('userId').eq(user_id),
            'FilterExpression': _active_filter()
                & Attr('status').eq(PatternStatus.ACTIVE.value)
                & Attr('nextExpectedDate').lt(to_db_date(as_of)),
        },
        transform=RecurringPattern.from_dynamodb_item
    )
    return sorted(patterns, key=lambda p: p.next_expected_date)


@monitor_performance(warn_threshold_ms=500)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("list_patterns_by_category_type")
def list_patterns_by_category_type(user_id: str, category_type: str) -> List[RecurringPattern]:
    """Active patterns of one category type, largest absolute amount first."""
    table = _patterns_table("list_patterns_by_category_type")
    patterns = paginated_query(
        table=table,
        query_params={
            'KeyConditionExpression': Key('userId').eq(user_id),
            'FilterExpression': _active_filter() & Attr('categoryType').eq(category_type),
        },
        transform=RecurringPattern.from_dynamodb_item
    )
    return sorted(patterns, key=lambda p: abs(p.amount), reverse=True)


def get_monthly_totals_by_category(user_id: str) -> Dict[str, Decimal]:
    """
    Sum the monthly-equivalent amount of live patterns per category type.

    Ended patterns are excluded; patterns without a category type are grouped
    under "Uncategorized".
    """
    totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for pattern in list_active_patterns_by_merchant(user_id):
        if pattern.status == PatternStatus.ENDED:
            continue
        totals[pattern.category_type or UNCATEGORIZED] += pattern.monthly_equivalent_amount
    return dict(totals)
