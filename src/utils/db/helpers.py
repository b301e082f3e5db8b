"""
Helper functions for database operations.

This module provides:
- Pagination helpers
- Timestamp and date conversion helpers
"""

import logging
from datetime import datetime, timezone, date
from typing import List, Dict, Any, Optional, Tuple, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


# ============================================================================
# Pagination Helpers
# ============================================================================

def _paginate(
    operation: Callable[..., Dict[str, Any]],
    params: Dict[str, Any],
    transform: Optional[Callable[[Dict], T]] = None
) -> List[T]:
    items: List[Any] = []
    current_params = params.copy()

    while True:
        response = operation(**current_params)
        batch = response.get('Items', [])
        if transform:
            batch = [transform(item) for item in batch]
        items.extend(batch)

        last_evaluated_key = response.get('LastEvaluatedKey')
        if not last_evaluated_key:
            break
        current_params['ExclusiveStartKey'] = last_evaluated_key

    return items


def paginated_query(
    table: Any,
    query_params: Dict[str, Any],
    transform: Optional[Callable[[Dict], T]] = None
) -> List[T]:
    """
    Execute a DynamoDB query, following LastEvaluatedKey until exhausted.

    Example:
        patterns = paginated_query(
            table=tables.recurring_patterns,
            query_params={'KeyConditionExpression': Key('userId').eq(user_id)},
            transform=RecurringPattern.from_dynamodb_item
        )
    """
    items = _paginate(table.query, query_params, transform)
    logger.debug(f"Paginated query returned {len(items)} items")
    return items


def paginated_scan(
    table: Any,
    scan_params: Dict[str, Any],
    transform: Optional[Callable[[Dict], T]] = None
) -> List[T]:
    """Execute a DynamoDB scan, following LastEvaluatedKey until exhausted."""
    items = _paginate(table.scan, scan_params, transform)
    logger.debug(f"Paginated scan returned {len(items)} items")
    return items


# ============================================================================
# Timestamp Helpers
# ============================================================================

def timestamp_from_datetime(dt: datetime) -> int:
    """Convert a datetime to milliseconds since epoch; naive values are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def to_db_date(value: Optional[date]) -> Optional[str]:
    """Dates are stored as ISO strings so range conditions compare lexicographically."""
    if value is None:
        return None
    return value.isoformat()


def build_version_condition(expected_version: Optional[int]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """
    Build the ConditionExpression for an optimistic write.

    A None expected version means the item must not exist yet.

    Returns:
        Tuple of (condition_expression, expression_attribute_names, expression_attribute_values)
    """
    if expected_version is None:
        return "attribute_not_exists(#pid)", {"#pid": "patternId"}, {}
    return (
        "#ver = :expected_version",
        {"#ver": "version"},
        {":expected_version": expected_version},
    )
