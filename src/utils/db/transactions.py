"""
Transaction read operations used by recurring pattern detection.

Transactions are written by the ingestion pipeline; this module only reads them.
"""

import logging
from typing import List, Any

from boto3.dynamodb.conditions import Key, Attr
from pydantic import ValidationError

from models.transaction import Transaction
from .base import (
    tables,
    dynamodb_operation,
    retry_on_throttle,
    monitor_performance,
)
from .helpers import paginated_query

logger = logging.getLogger(__name__)

DB_TABLE_NOT_INITIALIZED_ERROR = "Database table not initialized"
USER_INDEX = "UserIdIndex"


def _to_transaction(item: dict) -> Any:
    try:
        return Transaction.from_dynamodb_item(item)
    except ValidationError as e:
        logger.warning(f"DB: Skipping unreadable transaction {item.get('transactionId')}: {str(e)}")
        return None


@monitor_performance(operation_type="query", warn_threshold_ms=1000, error_threshold_ms=10000)
@retry_on_throttle(max_attempts=3)
@dynamodb_operation("list_transactions_created_since")
def list_transactions_created_since(user_id: str, since_ms: int) -> List[Transaction]:
    """
    List a user's transactions created at or after `since_ms`, ordered by
    transaction date ascending.

    Items that cannot be parsed are skipped with a warning rather than failing
    the whole window.

    Raises:
        ConnectionError: If database table is not initialized
    """
    table = tables.transactions
    if not table:
        logger.error("DB: Transactions table not initialized for list_transactions_created_since")
        raise ConnectionError(DB_TABLE_NOT_INITIALIZED_ERROR)

    items = paginated_query(
        table=table,
        query_params={
            'IndexName': USER_INDEX,
            'KeyConditionExpression': Key('userId').eq(user_id),
            'FilterExpression': Attr('createdAt').gte(since_ms),
        },
        transform=_to_transaction
    )
    transactions = [t for t in items if t is not None]
    if len(transactions) != len(items):
        logger.info(f"DB: Skipped {len(items) - len(transactions)} unreadable transactions for user {user_id}")
    return sorted(transactions, key=lambda t: (t.date, t.created_at))
