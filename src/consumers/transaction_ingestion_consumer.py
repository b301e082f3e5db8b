"""
Transaction Ingestion Consumer Lambda.

Runs the pattern matcher inline for each newly stored transaction so that
occurrences are recorded as they arrive instead of waiting for the next batch
analysis.

Event Types Processed:
- transaction.created: One or more transactions stored by the ingestion pipeline
- transactions.created: Bulk variant published after a file import
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from consumers.base_consumer import BaseEventConsumer, EventProcessingError, create_lambda_handler
from models.events import BaseEvent
from models.transaction import Transaction
from services.recurring_patterns.config import DetectionConfig
from services.recurring_patterns.matcher import PatternMatcher
from services.recurring_patterns.repository import DynamoDBPatternRepository
from utils.logging_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


class TransactionIngestionConsumer(BaseEventConsumer):
    """Consumer that records new transactions against stored patterns"""

    TRANSACTION_EVENT_TYPES = {
        "transaction.created",
        "transactions.created",
    }

    def __init__(self, matcher: Optional[PatternMatcher] = None):
        super().__init__("transaction_ingestion_consumer")
        self.matcher = matcher or PatternMatcher(
            DynamoDBPatternRepository(),
            DetectionConfig.from_environment()
        )

    def should_process_event(self, event: BaseEvent) -> bool:
        return event.event_type in self.TRANSACTION_EVENT_TYPES

    def process_event(self, event: BaseEvent) -> None:
        """
        Match every transaction in the event.

        Transactions are independent: one that fails to match is logged and the
        rest are still processed. If any failed, the event is retried; a
        redelivered transaction is skipped by every pattern that already
        remembers its ID, so only the failed matches are recorded again.
        """
        transactions = self._extract_transactions(event)
        logger.info(f"Matching {len(transactions)} transactions from event {event.event_id} for user {event.user_id}")

        matched = 0
        failures: List[str] = []
        for transaction in transactions:
            try:
                matched += len(self.matcher.process_new_transaction(transaction))
            except Exception as e:
                logger.exception(f"Error matching transaction {str(transaction.transaction_id)}: {e}")
                failures.append(str(transaction.transaction_id))

        logger.info(f"Event {event.event_id}: {matched} pattern occurrences recorded")
        if failures:
            raise EventProcessingError(
                f"Failed to match {len(failures)} of {len(transactions)} transactions: {failures}",
                event_id=event.event_id,
                permanent=False
            )

    def _extract_transactions(self, event: BaseEvent) -> List[Transaction]:
        data = event.data or {}
        raw_items = data.get("transactions")
        if raw_items is None and "transaction" in data:
            raw_items = [data["transaction"]]
        if not isinstance(raw_items, list):
            raise EventProcessingError("Event data has no transactions", event_id=event.event_id, permanent=True)

        transactions: List[Transaction] = []
        for item in raw_items:
            if not isinstance(item, dict):
                logger.warning(f"Skipping malformed transaction payload in event {event.event_id}: {item!r}")
                continue
            item = {**item}
            item.setdefault("userId", event.user_id)
            if item["userId"] != event.user_id:
                logger.warning(f"Skipping transaction for another user in event {event.event_id}")
                continue
            try:
                transactions.append(Transaction.from_dynamodb_item(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid transaction in event {event.event_id}: {str(e)}")
        return transactions


_lambda_handler = create_lambda_handler(TransactionIngestionConsumer)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for transaction events.

    Expected detail:
    {
        "eventId": "...",
        "userId": "...",
        "data": {
            "transactions": [
                {"transactionId": "...", "merchantName": "NETFLIX.COM", "amount": "-15.99",
                 "date": 1735689600000, "categoryType": "EXPENSE", "category": "Streaming"}
            ]
        }
    }
    """
    return _lambda_handler(event, context)
