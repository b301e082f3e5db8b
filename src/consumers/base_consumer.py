"""
Base consumer framework for event-driven recurring pattern processing.
Provides common functionality for all event consumers including event parsing,
error classification, duplicate suppression and Lambda integration.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from datetime import datetime

from pydantic import ValidationError

from models.events import BaseEvent
from models.recurring_pattern import IllegalTransitionError, PatternValidationError

logger = logging.getLogger(__name__)

MAX_TRACKED_EVENTS = 1000


class EventProcessingError(Exception):
    """Custom exception for event processing errors"""
    def __init__(self, message: str, event_id: Optional[str] = None, permanent: bool = False):
        super().__init__(message)
        self.event_id = event_id
        self.permanent = permanent


class BaseEventConsumer(ABC):
    """
    Base class for all event consumers.

    Provides common functionality including:
    - Event parsing from EventBridge, SQS and scheduled rule formats
    - Error handling and classification
    - Basic idempotency within a warm container
    - Lambda context handling
    """

    # Validation in validate_event; scheduled events carry no user
    REQUIRES_USER_ID = True

    def __init__(self, consumer_name: str):
        """
        Initialize the base consumer.

        Args:
            consumer_name: Name of the consumer for logging
        """
        self.consumer_name = consumer_name
        self.processed_events: Dict[str, None] = {}  # Insertion ordered for trimming
        self._lambda_context: Optional[Any] = None

        logger.info(f"Initializing {consumer_name} consumer")

    def handle_eventbridge_event(self, event: Any, context: Any) -> Dict[str, Any]:
        """
        Main handler for EventBridge events.
        This is the entry point called by AWS Lambda.

        Args:
            event: EventBridge event payload, SQS batch or list of events
            context: Lambda context object

        Returns:
            dict: Processing results and metrics

        Raises:
            EventProcessingError: For permanent failures, so the record is dead-lettered
        """
        start_time = datetime.now()
        stats: Dict[str, Any] = {
            'consumer': self.consumer_name,
            'processed_count': 0,
            'failed_count': 0,
            'skipped_count': 0,
            'errors': []
        }

        records = self._extract_records(event)
        if not records:
            logger.warning("No records found in event payload")
            return self._create_response(stats, start_time)

        logger.info(f"{self.consumer_name} processing {len(records)} records")

        for record in records:
            parsed_event: Optional[BaseEvent] = None
            try:
                parsed_event = self._parse_event_record(record)

                if not self.should_process_event(parsed_event):
                    logger.debug(f"Skipping event {parsed_event.event_id} of type {parsed_event.event_type}")
                    stats['skipped_count'] += 1
                    continue

                if self._is_duplicate_event(parsed_event):
                    logger.info(f"Skipping duplicate event {parsed_event.event_id}")
                    stats['skipped_count'] += 1
                    continue

                self.validate_event(parsed_event)
                logger.debug(f"Processing event {parsed_event.event_id} of type {parsed_event.event_type}")
                self.process_event(parsed_event)

                self._mark_event_processed(parsed_event)
                stats['processed_count'] += 1

            except EventProcessingError as e:
                logger.error(f"EventProcessingError: {str(e)}")
                stats['failed_count'] += 1
                stats['errors'].append({
                    'event_id': e.event_id or (parsed_event.event_id if parsed_event else 'unknown'),
                    'error': str(e),
                    'permanent': e.permanent
                })
                if e.permanent:
                    raise

            except Exception as e:
                logger.exception(f"Unexpected error processing record: {str(e)}")
                permanent = self.is_permanent_failure(e)
                event_id = parsed_event.event_id if parsed_event else 'unknown'
                stats['failed_count'] += 1
                stats['errors'].append({
                    'event_id': event_id,
                    'error': str(e),
                    'permanent': permanent
                })
                if permanent:
                    raise EventProcessingError(str(e), event_id=event_id, permanent=True) from e

        total_events = stats['processed_count'] + stats['failed_count'] + stats['skipped_count']
        logger.info(f"{self.consumer_name} processing complete: "
                    f"{stats['processed_count']}/{total_events} processed, "
                    f"{stats['failed_count']} failed, "
                    f"{stats['skipped_count']} skipped")

        status_code = 500 if stats['failed_count'] else 200
        return self._create_response(stats, start_time, status_code=status_code)

    def _extract_records(self, event: Any) -> List[Dict[str, Any]]:
        """Extract records from different event formats"""
        # Batch of EventBridge events
        if isinstance(event, list):
            return event

        # Direct EventBridge event (including scheduled rules)
        if 'source' in event and 'detail-type' in event:
            return [event]

        # SQS event with multiple records
        if 'Records' in event:
            return event['Records']

        # Single event in a wrapper
        return [event]

    def _parse_event_record(self, record: Dict[str, Any]) -> BaseEvent:
        """Parse an EventBridge, SQS or direct record into a BaseEvent"""
        try:
            # EventBridge event
            if 'detail' in record and 'source' in record:
                detail = record['detail'] or {}
                if isinstance(detail, str):
                    detail = json.loads(detail)

                return BaseEvent(
                    # Scheduled rule events have an empty detail; fall back to the envelope ID
                    event_id=detail.get('eventId') or record.get('id', ''),
                    event_type=detail.get('eventType') or record.get('detail-type', ''),
                    event_version=detail.get('eventVersion', '1.0'),
                    timestamp=detail.get('timestamp', 0),
                    source=record.get('source', ''),
                    user_id=detail.get('userId', ''),
                    correlation_id=detail.get('correlationId'),
                    causation_id=detail.get('causationId'),
                    data=detail.get('data', {}),
                    metadata=detail.get('metadata', {})
                )

            # SQS message; the body is either an EventBridge event or a direct event
            if 'body' in record:
                body = json.loads(record['body'])
                if 'detail' in body and 'source' in body:
                    return self._parse_event_record(body)
                return self._direct_event(body, fallback_id=record.get('messageId', ''))

            # Direct invocation
            if 'eventType' in record:
                return self._direct_event(record)

            raise EventProcessingError(
                f"Unknown event record format: {list(record.keys())}",
                permanent=True
            )

        except EventProcessingError:
            raise
        except json.JSONDecodeError as e:
            raise EventProcessingError(
                f"Failed to parse JSON in event record: {str(e)}",
                permanent=True
            ) from e
        except (AttributeError, TypeError) as e:
            raise EventProcessingError(
                f"Failed to parse event record: {str(e)}",
                permanent=True
            ) from e

    @staticmethod
    def _direct_event(body: Dict[str, Any], fallback_id: str = '') -> BaseEvent:
        return BaseEvent(
            event_id=body.get('eventId') or fallback_id,
            event_type=body.get('eventType', ''),
            event_version=body.get('eventVersion', '1.0'),
            timestamp=body.get('timestamp', 0),
            source=body.get('source', ''),
            user_id=body.get('userId', ''),
            correlation_id=body.get('correlationId'),
            causation_id=body.get('causationId'),
            data=body.get('data', {}),
            metadata=body.get('metadata', {})
        )

    def _is_duplicate_event(self, event: BaseEvent) -> bool:
        """Basic duplicate detection within this container"""
        return bool(event.event_id) and event.event_id in self.processed_events

    def _mark_event_processed(self, event: BaseEvent) -> None:
        """Mark event as processed for duplicate detection"""
        if not event.event_id:
            return
        self.processed_events[event.event_id] = None

        # Prevent memory growth in long-running containers
        if len(self.processed_events) > MAX_TRACKED_EVENTS:
            recent = list(self.processed_events)[-(MAX_TRACKED_EVENTS // 2):]
            self.processed_events = dict.fromkeys(recent)

    def _create_response(self, stats: Dict[str, Any], start_time: datetime, status_code: int = 200) -> Dict[str, Any]:
        """Create standardized response with metrics"""
        processing_time_ms = (datetime.now() - start_time).total_seconds() * 1000

        response = {
            'statusCode': status_code,
            'processingTimeMs': round(processing_time_ms, 2),
            'timestamp': int(datetime.now().timestamp() * 1000),
            **stats
        }

        if self._lambda_context is not None:
            response['requestId'] = getattr(self._lambda_context, 'aws_request_id', None)

        return response

    # =============================================================================
    # ABSTRACT METHODS - Must be implemented by subclasses
    # =============================================================================

    @abstractmethod
    def should_process_event(self, event: BaseEvent) -> bool:
        """
        Determine if this consumer should process the event.

        Args:
            event: The parsed event

        Returns:
            bool: True if the event should be processed
        """
        pass

    @abstractmethod
    def process_event(self, event: BaseEvent) -> None:
        """
        Process the event. This is where the main business logic goes.

        Args:
            event: The parsed event to process

        Raises:
            EventProcessingError: For application-specific errors
            Exception: For unexpected errors
        """
        pass

    # =============================================================================
    # OPTIONAL METHODS - Can be overridden by subclasses
    # =============================================================================

    def is_permanent_failure(self, error: Exception) -> bool:
        """
        Determine if error is permanent (for DLQ routing).

        Bad input never succeeds on retry; storage and conflict errors might.
        """
        permanent_error_types = (
            PatternValidationError,
            IllegalTransitionError,
            ValidationError,
            ValueError,
            TypeError,
            KeyError,
        )
        return isinstance(error, permanent_error_types)

    def validate_event(self, event: BaseEvent) -> None:
        """
        Validate event data before processing.

        Raises:
            EventProcessingError: If validation fails
        """
        if not event.event_type:
            raise EventProcessingError("Event type is required", event_id=event.event_id, permanent=True)

        if self.REQUIRES_USER_ID and not event.user_id:
            raise EventProcessingError("User ID is required", event_id=event.event_id, permanent=True)

    def setup_consumer(self) -> None:
        """
        One-time setup for the consumer.
        Override in subclasses for initialization logic.
        """
        pass


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def create_lambda_handler(consumer_class, *args, **kwargs):
    """
    Factory function to create a Lambda handler from a consumer class.

    The consumer is built on first invocation and reused while the container
    stays warm.

    Args:
        consumer_class: The consumer class to instantiate
        *args, **kwargs: Arguments to pass to the consumer constructor

    Returns:
        function: Lambda handler function
    """
    consumer = None

    def lambda_handler(event, context):
        nonlocal consumer

        if consumer is None:
            consumer = consumer_class(*args, **kwargs)
            consumer.setup_consumer()
            logger.info(f"Initialized {consumer.consumer_name} consumer")

        consumer._lambda_context = context
        return consumer.handle_eventbridge_event(event, context)

    return lambda_handler
