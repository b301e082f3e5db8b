"""
Recurring Pattern Analysis Consumer Lambda.

Consumes analysis requests from EventBridge, issued on demand or by the
scheduler, and runs the batch detection pipeline for the requesting user.

Event Types Processed:
- recurring_pattern.analysis.requested: Analyse the user's lookback window
"""

import dataclasses
import logging
from typing import Any, Dict, Optional

from consumers.base_consumer import BaseEventConsumer, EventProcessingError, create_lambda_handler
from models.events import BaseEvent
from services.recurring_patterns.config import DetectionConfig
from services.recurring_patterns.detection_service import RecurringPatternDetectionService, AnalysisResult
from utils.logging_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

# Lambda allows 15 minutes; leave room to report
ANALYSIS_TIMEOUT_SECONDS = 840


class RecurringPatternAnalysisConsumer(BaseEventConsumer):
    """Consumer for recurring pattern analysis requests"""

    ANALYSIS_EVENT_TYPES = {
        "recurring_pattern.analysis.requested",
    }

    def __init__(
        self,
        detection_service: Optional[RecurringPatternDetectionService] = None,
        config: Optional[DetectionConfig] = None
    ):
        super().__init__("recurring_pattern_analysis_consumer")
        self.config = config or DetectionConfig.from_environment()
        self.detection_service = detection_service or RecurringPatternDetectionService(config=self.config)
        self.last_result: Optional[AnalysisResult] = None

    def should_process_event(self, event: BaseEvent) -> bool:
        return event.event_type in self.ANALYSIS_EVENT_TYPES

    def process_event(self, event: BaseEvent) -> None:
        """
        Run the analysis on the service's worker and wait for it.

        A lookbackMonths value in the event data overrides the configured window
        for this request only.
        """
        user_id = event.user_id
        data = event.data or {}
        service = self._service_for(data.get("lookbackMonths"), event.event_id)

        logger.info(f"Processing {event.event_type} event {event.event_id} for user {user_id}")
        future = service.submit_analysis(user_id)
        result = future.result(timeout=ANALYSIS_TIMEOUT_SECONDS)
        self.last_result = result

        logger.info(
            f"Analysis for user {user_id} finished: {result.created} created, "
            f"{result.updated} updated, {result.failed} failed"
        )
        if result.failed:
            logger.warning(f"Merchants that failed analysis for user {user_id}: {result.failed_merchants}")

    def _service_for(self, lookback_months: Any, event_id: str) -> RecurringPatternDetectionService:
        if lookback_months is None:
            return self.detection_service
        if not isinstance(lookback_months, int) or lookback_months < 1:
            raise EventProcessingError(
                f"lookbackMonths must be a positive integer, got {lookback_months!r}",
                event_id=event_id,
                permanent=True
            )
        config = dataclasses.replace(self.detection_service.config, lookback_months=lookback_months)
        return RecurringPatternDetectionService(
            repository=self.detection_service.repository,
            transaction_source=self.detection_service.transaction_source,
            config=config,
            executor=self.detection_service.executor,
        )


_lambda_handler = create_lambda_handler(RecurringPatternAnalysisConsumer)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for recurring pattern analysis events from EventBridge.

    Expected event format from EventBridge:
    {
        "version": "0",
        "id": "event-id",
        "detail-type": "recurring_pattern.analysis.requested",
        "source": "recurring_pattern.service",
        "detail": {
            "eventId": "...",
            "userId": "...",
            "data": {
                "lookbackMonths": 12   // Optional
            }
        }
    }
    """
    return _lambda_handler(event, context)
