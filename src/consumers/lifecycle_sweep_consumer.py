"""
Lifecycle Sweep Consumer Lambda.

Triggered by the daily EventBridge schedule (06:00 UTC). Moves overdue
patterns to IRREGULAR and dormant patterns to ENDED across all users.
A direct invocation with a userId sweeps only that user's patterns.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional

from consumers.base_consumer import BaseEventConsumer, EventProcessingError, create_lambda_handler
from models.events import BaseEvent
from services.recurring_patterns.config import DetectionConfig
from services.recurring_patterns.lifecycle import LifecycleSweeper, SweepReport
from services.recurring_patterns.repository import DynamoDBPatternRepository
from utils.logging_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

SCHEDULE_EXPRESSION = "cron(0 6 * * ? *)"


class LifecycleSweepConsumer(BaseEventConsumer):
    """Consumer for the scheduled lifecycle sweep"""

    SWEEP_EVENT_TYPES = {
        "Scheduled Event",
        "recurring_pattern.sweep.requested",
    }
    REQUIRES_USER_ID = False

    def __init__(self, sweeper: Optional[LifecycleSweeper] = None):
        super().__init__("lifecycle_sweep_consumer")
        self.sweeper = sweeper or LifecycleSweeper(
            DynamoDBPatternRepository(),
            DetectionConfig.from_environment()
        )
        self.last_report: Optional[SweepReport] = None

    def should_process_event(self, event: BaseEvent) -> bool:
        return event.event_type in self.SWEEP_EVENT_TYPES

    def process_event(self, event: BaseEvent) -> None:
        data = event.data or {}
        today = self._parse_today(data.get("asOf"), event.event_id)
        user_id = event.user_id or None

        logger.info(f"Starting lifecycle sweep from event {event.event_id}" + (f" for user {user_id}" if user_id else ""))
        report = self.sweeper.sweep(today=today, user_id=user_id)
        self.last_report = report

        if report.failed:
            raise EventProcessingError(
                f"{report.failed} of {report.examined} patterns failed to sweep",
                event_id=event.event_id,
                permanent=False
            )

    @staticmethod
    def _parse_today(value: Any, event_id: str) -> Optional[date]:
        if value is None:
            return None
        try:
            return date.fromisoformat(value)
        except (TypeError, ValueError) as e:
            raise EventProcessingError(f"asOf must be an ISO date, got {value!r}", event_id=event_id, permanent=True) from e


_lambda_handler = create_lambda_handler(LifecycleSweepConsumer)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for the scheduled sweep.

    Expected event format from the EventBridge schedule:
    {
        "version": "0",
        "id": "event-id",
        "detail-type": "Scheduled Event",
        "source": "aws.events",
        "detail": {}
    }
    """
    return _lambda_handler(event, context)
