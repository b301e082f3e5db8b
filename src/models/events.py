"""
Event models for the event-driven architecture.
Contains the base event structure and the events recurring pattern detection
consumes.
"""
from dataclasses import dataclass
from typing import Dict, Any, Optional, List
from datetime import datetime
import uuid
import json


@dataclass
class BaseEvent:
    """Base event structure for all events in the system"""
    event_id: str
    event_type: str
    event_version: str
    timestamp: int  # Unix timestamp in milliseconds
    source: str
    user_id: str
    correlation_id: Optional[str] = None
    causation_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_eventbridge_format(self) -> Dict[str, Any]:
        """Convert to EventBridge event format"""
        return {
            'Source': self.source,
            'DetailType': self.event_type,
            'Detail': json.dumps({
                'eventId': self.event_id,
                'eventVersion': self.event_version,
                'timestamp': self.timestamp,
                'userId': self.user_id,
                'correlationId': self.correlation_id,
                'causationId': self.causation_id,
                'data': self.data or {},
                'metadata': self.metadata or {}
            })
        }


# =============================================================================
# TRANSACTION EVENTS
# =============================================================================

@dataclass
class TransactionCreatedEvent(BaseEvent):
    """Published by the ingestion pipeline for each newly stored transaction"""

    def __init__(self, user_id: str, transactions: List[Dict[str, Any]], **kwargs):
        super().__init__(
            event_id=str(uuid.uuid4()),
            event_type='transaction.created',
            event_version='1.0',
            timestamp=int(datetime.now().timestamp() * 1000),
            source='transaction.service',
            user_id=user_id,
            data={
                'transactions': transactions,
                **kwargs
            }
        )


# =============================================================================
# RECURRING PATTERN EVENTS
# =============================================================================

@dataclass
class RecurringPatternAnalysisRequestedEvent(BaseEvent):
    """Published on demand or by the scheduler to run a full pattern analysis"""

    def __init__(self, user_id: str, lookback_months: Optional[int] = None, **kwargs):
        super().__init__(
            event_id=str(uuid.uuid4()),
            event_type='recurring_pattern.analysis.requested',
            event_version='1.0',
            timestamp=int(datetime.now().timestamp() * 1000),
            source='recurring_pattern.service',
            user_id=user_id,
            data={
                'lookbackMonths': lookback_months,
                **kwargs
            }
        )
