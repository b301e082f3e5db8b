"""
Pattern builder.

Assembles a RecurringPattern from a qualifying amount cluster and its interval
analysis.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from models.recurring_pattern import (
    RecurringPattern,
    PatternStatus,
    DetectionMethod,
    pattern_identity_id,
)
from services.recurring_patterns.analyzers.interval import IntervalAnalysis
from services.recurring_patterns.clustering import AmountCluster
from services.recurring_patterns.config import DetectionConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


class PatternBuilder:
    """Builds new patterns; never reads or writes storage."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def build(
        self,
        user_id: str,
        merchant_key: str,
        cluster: AmountCluster,
        analysis: IntervalAnalysis,
        today: date
    ) -> RecurringPattern:
        """
        Build a pattern from a cluster.

        The amount is the cluster anchor and category fields come from the
        chronologically last transaction. The pattern starts ENDED when today
        is already more than one interval past its next expected date.
        """
        transactions = sorted(cluster.transactions, key=lambda t: (t.date, t.created_at))
        latest = transactions[-1]
        first_occurrence = transactions[0].transaction_date
        last_occurrence = latest.transaction_date
        next_expected = last_occurrence + timedelta(days=analysis.interval_days)

        if today > next_expected + timedelta(days=analysis.interval_days):
            status = PatternStatus.ENDED
        else:
            status = PatternStatus.PENDING_CONFIRMATION

        pattern = RecurringPattern(
            pattern_id=pattern_identity_id(user_id, merchant_key, cluster.anchor),
            user_id=user_id,
            merchant_key=merchant_key,
            merchant_name=(latest.merchant_name or merchant_key).strip() or merchant_key,
            amount=cluster.anchor,
            amount_tolerance_pct=self.config.amount_tolerance,
            frequency=analysis.frequency,
            interval_days=analysis.interval_days,
            confidence_score=analysis.confidence,
            status=status,
            first_occurrence=first_occurrence,
            last_occurrence=last_occurrence,
            next_expected_date=next_expected,
            occurrence_count=len(transactions),
            category_type=latest.category_type,
            category=latest.category,
            detection_method=DetectionMethod.AMOUNT_AND_MERCHANT,
        )
        pattern.remember_transactions(t.transaction_id for t in transactions)
        logger.debug(
            f"Built pattern for '{merchant_key}' {cluster.anchor}: {analysis.frequency.value} "
            f"every {analysis.interval_days} days, confidence {analysis.confidence:.2f}, status {status.value}"
        )
        return pattern
