"""
Lifecycle sweeper.

Daily pass that advances pattern status purely from elapsed time:

- ACTIVE and more than irregular_multiplier intervals past the next expected
  date -> IRREGULAR
- ACTIVE and more than ended_multiplier intervals since the last occurrence
  -> ENDED

Only patterns that are ACTIVE when the sweep reaches them are examined;
IRREGULAR patterns are not swept. The two checks are evaluated in that order
and independently, so an ACTIVE pattern that qualifies for both passes
through IRREGULAR to ENDED in one sweep and the report lists both
transitions. Only patterns whose status changes are written.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from models.recurring_pattern import RecurringPattern, PatternStatus, PatternEvent
from services.recurring_patterns.config import DetectionConfig, DEFAULT_CONFIG
from services.recurring_patterns.repository import PatternRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusTransition:
    pattern_id: uuid.UUID
    merchant_key: str
    event: PatternEvent
    from_status: PatternStatus
    to_status: PatternStatus


@dataclass
class SweepReport:
    """Outcome of one sweep."""
    examined: int = 0
    updated: int = 0
    failed: int = 0
    transitions: List[StatusTransition] = field(default_factory=list)


class LifecycleSweeper:
    """Applies time-based status transitions to live patterns."""

    def __init__(self, repository: PatternRepository, config: Optional[DetectionConfig] = None):
        self.repository = repository
        self.config = config or DEFAULT_CONFIG

    def evaluate(self, pattern: RecurringPattern, today: date) -> List[StatusTransition]:
        """
        Apply due transitions to the pattern in place.

        Returns:
            The transitions applied, in order; empty when nothing changed
        """
        if pattern.status != PatternStatus.ACTIVE:
            return []

        transitions: List[StatusTransition] = []

        def transition(event: PatternEvent) -> None:
            from_status = pattern.status
            to_status = pattern.apply_event(event)
            transitions.append(StatusTransition(
                pattern_id=pattern.pattern_id,
                merchant_key=pattern.merchant_key,
                event=event,
                from_status=from_status,
                to_status=to_status,
            ))

        interval = pattern.interval_days
        next_expected = pattern.next_expected_date or pattern.calculate_next_expected_date()

        if today > next_expected:
            days_overdue = (today - next_expected).days
            if days_overdue > self.config.irregular_multiplier * interval:
                transition(PatternEvent.SIGNIFICANTLY_OVERDUE)

        days_since_last = (today - pattern.last_occurrence).days
        if days_since_last > self.config.ended_multiplier * interval:
            transition(PatternEvent.DORMANT)

        return transitions

    def sweep(self, today: Optional[date] = None, user_id: Optional[str] = None) -> SweepReport:
        """
        Sweep every ACTIVE pattern (or one user's patterns).

        A failure on one pattern is logged and counted; the sweep continues.
        """
        today = today or date.today()
        report = SweepReport()
        patterns = self.repository.find_for_sweep(user_id)
        logger.info(f"Lifecycle sweep for {today.isoformat()}: {len(patterns)} patterns to examine")

        for pattern in patterns:
            report.examined += 1
            applied: List[StatusTransition] = []

            def apply(current: RecurringPattern) -> bool:
                applied.clear()
                applied.extend(self.evaluate(current, today))
                return bool(applied)

            try:
                self.repository.update_with_retry(pattern, apply, self.config.max_conflict_retries)
            except Exception as e:
                logger.exception(f"Error sweeping pattern {str(pattern.pattern_id)}: {e}")
                report.failed += 1
                continue

            if applied:
                report.updated += 1
                report.transitions.extend(applied)
                logger.info(
                    f"Pattern {str(pattern.pattern_id)} ({pattern.merchant_key}): "
                    + " -> ".join([applied[0].from_status.value] + [t.to_status.value for t in applied])
                )

        logger.info(
            f"Lifecycle sweep complete: {report.updated}/{report.examined} patterns changed, "
            f"{report.failed} failed"
        )
        return report
