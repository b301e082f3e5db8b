"""
Recurring Pattern Detection Service.

Batch orchestrator that runs the full detection pipeline over a user's
trailing transaction window and persists the results.

## Detection Pipeline

```mermaid
graph TD
    A[Transactions created in lookback window] --> B[Group by normalized merchant]
    B --> C{>= min_occurrences?}
    C -->|No| Z[Skip merchant]
    C -->|Yes| D[AmountClusterer]
    D --> E[IntervalAnalyzer per cluster]
    E --> F{confidence >= min_confidence?}
    F -->|No| Y[No pattern]
    F -->|Yes| G[PatternBuilder]
    G --> H{Identity stored?}
    H -->|Yes| I[PatternMerger.reconcile]
    H -->|No| J[Create]
    I --> K[Versioned save]
    J --> K
```

A re-run over an unchanged window is idempotent: the merger keeps the larger
occurrence count and only adopts a strictly newer last occurrence.
"""

import calendar
import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from models.recurring_pattern import RecurringPattern
from models.transaction import Transaction
from services.recurring_patterns.analyzers import IntervalAnalyzer
from services.recurring_patterns.builder import PatternBuilder
from services.recurring_patterns.clustering import AmountClusterer
from services.recurring_patterns.config import DetectionConfig, DEFAULT_CONFIG
from services.recurring_patterns.merger import PatternMerger
from services.recurring_patterns.normalizer import normalize_merchant_name
from services.recurring_patterns.repository import PatternRepository, DynamoDBPatternRepository
from utils.db.base import ConflictError, PersistenceError
from utils.db.helpers import timestamp_from_datetime
from utils.db.transactions import list_transactions_created_since

logger = logging.getLogger(__name__)

TransactionSource = Callable[[str, int], List[Transaction]]


class PersistOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass
class AnalysisResult:
    """Counts reported by one batch analysis."""
    created: int = 0
    updated: int = 0
    failed: int = 0
    aborted: bool = False
    merchants_analyzed: int = 0
    failed_merchants: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Patterns created or updated."""
        return self.created + self.updated


def months_before(today: date, months: int) -> date:
    """Same day `months` calendar months earlier, clamped to the month's length."""
    month_index = today.year * 12 + (today.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(today.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class RecurringPatternDetectionService:
    """
    Orchestrates recurring pattern detection.

    `analyze_all` runs synchronously; `submit_analysis` runs it on a worker
    thread and returns a Future. Either can be stopped between merchants by
    setting the abort event.
    """

    def __init__(
        self,
        repository: Optional[PatternRepository] = None,
        transaction_source: Optional[TransactionSource] = None,
        config: Optional[DetectionConfig] = None,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        """
        Initialize the detection service.

        Args:
            repository: Pattern storage (defaults to DynamoDB)
            transaction_source: Callable(user_id, since_ms) returning transactions
            config: Optional detection configuration. If None, uses DEFAULT_CONFIG.
            executor: Optional executor for submit_analysis
        """
        self.config = config or DEFAULT_CONFIG
        self.repository = repository or DynamoDBPatternRepository()
        self.transaction_source = transaction_source or list_transactions_created_since

        self.clusterer = AmountClusterer(
            tolerance_percent=self.config.amount_tolerance,
            min_cluster_size=self.config.min_occurrences
        )
        self.interval_analyzer = IntervalAnalyzer(self.config)
        self.builder = PatternBuilder(self.config)
        self.merger = PatternMerger(self.config)

        self._executor = executor
        self._owns_executor = executor is None

    # =========================================================================
    # Entry points
    # =========================================================================

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.analysis_workers,
                thread_name_prefix="recurring-analysis"
            )
        return self._executor

    def submit_analysis(
        self,
        user_id: str,
        abort_event: Optional[threading.Event] = None,
        today: Optional[date] = None
    ) -> "Future[AnalysisResult]":
        """Run analyze_all in the background; the caller observes the Future."""
        logger.info(f"Submitting recurring pattern analysis for user {user_id}")
        return self.executor.submit(self.analyze_all, user_id, abort_event, today)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def analyze_all(
        self,
        user_id: str,
        abort_event: Optional[threading.Event] = None,
        today: Optional[date] = None
    ) -> AnalysisResult:
        """
        Analyse the user's transactions created within the lookback window.

        Failures are isolated per merchant and counted. Loading the window
        itself is not isolated: a PersistenceError there fails the run.
        """
        today = today or date.today()
        result = AnalysisResult()

        since = months_before(today, self.config.lookback_months)
        since_ms = timestamp_from_datetime(datetime(since.year, since.month, since.day, tzinfo=timezone.utc))
        transactions = self._load_transactions(user_id, since_ms)
        logger.info(
            f"Analyzing {len(transactions)} transactions created since {since.isoformat()} "
            f"for user {user_id}"
        )

        by_merchant = self.group_by_merchant(transactions)
        for merchant_key in sorted(by_merchant):
            if abort_event is not None and abort_event.is_set():
                logger.warning(f"Recurring pattern analysis for user {user_id} aborted before '{merchant_key}'")
                result.aborted = True
                break

            merchant_transactions = by_merchant[merchant_key]
            if len(merchant_transactions) < self.config.min_occurrences:
                continue

            result.merchants_analyzed += 1
            try:
                for pattern in self.detect_patterns(user_id, merchant_key, merchant_transactions, today):
                    outcome = self.persist_pattern(pattern)
                    if outcome == PersistOutcome.CREATED:
                        result.created += 1
                    else:
                        result.updated += 1
            except Exception as e:
                logger.exception(f"Error analyzing merchant '{merchant_key}' for user {user_id}: {e}")
                result.failed += 1
                result.failed_merchants.append(merchant_key)

        logger.info(
            f"Recurring pattern analysis complete for user {user_id}: "
            f"{result.created} created, {result.updated} updated, {result.failed} failed"
            + (" (aborted)" if result.aborted else "")
        )
        return result

    # =========================================================================
    # Pipeline steps
    # =========================================================================

    @staticmethod
    def group_by_merchant(transactions: List[Transaction]) -> Dict[str, List[Transaction]]:
        groups: Dict[str, List[Transaction]] = defaultdict(list)
        for transaction in transactions:
            groups[normalize_merchant_name(transaction.merchant_name)].append(transaction)
        return dict(groups)

    def detect_patterns(
        self,
        user_id: str,
        merchant_key: str,
        transactions: List[Transaction],
        today: date
    ) -> List[RecurringPattern]:
        """Cluster, analyse and build patterns for one merchant without touching storage."""
        if len(transactions) < self.config.min_occurrences:
            return []

        patterns: List[RecurringPattern] = []
        for cluster in self.clusterer.qualifying_clusters(transactions):
            analysis = self.interval_analyzer.analyze(cluster.dates)
            if analysis is None:
                continue
            patterns.append(self.builder.build(user_id, merchant_key, cluster, analysis, today))

        logger.debug(f"Merchant '{merchant_key}': {len(patterns)} patterns from {len(transactions)} transactions")
        return patterns

    def persist_pattern(self, candidate: RecurringPattern) -> PersistOutcome:
        """
        Create the candidate, or reconcile it into the stored pattern with the
        same identity. Conflicting writers are retried from a fresh read.

        Raises:
            ConflictError: If every attempt lost the race
            PersistenceError: On storage failure
        """
        for attempt in range(self.config.max_conflict_retries):
            existing = self.repository.find_by_identity(candidate.user_id, candidate.merchant_key, candidate.amount)
            try:
                if existing is None:
                    self.repository.save(candidate, None)
                    return PersistOutcome.CREATED

                expected_version = existing.version
                self.merger.reconcile(existing, candidate)
                self.repository.save(existing, expected_version)
                return PersistOutcome.UPDATED
            except ConflictError:
                logger.info(
                    f"Concurrent update on '{candidate.merchant_key}' {candidate.amount} "
                    f"(attempt {attempt + 1}/{self.config.max_conflict_retries}), retrying"
                )

        raise ConflictError(
            f"Could not persist pattern for '{candidate.merchant_key}' {candidate.amount} "
            f"after {self.config.max_conflict_retries} attempts"
        )

    def _load_transactions(self, user_id: str, since_ms: int) -> List[Transaction]:
        try:
            return self.transaction_source(user_id, since_ms)
        except PersistenceError:
            raise
        except (ClientError, ConnectionError) as e:
            raise PersistenceError("load_transactions", str(e)) from e
