"""
Recurring Pattern Detection Services.

This package detects recurring payments (subscriptions, bills, periodic
income) from transaction history and maintains them as new transactions
arrive.

Public API:
    - RecurringPatternDetectionService: Batch analysis of a user's lookback window
    - PatternMatcher: Inline matching of newly ingested transactions
    - LifecycleSweeper: Daily time-based status transitions
    - PatternReviewService: Confirm, edit, deactivate and query patterns
    - DetectionConfig: Configuration for detection parameters
    - DEFAULT_CONFIG: Default configuration instance
"""

from services.recurring_patterns.config import DetectionConfig, FrequencyThresholds, DEFAULT_CONFIG
from services.recurring_patterns.normalizer import normalize_merchant_name, UNKNOWN_MERCHANT
from services.recurring_patterns.clustering import AmountCluster, AmountClusterer
from services.recurring_patterns.analyzers import IntervalAnalyzer, IntervalAnalysis
from services.recurring_patterns.builder import PatternBuilder
from services.recurring_patterns.merger import PatternMerger
from services.recurring_patterns.matcher import PatternMatcher, record_occurrence
from services.recurring_patterns.lifecycle import LifecycleSweeper, SweepReport, StatusTransition
from services.recurring_patterns.repository import PatternRepository, DynamoDBPatternRepository
from services.recurring_patterns.detection_service import RecurringPatternDetectionService, AnalysisResult
from services.recurring_patterns.pattern_review_service import PatternReviewService

__all__ = [
    'RecurringPatternDetectionService',
    'AnalysisResult',
    'PatternMatcher',
    'record_occurrence',
    'LifecycleSweeper',
    'SweepReport',
    'StatusTransition',
    'PatternReviewService',
    'PatternRepository',
    'DynamoDBPatternRepository',
    'PatternBuilder',
    'PatternMerger',
    'AmountCluster',
    'AmountClusterer',
    'IntervalAnalyzer',
    'IntervalAnalysis',
    'normalize_merchant_name',
    'UNKNOWN_MERCHANT',
    'DetectionConfig',
    'FrequencyThresholds',
    'DEFAULT_CONFIG',
]
