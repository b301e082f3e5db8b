"""Analyzers used by recurring pattern detection."""

from services.recurring_patterns.analyzers.interval import IntervalAnalyzer, IntervalAnalysis

__all__ = [
    'IntervalAnalyzer',
    'IntervalAnalysis',
]
