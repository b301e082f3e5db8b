"""
Database utilities for DynamoDB operations.

This module provides a clean interface for all database operations.
Imports are organized by resource type for easy navigation.
"""

# ============================================================================
# Core Infrastructure
# ============================================================================

from .base import (
    # Table management
    tables,
    DynamoDBTables,

    # Exceptions
    NotFound,
    ConflictError,
    PersistenceError,

    # Decorators
    dynamodb_operation,
    retry_on_throttle,
    monitor_performance,
)

from .helpers import (
    paginated_query,
    paginated_scan,
    timestamp_from_datetime,
    to_db_date,
    build_version_condition,
)

# ============================================================================
# Recurring Pattern Operations
# ============================================================================

from .recurring_patterns import (
    get_pattern_from_db,
    save_pattern_in_db,
    list_patterns_for_merchant,
    find_pattern_by_identity,
    list_candidate_patterns,
    list_active_patterns_by_merchant,
    list_patterns_for_sweep,
    list_patterns_due_within,
    list_overdue_patterns,
    list_patterns_by_category_type,
    get_monthly_totals_by_category,
)

# ============================================================================
# Transaction Operations
# ============================================================================

from .transactions import (
    list_transactions_created_since,
)
