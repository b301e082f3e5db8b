"""
Tests for the repository contract helpers, the DynamoDB-backed repository's
error translation, and detection configuration.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from services.recurring_patterns.config import DetectionConfig, FrequencyThresholds
from services.recurring_patterns.repository import DynamoDBPatternRepository
from utils.db.base import ConflictError, PersistenceError
from models.recurring_pattern import RecurrenceFrequency
from tests.fixtures.recurring_pattern_fixtures import InMemoryPatternRepository, create_pattern, TODAY, TEST_USER


class TestUpdateWithRetry:

    def test_no_write_when_mutate_declines(self):
        pattern = create_pattern()
        repository = InMemoryPatternRepository([pattern])

        result = repository.update_with_retry(pattern, lambda p: False)

        assert result is pattern
        assert repository.save_calls == 0

    def test_returns_none_when_pattern_vanishes(self):
        pattern = create_pattern()
        repository = InMemoryPatternRepository()  # never stored, so the version check fails

        def bump(current):
            current.occurrence_count += 1
            return True

        assert repository.update_with_retry(pattern, bump, max_retries=3) is None

    def test_mutation_reapplied_to_fresh_copy(self):
        pattern = create_pattern(occurrence_count=3)
        repository = InMemoryPatternRepository([pattern])
        stale = repository.get(TEST_USER, pattern.pattern_id)

        # Someone else writes first
        fresh = repository.get(TEST_USER, pattern.pattern_id)
        fresh.occurrence_count = 10
        repository.save(fresh, 0)

        def bump(current):
            current.occurrence_count += 1
            return True

        saved = repository.update_with_retry(stale, bump)
        assert saved.occurrence_count == 11
        assert saved.version == 2


class TestDynamoDBPatternRepository:

    def test_client_error_becomes_persistence_error(self):
        error = ClientError({'Error': {'Code': 'InternalServerError', 'Message': 'boom'}}, 'Query')
        with patch('services.recurring_patterns.repository.patterns_db.list_candidate_patterns', side_effect=error):
            with pytest.raises(PersistenceError) as exc_info:
                DynamoDBPatternRepository().find_candidates(TEST_USER, "netflixcom", create_pattern().amount)
        assert exc_info.value.operation == "find_candidates"
        assert exc_info.value.__cause__ is error

    def test_uninitialized_table_becomes_persistence_error(self):
        with patch('services.recurring_patterns.repository.patterns_db.get_pattern_from_db',
                   side_effect=ConnectionError("Database table not initialized")):
            with pytest.raises(PersistenceError):
                DynamoDBPatternRepository().get(TEST_USER, create_pattern().pattern_id)

    def test_corrupt_stored_item_becomes_persistence_error(self):
        pattern = create_pattern()
        item = pattern.to_dynamodb_item()
        item["amount"] = Decimal("0")
        with patch("utils.db.recurring_patterns.tables") as mock_tables:
            mock_tables.recurring_patterns = MagicMock()
            mock_tables.recurring_patterns.get_item.return_value = {"Item": item}
            with pytest.raises(PersistenceError) as exc_info:
                DynamoDBPatternRepository().get(TEST_USER, pattern.pattern_id)
        assert exc_info.value.operation == "get"
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_conflict_passes_through(self):
        with patch('services.recurring_patterns.repository.patterns_db.save_pattern_in_db',
                   side_effect=ConflictError("version mismatch")):
            with pytest.raises(ConflictError):
                DynamoDBPatternRepository().save(create_pattern(), 0)

    def test_delegates_sweep_listing(self):
        patterns = [create_pattern(last_occurrence=TODAY - timedelta(days=5))]
        with patch('services.recurring_patterns.repository.patterns_db.list_patterns_for_sweep',
                   return_value=patterns) as mock_list:
            assert DynamoDBPatternRepository().find_for_sweep() == patterns
        mock_list.assert_called_once_with(None)


class TestDetectionConfig:

    def test_defaults(self):
        config = DetectionConfig()
        assert config.min_occurrences == 2
        assert config.max_days_variance == 7
        assert config.min_confidence == 0.6
        assert config.amount_tolerance_percent == 10.0
        assert config.lookback_months == 12

    def test_merge_weights_must_sum_to_one(self):
        with pytest.raises(ValueError):
            DetectionConfig(existing_weight=0.5, candidate_weight=0.3)

    def test_min_occurrences_at_least_two(self):
        with pytest.raises(ValueError):
            DetectionConfig(min_occurrences=1)

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv('RECURRING_LOOKBACK_MONTHS', '6')
        monkeypatch.setenv('RECURRING_MIN_CONFIDENCE', '0.75')
        config = DetectionConfig.from_environment()
        assert config.lookback_months == 6
        assert config.min_confidence == 0.75
        assert config.min_occurrences == 2

    def test_threshold_mapping(self):
        mapping = FrequencyThresholds().to_dict()
        assert mapping[RecurrenceFrequency.MONTHLY] == (28, 32)
        assert RecurrenceFrequency.CUSTOM not in mapping
