"""
Tests for the daily lifecycle sweep.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from models.recurring_pattern import PatternStatus, PatternEvent
from services.recurring_patterns.lifecycle import LifecycleSweeper
from utils.db.base import PersistenceError
from tests.fixtures.recurring_pattern_fixtures import InMemoryPatternRepository, create_pattern, TODAY


@pytest.fixture
def sweeper():
    return LifecycleSweeper(InMemoryPatternRepository())


class TestEvaluate:

    def test_dormant_pattern_ends(self, sweeper):
        # interval 30, last occurrence 100 days ago, next expected only 20 days ago
        pattern = create_pattern(
            interval_days=30,
            last_occurrence=TODAY - timedelta(days=100),
            next_expected_date=TODAY - timedelta(days=20),
        )
        transitions = sweeper.evaluate(pattern, TODAY)

        assert pattern.status == PatternStatus.ENDED
        assert [t.event for t in transitions] == [PatternEvent.DORMANT]

    def test_irregular_pattern_left_alone(self, sweeper):
        pattern = create_pattern(
            status=PatternStatus.IRREGULAR,
            interval_days=30,
            last_occurrence=TODAY - timedelta(days=100),
        )
        assert sweeper.evaluate(pattern, TODAY) == []
        assert pattern.status == PatternStatus.IRREGULAR

    def test_significantly_overdue_goes_irregular_before_ended(self, sweeper):
        # next expected 65 days ago with interval 30
        pattern = create_pattern(interval_days=30, last_occurrence=TODAY - timedelta(days=95))
        assert pattern.next_expected_date == TODAY - timedelta(days=65)

        transitions = sweeper.evaluate(pattern, TODAY)

        assert [(t.from_status, t.to_status) for t in transitions] == [
            (PatternStatus.ACTIVE, PatternStatus.IRREGULAR),
            (PatternStatus.IRREGULAR, PatternStatus.ENDED),
        ]

    def test_significantly_overdue_but_recent_stays_irregular(self, sweeper):
        pattern = create_pattern(
            interval_days=30,
            last_occurrence=TODAY - timedelta(days=80),
            next_expected_date=TODAY - timedelta(days=65),
        )
        transitions = sweeper.evaluate(pattern, TODAY)

        assert pattern.status == PatternStatus.IRREGULAR
        assert [t.event for t in transitions] == [PatternEvent.SIGNIFICANTLY_OVERDUE]

    def test_boundaries_are_strict(self, sweeper):
        # exactly two intervals overdue and three intervals since last: no change
        pattern = create_pattern(
            interval_days=30,
            last_occurrence=TODAY - timedelta(days=90),
            next_expected_date=TODAY - timedelta(days=60),
        )
        assert sweeper.evaluate(pattern, TODAY) == []
        assert pattern.status == PatternStatus.ACTIVE

    def test_on_time_pattern_unchanged(self, sweeper):
        pattern = create_pattern(last_occurrence=TODAY - timedelta(days=20))
        assert sweeper.evaluate(pattern, TODAY) == []

    def test_pending_patterns_are_left_alone(self, sweeper):
        pattern = create_pattern(status=PatternStatus.PENDING_CONFIRMATION, last_occurrence=TODAY - timedelta(days=200))
        assert sweeper.evaluate(pattern, TODAY) == []


class TestSweep:

    def test_persists_only_changed_patterns(self):
        repository = InMemoryPatternRepository([
            create_pattern("netflixcom", last_occurrence=TODAY - timedelta(days=100)),
            create_pattern("spotify", "-9.99", last_occurrence=TODAY - timedelta(days=10)),
            create_pattern("gym", "-50.00", status=PatternStatus.ENDED, last_occurrence=TODAY - timedelta(days=300)),
            create_pattern("water", "-45.00", status=PatternStatus.IRREGULAR, last_occurrence=TODAY - timedelta(days=300)),
        ])
        report = LifecycleSweeper(repository).sweep(today=TODAY)

        assert report.examined == 2
        assert report.updated == 1
        assert report.failed == 0
        assert repository.save_calls == 1
        statuses = {p.merchant_key: p.status for p in repository.patterns}
        assert statuses == {
            "netflixcom": PatternStatus.ENDED,
            "spotify": PatternStatus.ACTIVE,
            "gym": PatternStatus.ENDED,
            "water": PatternStatus.IRREGULAR,
        }

    def test_report_lists_transitions_in_order(self):
        repository = InMemoryPatternRepository([
            create_pattern("netflixcom", interval_days=30, last_occurrence=TODAY - timedelta(days=95)),
        ])
        report = LifecycleSweeper(repository).sweep(today=TODAY)

        assert [t.to_status for t in report.transitions] == [PatternStatus.IRREGULAR, PatternStatus.ENDED]

    def test_sweep_is_idempotent_for_the_same_day(self):
        repository = InMemoryPatternRepository([
            create_pattern("netflixcom", last_occurrence=TODAY - timedelta(days=100)),
        ])
        sweeper = LifecycleSweeper(repository)
        sweeper.sweep(today=TODAY)
        second = sweeper.sweep(today=TODAY)

        assert second.examined == 0
        assert second.updated == 0

    def test_failure_on_one_pattern_does_not_stop_sweep(self):
        broken = create_pattern("netflixcom", last_occurrence=TODAY - timedelta(days=100))
        healthy = create_pattern("spotify", "-9.99", last_occurrence=TODAY - timedelta(days=100))
        repository = MagicMock()
        repository.find_for_sweep.return_value = [broken, healthy]

        def update_with_retry(pattern, mutate, max_retries):
            if pattern.merchant_key == "netflixcom":
                raise PersistenceError("save", "table unavailable")
            mutate(pattern)
            return pattern

        repository.update_with_retry.side_effect = update_with_retry
        report = LifecycleSweeper(repository).sweep(today=TODAY)

        assert report.examined == 2
        assert report.failed == 1
        assert report.updated == 1

    def test_sweep_scoped_to_user(self):
        repository = InMemoryPatternRepository([
            create_pattern("netflixcom", last_occurrence=TODAY - timedelta(days=100)),
            create_pattern("netflixcom", user_id="someone-else", last_occurrence=TODAY - timedelta(days=100)),
        ])
        report = LifecycleSweeper(repository).sweep(today=TODAY, user_id="someone-else")

        assert report.updated == 1
        statuses = {p.user_id: p.status for p in repository.patterns}
        assert statuses["test-user"] == PatternStatus.ACTIVE
        assert statuses["someone-else"] == PatternStatus.ENDED
