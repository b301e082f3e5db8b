"""
Tests for tolerance-based amount clustering.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from services.recurring_patterns.clustering import AmountClusterer, is_amount_similar
from tests.fixtures.recurring_pattern_fixtures import create_transaction, TODAY


@pytest.fixture
def clusterer():
    return AmountClusterer(tolerance_percent=Decimal("10.0"), min_cluster_size=2)


class TestIsAmountSimilar:
    def test_boundary_is_inclusive(self):
        assert is_amount_similar(Decimal("110.00"), Decimal("100.00"), Decimal("10"))
        assert not is_amount_similar(Decimal("110.01"), Decimal("100.00"), Decimal("10"))

    def test_negative_anchor_uses_magnitude(self):
        assert is_amount_similar(Decimal("-105.00"), Decimal("-100.00"), Decimal("10"))
        assert not is_amount_similar(Decimal("100.00"), Decimal("-100.00"), Decimal("10"))


class TestAmountClusterer:

    def test_amount_within_tolerance_joins_anchor_cluster(self, clusterer):
        transactions = [
            create_transaction(amount="-50.00", on=TODAY - timedelta(days=60)),
            create_transaction(amount="-54.99", on=TODAY - timedelta(days=30)),
        ]
        clusters = clusterer.cluster(transactions)
        assert len(clusters) == 1
        assert clusters[0].anchor == Decimal("-50.00")
        assert len(clusters[0]) == 2

    def test_amount_outside_tolerance_forms_new_cluster(self, clusterer):
        transactions = [
            create_transaction(amount="-50.00", on=TODAY - timedelta(days=60)),
            create_transaction(amount="-56.00", on=TODAY - timedelta(days=30)),
        ]
        clusters = clusterer.cluster(transactions)
        assert [c.anchor for c in clusters] == [Decimal("-50.00"), Decimal("-56.00")]

    def test_anchor_is_first_transaction_by_date(self, clusterer):
        transactions = [
            create_transaction(amount="-10.50", on=TODAY),
            create_transaction(amount="-10.00", on=TODAY - timedelta(days=30)),
        ]
        clusters = clusterer.cluster(transactions)
        assert clusters[0].anchor == Decimal("-10.00")
        assert clusters[0].dates == [TODAY - timedelta(days=30), TODAY]

    def test_anchor_does_not_drift(self, clusterer):
        # Each amount is within 10% of its predecessor but the last is not within 10% of the anchor
        amounts = ["-100.00", "-109.00", "-118.00"]
        transactions = [
            create_transaction(amount=amount, on=TODAY - timedelta(days=30 * (len(amounts) - i)))
            for i, amount in enumerate(amounts)
        ]
        clusters = clusterer.cluster(transactions)
        assert len(clusters) == 2
        assert len(clusters[0]) == 2

    def test_qualifying_clusters_drop_singletons(self, clusterer):
        transactions = [
            create_transaction(amount="-15.99", on=TODAY - timedelta(days=30)),
            create_transaction(amount="-15.99", on=TODAY),
            create_transaction(amount="-99.00", on=TODAY),
        ]
        qualifying = clusterer.qualifying_clusters(transactions)
        assert len(qualifying) == 1
        assert qualifying[0].anchor == Decimal("-15.99")
