"""
Amount clustering for same-merchant transactions.

Greedy first-fit: each transaction joins the first cluster whose anchor amount
is within tolerance, otherwise it anchors a new cluster. The anchor is the
amount of the first transaction assigned to a cluster and never moves, so the
result depends on encounter order; callers feed transactions in ascending date
order.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Iterable

from models.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass
class AmountCluster:
    """Transactions sharing one amount archetype."""
    anchor: Decimal
    transactions: List[Transaction] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.transactions)

    @property
    def dates(self):
        return [t.transaction_date for t in self.transactions]


def is_amount_similar(amount: Decimal, anchor: Decimal, tolerance_percent: Decimal) -> bool:
    """True when |amount - anchor| <= tolerance_percent/100 * |anchor|."""
    return abs(amount - anchor) <= abs(anchor) * tolerance_percent / Decimal(100)


class AmountClusterer:
    """Groups transactions of one merchant into tolerance-based amount clusters."""

    def __init__(self, tolerance_percent: Decimal = Decimal("10.0"), min_cluster_size: int = 2):
        self.tolerance_percent = Decimal(tolerance_percent)
        self.min_cluster_size = min_cluster_size

    def cluster(self, transactions: Iterable[Transaction]) -> List[AmountCluster]:
        """
        Cluster transactions in ascending date order.

        Returns:
            Every cluster, in order of creation. Each is non-empty and ordered by date.
        """
        ordered = sorted(transactions, key=lambda t: (t.date, t.created_at))
        clusters: List[AmountCluster] = []

        for transaction in ordered:
            for cluster in clusters:
                if is_amount_similar(transaction.amount, cluster.anchor, self.tolerance_percent):
                    cluster.transactions.append(transaction)
                    break
            else:
                clusters.append(AmountCluster(anchor=transaction.amount, transactions=[transaction]))

        logger.debug(f"Clustered {len(ordered)} transactions into {len(clusters)} amount clusters")
        return clusters

    def qualifying_clusters(self, transactions: Iterable[Transaction]) -> List[AmountCluster]:
        """Clusters large enough to be analysed."""
        return [c for c in self.cluster(transactions) if len(c) >= self.min_cluster_size]
