"""
Exact join aggregates.

Computes the true aggregate over the (filtered) join by enumerating every
join tuple, O(|J|). Used to obtain the filter selectivity the estimator
needs and to measure relative errors of estimates.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict

from samplejoin.schema.relation import Relation
from samplejoin.schema.strata import StratifiedRelation


logger = logging.getLogger(__name__)


@dataclass
class ExactAggregate:
    """Exact aggregate and join sizes."""
    aggregate: float
    join_size: int
    filtered_join_size: int

    @property
    def selectivity(self) -> float:
        """Fraction of join tuples passing the filter (0 for an empty join)."""
        if self.join_size == 0:
            return 0.0
        return self.filtered_join_size / self.join_size

    def relative_error(self, estimate: float) -> float:
        """|aggregate - estimate| / |aggregate|."""
        if self.aggregate == 0:
            raise ZeroDivisionError("relative error is undefined for a zero aggregate")
        return abs(self.aggregate - estimate) / abs(self.aggregate)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aggregate": self.aggregate,
            "join_size": self.join_size,
            "filtered_join_size": self.filtered_join_size,
            "selectivity": self.selectivity,
        }


def exact_join_aggregate(
    r1: Relation,
    strata: StratifiedRelation,
    aggregate: Callable[[Any, Any, Any], float],
    r1_filter: Callable[[Any, Any], bool],
    r2_filter: Callable[[Any, Any], bool]
) -> ExactAggregate:
    """
    Enumerate sigma(R1 join R2) and sum the aggregate.

    Args:
        r1: Build relation
        strata: Stratified probe relation
        aggregate: f(A, B, C)
        r1_filter: Predicate on (A, B)
        r2_filter: Predicate on (A, C)

    Returns:
        ExactAggregate
    """
    total = 0.0
    join_size = 0
    filtered_size = 0

    for a, b in r1:
        stratum = strata.get(a)
        if stratum is None:
            continue
        join_size += len(stratum)
        if not r1_filter(a, b):
            continue
        for _, c in stratum:
            if r2_filter(a, c):
                total += float(aggregate(a, b, c))
                filtered_size += 1

    logger.info(
        f"Exact aggregate: {total:.6g} over {filtered_size:,} of {join_size:,} join tuples"
    )
    return ExactAggregate(aggregate=total, join_size=join_size, filtered_join_size=filtered_size)
