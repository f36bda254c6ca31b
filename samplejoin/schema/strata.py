"""
Stratification of the probe relation.

The probe relation R2 is partitioned by join key. Each stratum is the list
of R2 tuples sharing one key, in their original row order. Strata are
disjoint and their union is R2, so a build tuple with key a joins exactly
with the stratum of a.

For a weighting function h2(C) and an optional selection filter on R2, each
stratum is summarized by:
- total weight:    sum of h2 over the stratum
- filtered weight: sum of h2 over the stratum tuples passing the filter
- CDF:             running sum of h2 over the stratum (for partner draws)

Weighing is O(n2) across all strata and never mutates R2 or the partition,
so it can be repeated with different weighting functions or filters.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

from samplejoin.core.errors import ConfigurationError
from samplejoin.core.primitives import build_cdf
from samplejoin.schema.relation import Relation


logger = logging.getLogger(__name__)

ProbeTuple = Tuple[Any, Any]
WeightFn2 = Callable[[Any], float]
FilterFn = Callable[[Any, Any], bool]


@dataclass
class StratumWeight:
    """Weight summary of one stratum under h2."""
    total: float
    filtered: float
    cdf: np.ndarray

    def __repr__(self) -> str:
        return f"StratumWeight(total={self.total:.4g}, filtered={self.filtered:.4g}, size={len(self.cdf)})"


@dataclass
class StratumWeights:
    """Per-key weight summaries of a stratified relation."""
    by_key: Dict[Any, StratumWeight] = field(default_factory=dict)

    def __contains__(self, key: Any) -> bool:
        return key in self.by_key

    def __getitem__(self, key: Any) -> StratumWeight:
        return self.by_key[key]

    def __len__(self) -> int:
        return len(self.by_key)

    def total(self, key: Any) -> float:
        """Summed weight of the stratum for key, 0 if the key is absent."""
        stratum = self.by_key.get(key)
        return stratum.total if stratum is not None else 0.0

    def filtered(self, key: Any) -> float:
        """Summed filtered weight of the stratum for key, 0 if the key is absent."""
        stratum = self.by_key.get(key)
        return stratum.filtered if stratum is not None else 0.0

    def cdf(self, key: Any) -> Optional[np.ndarray]:
        stratum = self.by_key.get(key)
        return stratum.cdf if stratum is not None else None

    @property
    def grand_total(self) -> float:
        return sum(s.total for s in self.by_key.values())


class StratifiedRelation:
    """
    Probe relation partitioned by join key.

    Keys are kept in sorted order when they are mutually orderable, so
    iteration is deterministic; within a stratum the original row order of
    R2 is preserved.
    """

    def __init__(self, relation: Relation):
        """
        Partition a relation by key.

        Args:
            relation: Probe relation R2 (not modified)
        """
        self.relation = relation

        strata: Dict[Any, List[ProbeTuple]] = {}
        for key, payload in relation:
            strata.setdefault(key, []).append((key, payload))

        try:
            ordered = sorted(strata)
        except TypeError:
            ordered = list(strata)
        self._strata: Dict[Any, List[ProbeTuple]] = {key: strata[key] for key in ordered}

        logger.debug(
            f"Stratified {relation!r} into {len(self._strata):,} strata "
            f"(largest: {self.max_stratum_size():,} rows)"
        )

    def __contains__(self, key: Any) -> bool:
        return key in self._strata

    def __getitem__(self, key: Any) -> List[ProbeTuple]:
        return self._strata[key]

    def __iter__(self) -> Iterator[Any]:
        return iter(self._strata)

    def __len__(self) -> int:
        return len(self._strata)

    def get(self, key: Any) -> Optional[List[ProbeTuple]]:
        return self._strata.get(key)

    def items(self):
        return self._strata.items()

    def keys(self):
        return self._strata.keys()

    def stratum_size(self, key: Any) -> int:
        """Number of probe tuples with this key (0 if absent)."""
        stratum = self._strata.get(key)
        return len(stratum) if stratum is not None else 0

    def max_stratum_size(self) -> int:
        return max((len(s) for s in self._strata.values()), default=0)

    @property
    def num_tuples(self) -> int:
        return sum(len(s) for s in self._strata.values())

    def weigh(
        self,
        h2: WeightFn2,
        r2_filter: Optional[FilterFn] = None
    ) -> StratumWeights:
        """
        Compute total weight, filtered weight and CDF of every stratum.

        Args:
            h2: Weighting function on the probe payload C, non-negative and finite
            r2_filter: Predicate (A, C) -> bool; None selects every tuple

        Returns:
            StratumWeights keyed by join key

        Raises:
            ConfigurationError: If h2 returns a negative or non-finite value
        """
        result = StratumWeights()

        for key, stratum in self._strata.items():
            weights = np.empty(len(stratum), dtype=np.float64)
            filtered = 0.0
            for i, (a, c) in enumerate(stratum):
                w = float(h2(c))
                if not (w >= 0.0 and np.isfinite(w)):
                    raise ConfigurationError(
                        f"stratification: h2 returned {w} for tuple ({a!r}, {c!r}); "
                        f"weights must be finite and non-negative"
                    )
                weights[i] = w
                if r2_filter is None or r2_filter(a, c):
                    filtered += w

            cdf = build_cdf(weights)
            result.by_key[key] = StratumWeight(
                total=float(cdf[-1]),
                filtered=filtered,
                cdf=cdf,
            )

        return result

    def summary(self) -> str:
        """Generate summary of the stratification."""
        sizes = [len(s) for s in self._strata.values()]
        lines = [
            "=" * 60,
            "Stratification Summary",
            "=" * 60,
            f"Probe tuples:   {self.num_tuples:,}",
            f"Strata:         {len(sizes):,}",
        ]
        if sizes:
            lines.append(f"Stratum size:   min={min(sizes):,}, max={max(sizes):,}, "
                         f"mean={sum(sizes) / len(sizes):.2f}")
        lines.append("=" * 60)
        return "\n".join(lines)
