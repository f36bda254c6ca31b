"""
Generic Sample-Join Estimator.

Estimates SUM_{(a,b,c) in sigma(R1 join R2)} f(a, b, c) without materializing
the join. Join tuples are sampled with probability proportional to
h1(a, b) * h2(c) and each sampled value is weighted by the inverse of its
(non-normalized) probability, Horvitz-Thompson style.

ALGORITHM (one estimate):
1. Weigh the strata of R2 under h2: total weight, filtered weight and CDF
   per join key                                               O(n2)
2. If requested, rebuild the normalization cache: the sampling weight of
   every R1 tuple is h1(a, b) * W2(a), their sum is the normalization W;
   tuples passing the R1 filter contribute h1(a, b) * W2'(a) to the
   filtered normalization W'                                  O(n1)
3. If requested, memoize the CDF of the sampling weights (only for
   samplers that use one)                                     O(n1)
4. Draw S = c + ceil(f * m / selectivity) build indices with the
   pluggable range sampler
5. Join every drawn tuple with a partner from its stratum
6. Count the tuples passing both filters; fewer than m is a
   PreconditionViolation
7. Trim the sample from the tail until exactly m passing tuples remain
8. Sum f / (h1 * h2) over the passing tuples
9. Rescale by W' / m (filtered estimator) or W / |sample| (naive)

CAVEAT: the naive rescaling converges only without a filter or when the
filter is independent of the output distribution. It is kept as the
baseline it was designed to be.

The normalization cache is owned by one estimator instance. Concurrent
estimate() calls on the same instance are not supported.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from samplejoin.core.errors import ConfigurationError, NumericDegenerate, PreconditionViolation
from samplejoin.core.memory_monitor import MemoryMonitor
from samplejoin.core.primitives import build_cdf, get_rng
from samplejoin.engine.materializer import minijoin
from samplejoin.sampling.base import RangeSampler
from samplejoin.schema.relation import Relation
from samplejoin.schema.strata import StratifiedRelation, StratumWeights


logger = logging.getLogger(__name__)

WeightFn1 = Callable[[Any, Any], float]
WeightFn2 = Callable[[Any], float]
AggregateFn = Callable[[Any, Any, Any], float]
FilterFn = Callable[[Any, Any], bool]

DEFAULT_OVERSAMPLING_FACTOR = 1.2
DEFAULT_OVERSAMPLING_CONSTANT = 100


def no_filter(x: Any, y: Any) -> bool:
    """Selects every tuple."""
    return True


def sum_c(a: Any, b: Any, c: Any) -> float:
    return float(c)


@dataclass
class NormalizationCache:
    """
    Memoized normalization state over the build relation.

    Valid only for the weighting functions, filters and relations it was
    computed with; the estimator invalidates it whenever any of those change.
    The CDF is dropped whenever the normalization is recomputed.
    """
    normalization: float = 0.0  # W: total weight of the join
    filtered_normalization: float = 0.0  # W': total weight of the filtered join
    sample_weights: Optional[np.ndarray] = None  # One sampling weight per R1 tuple
    cdf: Optional[np.ndarray] = None  # CDF over sample_weights (lazy)
    version: int = 0  # Incremented on every recompute

    @property
    def is_valid(self) -> bool:
        return self.sample_weights is not None

    def invalidate(self) -> None:
        """Forget all normalization state."""
        self.normalization = 0.0
        self.filtered_normalization = 0.0
        self.sample_weights = None
        self.cdf = None

    def invalidate_cdf(self) -> None:
        self.cdf = None


@dataclass
class EstimateResult:
    """Result of one estimation call."""
    estimate: float
    sample_size: int  # Retained tuples after trimming (passing or not)
    filtered_sample_size: int  # Retained tuples passing the filter (== m)
    draw_size: int  # Build tuples drawn before filtering
    normalization: float
    filtered_normalization: float
    filtered_estimator: bool
    cache_version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "estimate": self.estimate,
            "sample_size": self.sample_size,
            "filtered_sample_size": self.filtered_sample_size,
            "draw_size": self.draw_size,
            "normalization": self.normalization,
            "filtered_normalization": self.filtered_normalization,
            "filtered_estimator": self.filtered_estimator,
        }


class SampleJoinEstimator:
    """
    Aggregate estimator over the equi-join of a build and a probe relation.

    The choice of h1, h2 and sampler determines the sample-join algorithm
    (see engine.methods for the named presets). One instance owns one
    normalization cache; use ``reconfigure`` to change the weighting
    functions or filters, which invalidates it.
    """

    def __init__(
        self,
        r1: Relation,
        r2: Relation,
        h1: WeightFn1,
        h2: WeightFn2,
        sampler: RangeSampler,
        aggregate: AggregateFn = sum_c,
        r1_filter: FilterFn = no_filter,
        r2_filter: FilterFn = no_filter,
        rng: Optional[np.random.Generator] = None,
        oversampling_factor: float = DEFAULT_OVERSAMPLING_FACTOR,
        oversampling_constant: int = DEFAULT_OVERSAMPLING_CONSTANT,
        strata: Optional[StratifiedRelation] = None,
        memory_monitor: Optional[MemoryMonitor] = None
    ):
        """
        Initialize estimator.

        Args:
            r1: Build relation (A, B)
            r2: Probe relation (A, C)
            h1: Build-side weighting function h1(A, B) >= 0
            h2: Probe-side weighting function h2(C) >= 0
            sampler: Range sampler drawing build indices
            aggregate: Aggregation function f(A, B, C)
            r1_filter: Selection predicate on (A, B)
            r2_filter: Selection predicate on (A, C)
            rng: Random generator for partner draws
            oversampling_factor: Multiplicative slack of the draw size
            oversampling_constant: Additive slack of the draw size
            strata: Pre-built stratification of r2 (built if None)
            memory_monitor: Optional monitor logging the cache footprint
        """
        if oversampling_factor < 1.0:
            raise ConfigurationError(f"oversampling_factor must be >= 1.0, got {oversampling_factor}")
        if oversampling_constant < 0:
            raise ConfigurationError(f"oversampling_constant must be >= 0, got {oversampling_constant}")

        self.r1 = r1
        self.r2 = r2
        self.strata = strata if strata is not None else StratifiedRelation(r2)
        if self.strata.relation is not r2:
            raise ConfigurationError("strata were built from a different probe relation")

        self.h1 = h1
        self.h2 = h2
        self.sampler = sampler
        self.aggregate = aggregate
        self.r1_filter = r1_filter
        self.r2_filter = r2_filter
        self.rng = rng if rng is not None else get_rng()
        self.oversampling_factor = oversampling_factor
        self.oversampling_constant = oversampling_constant
        self.memory_monitor = memory_monitor

        self._cache = NormalizationCache()
        self._stratum_weights: Optional[StratumWeights] = None

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    @property
    def cache(self) -> NormalizationCache:
        return self._cache

    @property
    def normalization(self) -> float:
        return self._cache.normalization

    @property
    def filtered_normalization(self) -> float:
        return self._cache.filtered_normalization

    def invalidate(self) -> None:
        """Drop the normalization cache."""
        self._cache.invalidate()
        logger.debug("Normalization cache invalidated")

    def reconfigure(self, **changes: Any) -> None:
        """
        Replace weighting functions, filters, aggregate or sampler.

        Changing h1, h2 or a filter invalidates the normalization cache;
        changing the sampler only drops the CDF.
        """
        allowed = {'h1', 'h2', 'aggregate', 'r1_filter', 'r2_filter', 'sampler'}
        unknown = set(changes) - allowed
        if unknown:
            raise ConfigurationError(f"Cannot reconfigure {sorted(unknown)}; allowed: {sorted(allowed)}")

        for name, value in changes.items():
            setattr(self, name, value)

        if set(changes) & {'h1', 'h2', 'r1_filter', 'r2_filter'}:
            self.invalidate()
        elif 'sampler' in changes:
            self._cache.invalidate_cdf()

    def weigh_strata(self) -> StratumWeights:
        """Weigh every probe stratum under h2 and the probe filter."""
        self._stratum_weights = self.strata.weigh(self.h2, self.r2_filter)
        return self._stratum_weights

    def recompute_normalization(self, stratum_weights: Optional[StratumWeights] = None) -> NormalizationCache:
        """
        Rebuild sampling weights and normalization constants over R1.

        Args:
            stratum_weights: Weights of the current strata (computed if None)

        Returns:
            The refreshed cache
        """
        if stratum_weights is None:
            stratum_weights = self.weigh_strata()

        n1 = len(self.r1)
        sample_weights = np.zeros(n1, dtype=np.float64)
        normalization = 0.0
        filtered_normalization = 0.0

        for i, (a, b) in enumerate(self.r1):
            w1 = float(self.h1(a, b))
            if not (w1 >= 0.0 and math.isfinite(w1)):
                raise ConfigurationError(
                    f"normalization: h1 returned {w1} for R1 tuple {i} ({a!r}, {b!r}); "
                    f"weights must be finite and non-negative"
                )
            sample_weights[i] = w1 * stratum_weights.total(a)
            normalization += sample_weights[i]
            if self.r1_filter(a, b):
                filtered_normalization += w1 * stratum_weights.filtered(a)

        cache = self._cache
        cache.normalization = normalization
        cache.filtered_normalization = filtered_normalization
        cache.sample_weights = sample_weights
        cache.cdf = None  # depends on the weights just replaced
        cache.version += 1

        logger.info(
            f"Normalization recomputed over {n1:,} build tuples: "
            f"W={normalization:.6g}, W'={filtered_normalization:.6g}"
        )
        if self.memory_monitor is not None:
            self.memory_monitor.log_array_footprint("normalization", sample_weights=sample_weights)
        return cache

    def recompute_cdf(self) -> Optional[np.ndarray]:
        """
        Memoize the CDF over the sampling weights.

        Deferred: nothing is built if the active sampler does not use a CDF.
        """
        if not self._cache.is_valid:
            raise ConfigurationError("cannot build a CDF before the normalization has been computed")
        self._cache.invalidate_cdf()
        if not self.sampler.needs_cdf:
            logger.debug(f"{type(self.sampler).__name__} does not use a CDF; skipping memoization")
            return None

        self._cache.cdf = build_cdf(self._cache.sample_weights)
        if self.memory_monitor is not None:
            self.memory_monitor.log_array_footprint(
                "cdf", sample_weights=self._cache.sample_weights, cdf=self._cache.cdf
            )
        return self._cache.cdf

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def draw_size(self, m: int, filter_selectivity: float = 1.0) -> int:
        """Number of build tuples to draw so that about m survive the filter."""
        if not 0 < filter_selectivity <= 1:
            raise ConfigurationError(f"filter_selectivity must be in (0, 1], got {filter_selectivity}")
        return int(self.oversampling_constant + math.ceil(self.oversampling_factor * m / filter_selectivity))

    def _passes(self, a: Any, b: Any, c: Any) -> bool:
        return bool(self.r1_filter(a, b) and self.r2_filter(a, c))

    def run(
        self,
        m: int,
        filtered_estimator: bool = False,
        filter_selectivity: float = 1.0,
        recompute_normalization: bool = True,
        recompute_cdf: bool = False
    ) -> EstimateResult:
        """
        Compute one estimate with diagnostics.

        Args:
            m: Number of filter-passing join tuples to base the estimate on
            filtered_estimator: Rescale with W' (filter-aware) instead of W
            filter_selectivity: Known or estimated selectivity of the filter
            recompute_normalization: Rebuild the normalization cache first
            recompute_cdf: Memoize the CDF of the sampling weights

        Returns:
            EstimateResult

        Raises:
            ConfigurationError: Invalid m or selectivity, empty cache on reuse,
                or a sampler rejecting the population
            NumericDegenerate: W (or W' for the filtered estimator) is zero
            PreconditionViolation: Fewer than m drawn tuples pass the filter
        """
        if m < 1:
            raise ConfigurationError(f"sample size m must be >= 1, got {m}")
        if m > len(self.r1):
            raise ConfigurationError(
                f"sample size m={m} exceeds the build relation size {len(self.r1):,}"
            )
        s_size = self.draw_size(m, filter_selectivity)

        # Step 1: strata weights (partner CDFs are needed on every call)
        stratum_weights = self.weigh_strata()

        # Steps 2-3: normalization cache
        if recompute_normalization:
            self.recompute_normalization(stratum_weights)
        elif not self._cache.is_valid:
            raise ConfigurationError(
                "normalization cache is empty; call with recompute_normalization=True first"
            )
        elif len(self._cache.sample_weights) != len(self.r1):
            raise ConfigurationError(
                f"cached sampling weights cover {len(self._cache.sample_weights):,} tuples "
                f"but the build relation has {len(self.r1):,}"
            )
        if recompute_cdf:
            self.recompute_cdf()

        cache = self._cache
        if cache.normalization == 0.0:
            raise NumericDegenerate(
                f"normalization W is zero: no build tuple has positive sampling weight "
                f"(n1={len(self.r1):,}, strata={len(self.strata):,})"
            )
        if filtered_estimator and cache.filtered_normalization == 0.0:
            raise NumericDegenerate("filtered normalization W' is zero: the filter selects no join weight")

        # Step 4: draw build indices
        indices = self.sampler(s_size, cache.sample_weights, cache.cdf)
        if len(indices) != s_size:
            raise PreconditionViolation(
                f"sampler returned {len(indices)} indices, expected {s_size}",
                stage="sample", required=s_size, available=len(indices),
            )
        logger.debug(f"Drew {s_size:,} build tuples for m={m} (selectivity {filter_selectivity:.4g})")

        # Step 5: materialize join tuples
        build_tuples: List[Tuple[Any, Any]] = [self.r1[int(i)] for i in indices]
        sample = minijoin(build_tuples, self.strata, self.rng, stratum_weights)

        # Step 6: count filter-passing tuples
        passing = [self._passes(a, b, c) for a, b, c in sample]
        filtered_count = sum(passing)
        if filtered_count < m:
            raise PreconditionViolation(
                f"only {filtered_count} of {s_size} drawn tuples pass the filter, need m={m}; "
                f"increase the oversampling slack or lower filter_selectivity "
                f"(was {filter_selectivity:.4g})",
                stage="filter", required=m, available=filtered_count,
            )

        # Step 7: trim the tail so exactly m passing tuples remain
        seen = 0
        cut = len(sample)
        for position, passed in enumerate(passing):
            if passed:
                seen += 1
                if seen == m:
                    cut = position + 1
                    break
        sample = sample[:cut]
        passing = passing[:cut]

        # Step 8: inverse-probability weighted sum
        estimate = 0.0
        for (a, b, c), passed in zip(sample, passing):
            if passed:
                w_t = float(self.h1(a, b)) * float(self.h2(c))
                estimate += float(self.aggregate(a, b, c)) / w_t

        # Step 9: rescale
        if filtered_estimator:
            estimate *= cache.filtered_normalization / m
        else:
            estimate *= cache.normalization / len(sample)

        logger.debug(f"Estimate {estimate:.6g} from {len(sample)} retained tuples ({m} passing)")
        return EstimateResult(
            estimate=estimate,
            sample_size=len(sample),
            filtered_sample_size=m,
            draw_size=s_size,
            normalization=cache.normalization,
            filtered_normalization=cache.filtered_normalization,
            filtered_estimator=filtered_estimator,
            cache_version=cache.version,
        )

    def estimate(
        self,
        m: int,
        filtered_estimator: bool = False,
        filter_selectivity: float = 1.0,
        recompute_normalization: bool = True,
        recompute_cdf: bool = False
    ) -> float:
        """Compute one estimate; see ``run`` for arguments and errors."""
        return self.run(
            m,
            filtered_estimator=filtered_estimator,
            filter_selectivity=filter_selectivity,
            recompute_normalization=recompute_normalization,
            recompute_cdf=recompute_cdf,
        ).estimate
