"""
Heuristic Two-Stage (HWS) Sampler.

Stage 1 draws a uniform pilot set of k indices (with replacement) from the
full population. Stage 2 draws the m requested indices from the pilot with
probability proportional to their original weights.

This avoids the O(n) CDF over the whole population at the price of a small
bias: an item's inclusion probability is only approximately proportional to
its weight, and duplicates become likely when k is small relative to m and
the weight skew. The pilot size k is chosen by a heuristic:

- simple:   k = m^2                                          (O(1))
- complete: k = k_factor * m^2 * (w_max / w_min) / ln(1/sigma)   (O(n))

where sigma in (0, 1) is the duplicate-avoidance confidence. If k exceeds
the population size the sampler refuses to run; the caller must use the
exact sampler instead.
"""

import math
import logging
from typing import Callable, Optional, Union

import numpy as np

from samplejoin.core.errors import ConfigurationError
from samplejoin.core.primitives import build_cdf, uniform_indices, weighted_sample_indices
from samplejoin.sampling.base import RangeSampler


logger = logging.getLogger(__name__)

HeuristicFn = Callable[[np.ndarray, float, float, int], float]


def hws_heuristic_simple(weights: np.ndarray, sigma: float, k_factor: float, m: int) -> float:
    """Pilot size ignoring the weight distribution: m^2."""
    return float(m) * float(m)


def hws_heuristic_complete(weights: np.ndarray, sigma: float, k_factor: float, m: int) -> float:
    """
    Pilot size accounting for weight skew.

    The minimum is taken over positive weights only; zero-weight items can
    never be drawn in stage 2 and would otherwise make the ratio infinite.
    """
    w = np.asarray(weights, dtype=np.float64)
    positive = w[w > 0]
    if positive.size == 0:
        raise ConfigurationError("HWS heuristic: population has no positive weight")
    w_max = float(positive.max())
    w_min = float(positive.min())
    sigma_factor = 1.0 / math.log(1.0 / sigma)
    return k_factor * sigma_factor * float(m) * float(m) * w_max / w_min


HEURISTICS = {
    'simple': hws_heuristic_simple,
    'complete': hws_heuristic_complete,
}


class HeuristicSampler(RangeSampler):
    """Two-stage approximate weighted sampler."""

    needs_cdf = False

    def __init__(
        self,
        sigma: float = 0.99,
        k_factor: float = 1.0,
        heuristic: Union[str, HeuristicFn] = 'simple',
        rng: Optional[np.random.Generator] = None
    ):
        """
        Args:
            sigma: Duplicate-avoidance confidence in (0, 1)
            k_factor: Pilot size inflation constant (> 0)
            heuristic: 'simple', 'complete' or a callable (weights, sigma, k_factor, m) -> k
            rng: Random generator
        """
        super().__init__(rng)
        if not 0 < sigma < 1:
            raise ConfigurationError(f"sigma must be in (0, 1), got {sigma}")
        if k_factor <= 0:
            raise ConfigurationError(f"k_factor must be > 0, got {k_factor}")
        if isinstance(heuristic, str):
            if heuristic not in HEURISTICS:
                raise ConfigurationError(f"Unknown HWS heuristic: {heuristic}")
            heuristic = HEURISTICS[heuristic]

        self.sigma = sigma
        self.k_factor = k_factor
        self.heuristic = heuristic

    def pilot_size(self, weights: np.ndarray, m: int) -> int:
        """Pilot size k for drawing m items from ``weights``."""
        return int(round(self.heuristic(weights, self.sigma, self.k_factor, m)))

    def is_feasible(self, weights: np.ndarray, m: int) -> bool:
        """Whether the pilot for m draws fits in the population."""
        return self.pilot_size(weights, m) <= len(weights)

    def sample(self, m: int, weights: np.ndarray, cdf: Optional[np.ndarray] = None) -> np.ndarray:
        # The full CDF is never needed; a supplied one is ignored.
        weights = np.asarray(weights, dtype=np.float64)
        n = len(weights)

        k = self.pilot_size(weights, m)
        if k > n:
            raise ConfigurationError(
                f"HWS sampler: pilot size k={k:,} exceeds population size {n:,} "
                f"(m={m}); use the exact sampler"
            )
        if m == 0:
            return np.empty(0, dtype=np.int64)
        if k < 1:
            raise ConfigurationError(
                f"HWS sampler: pilot size k={k} is empty for m={m} and n={n:,}; "
                f"increase k_factor (was {self.k_factor})"
            )

        # Stage 1: uniform pilot
        pilot = uniform_indices(n, k, self.rng, replace=True)
        pilot_weights = weights[pilot]
        pilot_cdf = build_cdf(pilot_weights)
        if not pilot_cdf[-1] > 0:
            raise ConfigurationError(
                f"HWS sampler: all {k:,} pilot items have zero weight"
            )

        # Stage 2: weighted draw within the pilot
        chosen = weighted_sample_indices(pilot_cdf, m, self.rng)
        logger.debug(f"HWS sampler: pilot k={k:,} from n={n:,}, drew m={m}")
        return pilot[chosen]
