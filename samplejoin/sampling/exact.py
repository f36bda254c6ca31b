"""
Exact CDF Sampler.

Draws indices with replacement, each with probability proportional to its
weight, by binary search over the cumulative weights. Building the CDF costs
O(k) for k weights; a caller that already holds the CDF (the estimator's
normalization cache) passes it in and pays only O(log k) per draw.
"""

import logging
from typing import Optional

import numpy as np

from samplejoin.core.errors import ConfigurationError
from samplejoin.core.primitives import build_cdf, validate_weights, weighted_sample_indices
from samplejoin.sampling.base import RangeSampler


logger = logging.getLogger(__name__)


def exact_weighted_sample(
    m: int,
    weights: np.ndarray,
    rng: np.random.Generator,
    cdf: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Draw m indices in [0, len(weights)) proportional to ``weights``.

    Args:
        m: Number of draws
        weights: Non-negative weights
        rng: Random generator
        cdf: Optional precomputed CDF of ``weights``; built if None

    Returns:
        Integer array of m indices

    Raises:
        ConfigurationError: If all weights are zero, a weight is invalid or
            the CDF does not match the weights
    """
    if cdf is None:
        cdf = build_cdf(validate_weights(weights, stage="exact sampler"))
    elif len(cdf) != len(weights):
        raise ConfigurationError(
            f"exact sampler: CDF has {len(cdf)} entries but there are {len(weights)} weights"
        )
    return weighted_sample_indices(cdf, m, rng)


class ExactSampler(RangeSampler):
    """Weighted sampling with replacement over the full population."""

    needs_cdf = True

    def sample(self, m: int, weights: np.ndarray, cdf: Optional[np.ndarray] = None) -> np.ndarray:
        if cdf is None:
            logger.debug(f"No CDF supplied; building one over {len(weights):,} weights")
        return exact_weighted_sample(m, weights, self.rng, cdf)
