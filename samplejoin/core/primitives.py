"""
Sampling Primitives.

Random source, cumulative distributions and index sampling shared by all
samplers. Every function takes an explicit ``rng`` so that tests can swap in
a seeded generator.
"""

import logging
from typing import Optional, Sequence, Union

import numpy as np

from samplejoin.core.errors import ConfigurationError


logger = logging.getLogger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray]


# ============================================================================
# Random Number Generation
# ============================================================================

def get_rng(seed: Optional[int] = None) -> np.random.Generator:
    """
    Get a new random generator.

    Args:
        seed: Optional seed for reproducible draws. None draws fresh entropy.

    Returns:
        numpy Generator producing uniform(0, 1) draws via ``random()``
    """
    return np.random.default_rng(seed)


# ============================================================================
# Cumulative Distributions
# ============================================================================

def build_cdf(weights: ArrayLike) -> np.ndarray:
    """
    Turn a weight sequence into its running sum.

    ``cdf[i] = w[0] + ... + w[i]``. Zero weights repeat the previous value;
    ``weighted_sample_indices`` never resolves a draw onto such an entry.

    Args:
        weights: Non-negative weights

    Returns:
        Float array of the same length as ``weights``
    """
    return np.cumsum(np.asarray(weights, dtype=np.float64))


def validate_weights(weights: ArrayLike, stage: str = "sampler") -> np.ndarray:
    """Check that weights are finite and non-negative, returning them as an array."""
    w = np.asarray(weights, dtype=np.float64)
    if w.size and not np.all(np.isfinite(w)):
        raise ConfigurationError(f"{stage}: weights must be finite")
    if w.size and np.any(w < 0):
        raise ConfigurationError(f"{stage}: weights must be non-negative (min={w.min()})")
    return w


# ============================================================================
# Index Sampling
# ============================================================================

def weighted_sample_indices(
    cdf: np.ndarray,
    m: int,
    rng: np.random.Generator
) -> np.ndarray:
    """
    Draw m indices with replacement, proportional to the weights behind ``cdf``.

    Each draw u is uniform in [0, total) and resolves to the smallest index
    whose cumulative value is strictly greater than u, so zero-weight entries
    are never returned.

    Args:
        cdf: Cumulative weights as produced by build_cdf
        m: Number of draws (>= 0)
        rng: Random generator

    Returns:
        Integer array of m indices in [0, len(cdf))

    Raises:
        ConfigurationError: If m is negative or the total weight is zero
    """
    if m < 0:
        raise ConfigurationError(f"sample size must be >= 0, got {m}")
    k = len(cdf)
    total = float(cdf[-1]) if k else 0.0
    if not total > 0:
        raise ConfigurationError(
            f"cannot sample from a population of {k} items with total weight {total}"
        )
    if m == 0:
        return np.empty(0, dtype=np.int64)

    draws = rng.random(m) * total
    indices = np.searchsorted(cdf, draws, side='right')

    # u * total may round up to total itself
    overflow = indices >= k
    if np.any(overflow):
        indices[overflow] = np.searchsorted(cdf, total, side='left')
    return indices.astype(np.int64)


def uniform_indices(
    n: int,
    m: int,
    rng: np.random.Generator,
    replace: bool = True
) -> np.ndarray:
    """
    Draw m indices uniformly from [0, n).

    Args:
        n: Population size
        m: Number of indices
        rng: Random generator
        replace: Sample with replacement (default) or without

    Returns:
        Integer array of m indices
    """
    if m < 0:
        raise ConfigurationError(f"sample size must be >= 0, got {m}")
    if m == 0:
        return np.empty(0, dtype=np.int64)
    if n <= 0:
        raise ConfigurationError(f"cannot draw {m} indices from an empty population")
    if not replace and m > n:
        raise ConfigurationError(
            f"cannot draw {m} distinct indices from a population of {n}"
        )
    if replace:
        return rng.integers(0, n, size=m, dtype=np.int64)
    return rng.choice(n, size=m, replace=False).astype(np.int64)
