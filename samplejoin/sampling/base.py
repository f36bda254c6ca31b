"""
Range sampler interface.

A range sampler draws ``m`` indices into a weight vector. The estimator
hands it the sampling-weight vector over the build relation and, when one
is cached, the CDF of that vector.
"""

import abc
from typing import Optional

import numpy as np

from samplejoin.core.primitives import get_rng


class RangeSampler(abc.ABC):
    """Draws indices into a weight vector."""

    #: Whether the sampler consumes a full CDF over the weight vector. The
    #: estimator only memoizes the CDF for samplers that do.
    needs_cdf: bool = False

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else get_rng()

    @abc.abstractmethod
    def sample(self, m: int, weights: np.ndarray, cdf: Optional[np.ndarray] = None) -> np.ndarray:
        """Draw m indices into ``weights``."""
        raise NotImplementedError

    def __call__(self, m: int, weights: np.ndarray, cdf: Optional[np.ndarray] = None) -> np.ndarray:
        return self.sample(m, weights, cdf)
