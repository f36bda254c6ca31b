"""
Weighted Reservoir Sampling.

Single-pass, without-replacement weighted sampling of m items from a stream
of items with positive weights (Efraimidis & Spirakis, "Weighted random
sampling with a reservoir", 2006).

Algorithm A-Res assigns every item the key u^(1/w), u ~ U(0, 1), and keeps
the m items with the largest keys in a min-heap.

Algorithm A-ExpJ produces the same distribution but draws far fewer random
numbers: with T the smallest key in the reservoir, it draws r ~ U(0, 1) and
skips items until their accumulated weight reaches X = log(r) / log(T). The
item where the sum crosses X replaces the minimum, with a key drawn from the
admissible range (T^w, 1) only.

Both return the reservoir as (key, item) pairs in ascending key order.
Callers that only need the items use ``reservoir_items``.
"""

import heapq
import math
import logging
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np

from samplejoin.core.errors import ConfigurationError
from samplejoin.sampling.base import RangeSampler


logger = logging.getLogger(__name__)

KeyedItem = Tuple[float, Any]


def _check_weight(weight: float, position: int) -> float:
    weight = float(weight)
    if not (weight > 0 and math.isfinite(weight)):
        raise ConfigurationError(
            f"reservoir sampler: item {position} has weight {weight}; weights must be positive and finite"
        )
    return weight


def _finish(heap: List[Tuple[float, int, Any]], m: int, seen: int) -> List[KeyedItem]:
    if len(heap) < m:
        raise ConfigurationError(
            f"reservoir sampler: requested {m} items but the stream held only {seen}"
        )
    return [(key, item) for key, _, item in sorted(heap, key=lambda entry: (entry[0], entry[1]))]


def weighted_reservoir_sample(
    items: Iterable[Any],
    weights: Iterable[float],
    m: int,
    rng: np.random.Generator
) -> List[KeyedItem]:
    """
    Algorithm A-Res: one key per item, keep the m largest.

    Args:
        items: Item stream
        weights: Positive weight per item (same length as ``items``)
        m: Reservoir size
        rng: Random generator

    Returns:
        m (key, item) pairs, ascending by key

    Raises:
        ConfigurationError: If a weight is not positive or the stream holds fewer than m items
    """
    if m < 0:
        raise ConfigurationError(f"reservoir size must be >= 0, got {m}")

    # Entries are (key, position, item); position breaks ties between equal keys
    heap: List[Tuple[float, int, Any]] = []
    seen = 0
    for position, (item, weight) in enumerate(zip(items, weights)):
        seen += 1
        weight = _check_weight(weight, position)
        key = rng.random() ** (1.0 / weight)
        if len(heap) < m:
            heapq.heappush(heap, (key, position, item))
        elif m > 0 and key > heap[0][0]:
            heapq.heapreplace(heap, (key, position, item))

    return _finish(heap, m, seen)


def weighted_reservoir_sample_exp(
    items: Iterable[Any],
    weights: Iterable[float],
    m: int,
    rng: np.random.Generator
) -> List[KeyedItem]:
    """
    Algorithm A-ExpJ: reservoir sampling with exponential jumps.

    Same output distribution as weighted_reservoir_sample. After the first m
    items, only the items that actually enter the reservoir cost random draws.

    Args:
        items: Item stream
        weights: Positive weight per item (same length as ``items``)
        m: Reservoir size
        rng: Random generator

    Returns:
        m (key, item) pairs, ascending by key
    """
    if m < 0:
        raise ConfigurationError(f"reservoir size must be >= 0, got {m}")

    stream = enumerate(zip(items, weights))
    heap: List[Tuple[float, int, Any]] = []
    seen = 0

    if m > 0:
        for position, (item, weight) in stream:
            seen += 1
            weight = _check_weight(weight, position)
            heapq.heappush(heap, (rng.random() ** (1.0 / weight), position, item))
            if len(heap) == m:
                break

    if len(heap) < m:
        return _finish(heap, m, seen)

    if m == 0:
        # Nothing to replace; still validate and count the stream
        for position, (_, weight) in stream:
            seen += 1
            _check_weight(weight, position)
        return []

    jumps = 0
    while True:
        threshold = heap[0][0]
        if threshold >= 1.0:
            # No key can exceed the current minimum
            break

        r = 1.0 - rng.random()  # (0, 1]
        if threshold <= 0.0:
            jump = 0.0
        else:
            jump = math.log(r) / math.log(threshold)

        landed: Optional[Tuple[int, Any, float]] = None
        for position, (item, weight) in stream:
            seen += 1
            weight = _check_weight(weight, position)
            jump -= weight
            if jump <= 0:
                landed = (position, item, weight)
                break

        if landed is None:
            # Jump target lies beyond the end of the stream
            break

        position, item, weight = landed
        t_w = threshold ** weight
        r2 = rng.uniform(t_w, 1.0)
        key = r2 ** (1.0 / weight)
        heapq.heapreplace(heap, (key, position, item))
        jumps += 1

    logger.debug(f"A-ExpJ: {seen:,} items streamed, {jumps:,} replacements")
    return _finish(heap, m, seen)


def reservoir_items(sample: List[KeyedItem]) -> List[Any]:
    """Drop the keys of a reservoir sample, keeping ascending key order."""
    return [item for _, item in sample]


class ReservoirSampler(RangeSampler):
    """
    Without-replacement weighted sampler over a weight vector.

    Streams the indices of positive-weight entries through A-ExpJ (default)
    or A-Res. Zero-weight entries are skipped, so they are never drawn.
    """

    needs_cdf = False

    def __init__(self, exponential_jumps: bool = True, rng: Optional[np.random.Generator] = None):
        super().__init__(rng)
        self.exponential_jumps = exponential_jumps

    def sample(self, m: int, weights: np.ndarray, cdf: Optional[np.ndarray] = None) -> np.ndarray:
        weights = np.asarray(weights, dtype=np.float64)
        positive = np.flatnonzero(weights > 0)
        if m > len(positive):
            raise ConfigurationError(
                f"reservoir sampler: cannot draw {m} distinct items from "
                f"{len(positive):,} items with positive weight"
            )
        algorithm = weighted_reservoir_sample_exp if self.exponential_jumps else weighted_reservoir_sample
        sample = algorithm(positive.tolist(), weights[positive].tolist(), m, self.rng)
        return np.asarray(reservoir_items(sample), dtype=np.int64)
