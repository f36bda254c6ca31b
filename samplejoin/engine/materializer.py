"""
Sample-Join Materializer.

Turns sampled build tuples (A, B) into join tuples (A, B, C) by drawing one
probe partner from the stratum of A. With stratum weights the partner is
drawn proportionally to h2 via the stratum's CDF; without them the draw is
uniform, which is the same thing when h2 is constant.
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from samplejoin.core.errors import PreconditionViolation
from samplejoin.core.primitives import weighted_sample_indices
from samplejoin.schema.strata import StratifiedRelation, StratumWeights


logger = logging.getLogger(__name__)

BuildTuple = Tuple[Any, Any]
JoinTuple = Tuple[Any, Any, Any]


def sample_partner(
    stratum: Sequence[Tuple[Any, Any]],
    rng: np.random.Generator,
    cdf: Optional[np.ndarray] = None
) -> Tuple[Any, Any]:
    """
    Draw one probe tuple from a stratum.

    Args:
        stratum: Probe tuples (A, C) sharing one key
        rng: Random generator
        cdf: Optional CDF of h2 over the stratum; uniform draw if None

    Returns:
        The drawn (A, C) tuple
    """
    if cdf is None:
        return stratum[int(rng.integers(len(stratum)))]
    return stratum[int(weighted_sample_indices(cdf, 1, rng)[0])]


def minijoin(
    build_tuples: Iterable[BuildTuple],
    strata: StratifiedRelation,
    rng: np.random.Generator,
    stratum_weights: Optional[StratumWeights] = None
) -> List[JoinTuple]:
    """
    Materialize one join tuple per sampled build tuple.

    Args:
        build_tuples: Sampled (A, B) tuples, in draw order
        strata: Stratified probe relation
        rng: Random generator
        stratum_weights: Per-stratum CDFs for h2-proportional partner draws

    Returns:
        (A, B, C) tuples in the same order as ``build_tuples``

    Raises:
        PreconditionViolation: If a build key has no stratum. Sampling
            weights are zero for such keys, so this means the weight vector
            does not belong to these strata.
    """
    sample: List[JoinTuple] = []
    for a, b in build_tuples:
        stratum = strata.get(a)
        if stratum is None:
            raise PreconditionViolation(
                f"materializer: sampled build key {a!r} has no matching probe stratum",
                stage="materialize",
            )
        cdf = stratum_weights.cdf(a) if stratum_weights is not None else None
        _, c = sample_partner(stratum, rng, cdf)
        sample.append((a, b, c))
    return sample
