"""
Named sample-join methods.

Every method is the generic estimator with a particular choice of
weighting functions and sampler:

    method   h1             h2    sampler
    ------   ------------   ---   ---------
    ssj      1              1     exact
    hssj     1              1     heuristic
    ws       1              C     exact
    hws      1              C     heuristic
    us       1/|R2(A)|      1     exact

With h2 = C the output distribution is proportional to C, which suits a
SUM(C) aggregate. US-Join makes the build-side sampling weights uniform.

Filter modes:
    full      no filter, W normalization
    filtered  configured filters, W' normalization (filter-aware)
    naive     configured filters, W normalization (baseline, may not converge)
"""

import struct
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import numpy as np

from samplejoin.core.config import Config
from samplejoin.core.errors import ConfigurationError
from samplejoin.core.memory_monitor import MemoryMonitor
from samplejoin.core.primitives import get_rng
from samplejoin.engine.estimator import SampleJoinEstimator, no_filter, sum_c
from samplejoin.sampling.base import RangeSampler
from samplejoin.sampling.exact import ExactSampler
from samplejoin.sampling.heuristic import HeuristicSampler
from samplejoin.sampling.reservoir import ReservoirSampler
from samplejoin.schema.relation import Relation
from samplejoin.schema.strata import StratifiedRelation


logger = logging.getLogger(__name__)


# ============================================================================
# Weighting functions
# ============================================================================

def uniform_h1(a: Any, b: Any) -> float:
    return 1.0


def uniform_h2(c: Any) -> float:
    return 1.0


def linear_h2(c: Any) -> float:
    """Output weight proportional to the probe payload."""
    return float(c)


def make_us_h1(strata: StratifiedRelation) -> Callable[[Any, Any], float]:
    """
    h1 = 1 / |stratum(A)|, which cancels the stratum weight under uniform h2
    and makes every joining build tuple equally likely.
    """
    def us_h1(a: Any, b: Any) -> float:
        size = strata.stratum_size(a)
        return 1.0 / size if size else 0.0
    return us_h1


# ============================================================================
# Filters and aggregates
# ============================================================================

def parity_filter(x: Any, y: Any) -> bool:
    """
    Select tuples whose payload has an odd least significant mantissa bit.

    On continuous data this bit is practically independent of the value,
    so the filter behaves like a deterministic coin flip with selectivity
    close to 50%.
    """
    bits = struct.unpack('<q', struct.pack('<d', float(y)))[0]
    return bool(bits & 1)


def sum_b(a: Any, b: Any, c: Any) -> float:
    return float(b)


def count_rows(a: Any, b: Any, c: Any) -> float:
    return 1.0


FILTERS: Dict[str, Callable[[Any, Any], bool]] = {
    'none': no_filter,
    'parity': parity_filter,
}

AGGREGATES: Dict[str, Callable[[Any, Any, Any], float]] = {
    'sum_c': sum_c,
    'sum_b': sum_b,
    'count': count_rows,
}


# ============================================================================
# Method table
# ============================================================================

@dataclass(frozen=True)
class SampleJoinMethod:
    """Weighting and sampler choice of a named sample-join algorithm."""
    name: str
    label: str
    h1: str  # 'uniform' or 'us'
    h2: str  # 'uniform' or 'linear'
    heuristic: bool

    def make_h1(self, strata: StratifiedRelation) -> Callable[[Any, Any], float]:
        return make_us_h1(strata) if self.h1 == 'us' else uniform_h1

    def make_h2(self) -> Callable[[Any], float]:
        return linear_h2 if self.h2 == 'linear' else uniform_h2


METHODS: Dict[str, SampleJoinMethod] = {
    'ssj': SampleJoinMethod('ssj', 'SSJ', 'uniform', 'uniform', heuristic=False),
    'hssj': SampleJoinMethod('hssj', 'HSSJ', 'uniform', 'uniform', heuristic=True),
    'ws': SampleJoinMethod('ws', 'WS-Join', 'uniform', 'linear', heuristic=False),
    'hws': SampleJoinMethod('hws', 'HWS-Join', 'uniform', 'linear', heuristic=True),
    'us': SampleJoinMethod('us', 'US-Join', 'us', 'uniform', heuristic=False),
}


def get_method(name: str) -> SampleJoinMethod:
    if name not in METHODS:
        raise ConfigurationError(f"Unknown sample-join method: {name} (known: {sorted(METHODS)})")
    return METHODS[name]


def make_sampler(config: Config, method: SampleJoinMethod, rng: np.random.Generator) -> RangeSampler:
    """Range sampler for a method, honoring an explicit sampler kind."""
    kind = config.sampler.kind
    if kind == 'auto':
        kind = 'heuristic' if method.heuristic else 'exact'

    if kind == 'heuristic':
        return HeuristicSampler(
            sigma=config.sampler.sigma,
            k_factor=config.sampler.k_factor,
            heuristic=config.sampler.heuristic,
            rng=rng,
        )
    if kind == 'reservoir':
        return ReservoirSampler(exponential_jumps=config.sampler.use_exponential_jumps, rng=rng)
    return ExactSampler(rng=rng)


def build_estimator(
    config: Config,
    r1: Relation,
    r2: Relation,
    rng: Optional[np.random.Generator] = None,
    strata: Optional[StratifiedRelation] = None,
    memory_monitor: Optional[MemoryMonitor] = None
) -> SampleJoinEstimator:
    """
    Assemble an estimator for the configured method and filter mode.

    In 'full' filter mode the configured filters are ignored.
    """
    est = config.estimator
    method = get_method(est.method)
    if rng is None:
        rng = get_rng(est.seed)
    if strata is None:
        strata = StratifiedRelation(r2)

    if est.filter_mode == 'full':
        r1_filter, r2_filter = no_filter, no_filter
    else:
        r1_filter, r2_filter = FILTERS[est.r1_filter], FILTERS[est.r2_filter]

    sampler = make_sampler(config, method, rng)
    logger.info(
        f"Building {method.label} estimator ({type(sampler).__name__}, "
        f"filter mode '{est.filter_mode}', m={est.sample_size})"
    )

    return SampleJoinEstimator(
        r1, r2,
        h1=method.make_h1(strata),
        h2=method.make_h2(),
        sampler=sampler,
        aggregate=AGGREGATES[est.aggregate],
        r1_filter=r1_filter,
        r2_filter=r2_filter,
        rng=rng,
        oversampling_factor=est.oversampling_factor,
        oversampling_constant=est.oversampling_constant,
        strata=strata,
        memory_monitor=memory_monitor,
    )


def ensure_feasible_sampler(estimator: SampleJoinEstimator, m: int, filter_selectivity: float) -> bool:
    """
    Replace a heuristic sampler whose pilot would exceed the population.

    Requires a valid normalization cache. The heuristic sampler refuses to
    run when k > n1; callers that still want an estimate switch to the exact
    sampler, as this helper does (with a warning).

    Returns:
        True if the sampler was replaced
    """
    sampler = estimator.sampler
    if not isinstance(sampler, HeuristicSampler):
        return False
    weights = estimator.cache.sample_weights
    if weights is None:
        raise ConfigurationError("normalization must be computed before checking sampler feasibility")

    draw_size = estimator.draw_size(m, filter_selectivity)
    k = sampler.pilot_size(weights, draw_size)
    if k <= len(weights):
        logger.info(f"HWS pilot size k={k:,} fits the population of {len(weights):,}")
        return False

    logger.warning(
        f"HWS pilot size k={k:,} exceeds population {len(weights):,}; "
        f"falling back to the exact sampler"
    )
    estimator.reconfigure(sampler=ExactSampler(rng=sampler.rng))
    return True
