"""Weighted samplers over the build relation."""
from .base import RangeSampler
from .exact import ExactSampler, exact_weighted_sample
from .heuristic import HeuristicSampler, hws_heuristic_simple, hws_heuristic_complete
from .reservoir import (
    ReservoirSampler,
    weighted_reservoir_sample,
    weighted_reservoir_sample_exp,
    reservoir_items,
)

__all__ = [
    'RangeSampler',
    'ExactSampler', 'exact_weighted_sample',
    'HeuristicSampler', 'hws_heuristic_simple', 'hws_heuristic_complete',
    'ReservoirSampler', 'weighted_reservoir_sample', 'weighted_reservoir_sample_exp', 'reservoir_items',
]
