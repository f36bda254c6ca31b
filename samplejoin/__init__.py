"""
Sample-Join Estimator
=====================
Approximate aggregates over the equi-join of a very large build relation
and a small probe relation, without materializing the join.

Join tuples are drawn by weighted sampling (exact CDF sampling, a two-stage
heuristic sampler, or weighted reservoir sampling) and combined into a
Horvitz-Thompson style estimate, optionally corrected for selection filters.

Supports:
- Methods: SSJ, HSSJ, WS-Join, HWS-Join, US-Join
- Filter modes: full, filtered (filter-aware normalization), naive
- Memoized normalization and CDF over the build relation
"""

__version__ = "1.0.0"

from .core.config import Config, EstimatorConfig, SamplerConfig, DataConfig
from .core.errors import SampleJoinError, ConfigurationError, PreconditionViolation, NumericDegenerate
from .engine.estimator import SampleJoinEstimator, EstimateResult
from .schema.relation import Relation

__all__ = [
    # Config
    "Config", "EstimatorConfig", "SamplerConfig", "DataConfig",
    # Errors
    "SampleJoinError", "ConfigurationError", "PreconditionViolation", "NumericDegenerate",
    # Estimation
    "SampleJoinEstimator", "EstimateResult", "Relation",
]
