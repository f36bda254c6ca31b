"""Configuration, errors and sampling primitives."""

from .config import Config, EstimatorConfig, SamplerConfig, DataConfig
from .errors import SampleJoinError, ConfigurationError, PreconditionViolation, NumericDegenerate
from .primitives import get_rng, build_cdf, weighted_sample_indices, uniform_indices

__all__ = [
    # Config
    "Config", "EstimatorConfig", "SamplerConfig", "DataConfig",
    # Errors
    "SampleJoinError", "ConfigurationError", "PreconditionViolation", "NumericDegenerate",
    # Primitives
    "get_rng", "build_cdf", "weighted_sample_indices", "uniform_indices",
]
