"""Sample-join estimation engine."""
__all__ = [
    'SampleJoinEstimator',
    'EstimateResult',
    'NormalizationCache',
    'minijoin',
    'exact_join_aggregate',
    'ExactAggregate',
    'build_estimator',
    'METHODS',
]


def __getattr__(name):
    if name in ('SampleJoinEstimator', 'EstimateResult', 'NormalizationCache'):
        from . import estimator
        return getattr(estimator, name)
    elif name == 'minijoin':
        from .materializer import minijoin
        return minijoin
    elif name in ('exact_join_aggregate', 'ExactAggregate'):
        from . import exact
        return getattr(exact, name)
    elif name in ('build_estimator', 'METHODS'):
        from . import methods
        return getattr(methods, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
