"""
Error taxonomy for sample-join estimation.

Three kinds of failure are distinguished:
- ConfigurationError: the caller passed parameters that can never work
  (zero-weight populations, pilot sizes above the population, m > n, ...)
- PreconditionViolation: oversampling did not yield enough filter-passing
  tuples for the requested sample size
- NumericDegenerate: a normalization constant is zero, so the corrected
  estimate is undefined (distinct from a valid zero estimate)
"""


class SampleJoinError(Exception):
    """Base class for all sample-join errors."""


class ConfigurationError(SampleJoinError, ValueError):
    """Invalid configuration detected before or during sampling."""


class PreconditionViolation(SampleJoinError, RuntimeError):
    """A precondition of the estimator did not hold for the drawn sample."""

    def __init__(self, message: str, stage: str = "", required: int = 0, available: int = 0):
        super().__init__(message)
        self.stage = stage
        self.required = required
        self.available = available


class NumericDegenerate(SampleJoinError, ArithmeticError):
    """Normalization is zero and the estimate cannot be rescaled."""
