"""
Exceptions and soft-failure flags for the double-boundary pricer.

Hard failures (bad inputs, regimes that cannot be priced) are raised.
Numerical trouble that has a documented local recovery is never raised:
the recovering component records a :class:`Diagnostic` flag instead and the
flags travel with the result.
"""

from enum import Enum


class PricingError(Exception):
    """Base error for the pricer."""


class InvalidParameters(PricingError, ValueError):
    """
    Market inputs or solver settings outside their admissible range.

    Raised immediately; inputs are never clamped silently.
    """


class UnsupportedRegime(PricingError):
    """
    Classification produced a regime the engine cannot price.

    Raised for the degenerate regime so that pricing stops instead of
    returning a meaningless number.
    """

    def __init__(self, message="regime is not supported", regime=None):
        super().__init__(message)
        self.regime = regime


class QuadratureError(PricingError):
    """
    Adaptive quadrature gave up (evaluation budget or interval resolution).

    Internal: the quadrature provider catches it and falls back to a
    composite Simpson rule.
    """

    def __init__(self, message="adaptive quadrature failed", evaluations=0):
        super().__init__(message)
        self.evaluations = evaluations


class Diagnostic(str, Enum):
    NUMERICAL_SINGULARITY = "numerical_singularity"
    SPURIOUS_ROOT = "spurious_root"
    CONVERGENCE_FAILURE = "convergence_failure"
    BOUNDARY_ORDERING_VIOLATION = "boundary_ordering_violation"
    QUADRATURE_FALLBACK = "quadrature_fallback"
    NEAR_EXPIRY = "near_expiry"
