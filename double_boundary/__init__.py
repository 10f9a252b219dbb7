"""American options with one or two early-exercise boundaries."""

from .config import DEFAULT_CONFIG, SolverConfig
from .engine import DoubleBoundaryEngine, Greeks, PricingResult, price
from .errors import Diagnostic, InvalidParameters, PricingError, QuadratureError, UnsupportedRegime
from .kim_refiner import KimIntegralRefiner, KimRefinement, refine_boundaries
from .market import MarketParameters
from .qd_plus import BoundarySeeds, QDPlusApproximator, approximate_boundaries
from .regime import ExerciseRegime, classify_regime, critical_volatility
from .spectral import BoundaryFunction, BoundarySample

__all__ = [
    "BoundaryFunction",
    "BoundarySample",
    "BoundarySeeds",
    "DEFAULT_CONFIG",
    "Diagnostic",
    "DoubleBoundaryEngine",
    "ExerciseRegime",
    "Greeks",
    "InvalidParameters",
    "KimIntegralRefiner",
    "KimRefinement",
    "MarketParameters",
    "PricingError",
    "PricingResult",
    "QDPlusApproximator",
    "QuadratureError",
    "SolverConfig",
    "UnsupportedRegime",
    "approximate_boundaries",
    "classify_regime",
    "critical_volatility",
    "price",
    "refine_boundaries",
]
