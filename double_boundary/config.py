"""
Solver configuration.

Every tolerance, node count and iteration cap used by the pricer lives on a
:class:`SolverConfig` instance that callers pass in explicitly. Three
profiles are provided: ``fast``, ``standard`` and ``high_precision``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .errors import InvalidParameters
from .quadrature import GKRule

# Admissible market inputs.
MIN_MATURITY = 1e-6
MAX_MATURITY = 30.0
MIN_VOLATILITY = 0.001
MAX_VOLATILITY = 5.0
MIN_RATE = -0.5
MAX_RATE = 0.5

MIN_SPECTRAL_NODES = 3
MAX_SPECTRAL_NODES = 64

NUMERICAL_EPSILON = 1e-10


@dataclass(frozen=True)
class SolverConfig:
    """
    Numerical settings for one pricing call.

    Parameters
    ----------
    spectral_nodes : int
        Chebyshev-Gauss-Lobatto nodes used for boundary functions and for
        the single-boundary collocation.
    tolerance : float
        Stopping threshold of the single-boundary fixed point, measured as
        ``max|dB| / K``.
    max_iterations : int
        Iteration cap of the single-boundary fixed point.
    gk_rule : GKRule
        Fixed Gauss-Kronrod rule for the boundary integrals.
    kim_grid_points : int
        Calendar-time grid size of the double-boundary refiner.
    kim_integration_points : int
        Trapezoid intervals inside the refiner's integrals (at least 50).
    kim_tolerance, kim_max_iterations : float, int
        Stopping rule of the FP-B' sweeps: the largest absolute change of a
        boundary point between two sweeps, in units of the underlying (not
        scaled by the strike).
    kim_scan_points : int
        Candidate values scanned per point to bracket each boundary.
    crossing_resolution : float
        Bisection resolution of the crossing time (years).
    quadrature_tolerance : float
        Relative tolerance of the adaptive Gauss-Lobatto premium integral.
    quadrature_max_evaluations : int
        Evaluation budget before the Simpson fallback kicks in.
    simpson_points : int
        Points of the composite Simpson fallback (odd).
    near_expiry_threshold : float
        Maturities below this use the near-expiry seeds.
    spot_bump, vol_bump, rate_bump, time_bump : float
        Bump sizes of the finite-difference Greeks; ``spot_bump`` is
        relative, the others absolute.
    """

    spectral_nodes: int = 12
    tolerance: float = 1e-10
    max_iterations: int = 50
    gk_rule: GKRule = GKRule.BALANCED
    kim_grid_points: int = 50
    kim_integration_points: int = 50
    kim_tolerance: float = 1e-6
    kim_max_iterations: int = 100
    kim_scan_points: int = 64
    crossing_resolution: float = 1e-2
    quadrature_tolerance: float = 1e-10
    quadrature_max_evaluations: int = 20000
    simpson_points: int = 2001
    near_expiry_threshold: float = 3.0 / 252.0
    spot_bump: float = 0.01
    vol_bump: float = 0.01
    rate_bump: float = 1e-4
    time_bump: float = 1.0 / 365.0

    def __post_init__(self) -> None:
        if not MIN_SPECTRAL_NODES <= int(self.spectral_nodes) <= MAX_SPECTRAL_NODES:
            raise InvalidParameters(
                f"spectral_nodes must be in [{MIN_SPECTRAL_NODES}, {MAX_SPECTRAL_NODES}], got {self.spectral_nodes}"
            )
        for name in ("tolerance", "kim_tolerance", "quadrature_tolerance", "crossing_resolution",
                     "near_expiry_threshold", "spot_bump", "vol_bump",
                     "rate_bump", "time_bump"):
            value = getattr(self, name)
            if not value > 0.0:
                raise InvalidParameters(f"{name} must be positive, got {value}")
        for name in ("max_iterations", "kim_max_iterations", "quadrature_max_evaluations"):
            if int(getattr(self, name)) < 1:
                raise InvalidParameters(f"{name} must be >= 1")
        if int(self.kim_grid_points) < 3:
            raise InvalidParameters("kim_grid_points must be >= 3")
        if int(self.kim_integration_points) < 50:
            raise InvalidParameters("kim_integration_points must be >= 50")
        if int(self.kim_scan_points) < 3:
            raise InvalidParameters("kim_scan_points must be >= 3")
        if int(self.simpson_points) < 3 or int(self.simpson_points) % 2 == 0:
            raise InvalidParameters("simpson_points must be an odd integer >= 3")
        if not isinstance(self.gk_rule, GKRule):
            object.__setattr__(self, "gk_rule", GKRule(self.gk_rule))

    @classmethod
    def fast(cls) -> "SolverConfig":
        return cls(
            spectral_nodes=8,
            tolerance=1e-8,
            max_iterations=25,
            gk_rule=GKRule.FAST,
            kim_grid_points=30,
            quadrature_tolerance=1e-8,
        )

    @classmethod
    def standard(cls) -> "SolverConfig":
        return cls()

    @classmethod
    def high_precision(cls) -> "SolverConfig":
        return cls(
            spectral_nodes=24,
            tolerance=1e-12,
            max_iterations=100,
            gk_rule=GKRule.ACCURATE,
            kim_grid_points=80,
            kim_integration_points=100,
            quadrature_tolerance=1e-12,
            quadrature_max_evaluations=50000,
        )

    def with_changes(self, **changes) -> "SolverConfig":
        return replace(self, **changes)


DEFAULT_CONFIG = SolverConfig.standard()
