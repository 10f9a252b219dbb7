import numpy as np
import pytest

from double_boundary.black_scholes import european_price
from double_boundary.config import SolverConfig
from double_boundary.fixed_point import solve_single_boundary
from double_boundary.market import MarketParameters
from double_boundary.premium import PremiumIntegrator, early_exercise_premium
from double_boundary.spectral import BoundaryFunction, node_times

BENCHMARK_PUT = MarketParameters(36.0, 40.0, 1.0, 0.06, 0.02, 0.2)
DOUBLE_PUT = MarketParameters(100.0, 100.0, 5.0, -0.01, -0.02, 0.05)


def _flat(value, tau_max, limit):
    taus = node_times(6, tau_max)
    return BoundaryFunction.from_boundary_values(np.full(len(taus), value), tau_max, limit, sign=1.0)


def test_zero_width_region_has_no_premium() -> None:
    boundary = _flat(70.0, 5.0, 50.0)
    value, used_fallback = PremiumIntegrator(DOUBLE_PUT).premium(100.0, boundary, boundary)
    assert value == 0.0
    assert not used_fallback


def test_double_boundary_premium_is_positive() -> None:
    upper = _flat(85.0, 5.0, 50.0)
    lower = _flat(60.0, 5.0, 50.0)
    value, _ = PremiumIntegrator(DOUBLE_PUT).premium(100.0, upper, lower)
    assert value > 0.0


def test_single_boundary_premium() -> None:
    boundary = solve_single_boundary(BENCHMARK_PUT, SolverConfig.fast()).boundary
    value, used_fallback = early_exercise_premium(BENCHMARK_PUT, boundary)
    assert not used_fallback
    euro = european_price(36.0, 40.0, 1.0, 0.06, 0.02, 0.2)
    # the benchmark American put is worth about 4.6874
    assert value > 0.0
    assert euro + value == pytest.approx(4.687425, abs=1e-3)


def test_integrand_vanishes_without_exercise_region() -> None:
    integrator = PremiumIntegrator(DOUBLE_PUT)
    boundary = _flat(70.0, 5.0, 50.0)
    assert integrator.integrand(0.0, 100.0, boundary, boundary) == 0.0
    assert integrator.integrand(2.5, 100.0, boundary, boundary) == 0.0
