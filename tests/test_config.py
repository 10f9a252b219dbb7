import dataclasses
import math

import pytest

from double_boundary.config import DEFAULT_CONFIG, SolverConfig
from double_boundary.errors import InvalidParameters, PricingError
from double_boundary.market import MarketParameters
from double_boundary.quadrature import GKRule


def test_profiles() -> None:
    fast, standard, precise = SolverConfig.fast(), SolverConfig.standard(), SolverConfig.high_precision()
    assert fast.spectral_nodes < standard.spectral_nodes < precise.spectral_nodes
    assert fast.gk_rule is GKRule.FAST
    assert standard.gk_rule is GKRule.BALANCED
    assert precise.gk_rule is GKRule.ACCURATE
    assert precise.tolerance < standard.tolerance < fast.tolerance
    assert DEFAULT_CONFIG == standard


def test_rule_is_coerced_from_its_size() -> None:
    assert SolverConfig(gk_rule=31).gk_rule is GKRule.ACCURATE


def test_with_changes_returns_a_new_config() -> None:
    changed = DEFAULT_CONFIG.with_changes(kim_grid_points=20)
    assert changed.kim_grid_points == 20
    assert DEFAULT_CONFIG.kim_grid_points == 50
    with pytest.raises(dataclasses.FrozenInstanceError):
        DEFAULT_CONFIG.kim_grid_points = 20


@pytest.mark.parametrize("changes", [
    {"spectral_nodes": 2},
    {"spectral_nodes": 65},
    {"tolerance": 0.0},
    {"crossing_resolution": -1.0},
    {"max_iterations": 0},
    {"kim_grid_points": 2},
    {"kim_integration_points": 49},
    {"kim_scan_points": 2},
    {"simpson_points": 100},
])
def test_invalid_settings(changes) -> None:
    with pytest.raises(InvalidParameters):
        SolverConfig(**changes)


def test_market_parameters() -> None:
    params = MarketParameters(36, 40, 1, 0.06, 0.02, 0.2)
    assert isinstance(params.spot, float)
    assert params.option_type == "put"
    assert params.intrinsic() == pytest.approx(4.0)
    assert params.intrinsic(45.0) == 0.0
    assert params.to_put_space() is params
    assert params.symmetry_scale == 1.0


def test_call_maps_to_put_space() -> None:
    call = MarketParameters(110.0, 100.0, 1.0, 0.02, 0.06, 0.2, is_call=True)
    put = call.to_put_space()
    assert not put.is_call
    assert put.spot == pytest.approx(100.0 ** 2 / 110.0)
    assert (put.rate, put.dividend_yield) == (0.06, 0.02)
    assert call.symmetry_scale == pytest.approx(1.1)
    assert call.intrinsic() == pytest.approx(10.0)


@pytest.mark.parametrize("changes", [
    {"spot": 0.0},
    {"strike": -1.0},
    {"maturity": 0.0},
    {"maturity": 1e-6},
    {"maturity": 31.0},
    {"volatility": 0.0005},
    {"volatility": 6.0},
    {"rate": 0.6},
    {"dividend_yield": -0.6},
    {"spot": math.nan},
    {"rate": math.inf},
])
def test_invalid_market_parameters(changes) -> None:
    base = dict(spot=100.0, strike=100.0, maturity=1.0, rate=0.05, dividend_yield=0.0, volatility=0.2)
    base.update(changes)
    with pytest.raises(InvalidParameters) as excinfo:
        MarketParameters(**base)
    assert isinstance(excinfo.value, PricingError)
    assert isinstance(excinfo.value, ValueError)


def test_maturity_range_is_open_at_its_lower_end() -> None:
    base = dict(spot=100.0, strike=100.0, rate=0.05, dividend_yield=0.0, volatility=0.2)
    assert MarketParameters(maturity=2e-6, **base).maturity == 2e-6
    assert MarketParameters(maturity=30.0, **base).maturity == 30.0
    with pytest.raises(InvalidParameters, match=r"\(1e-06, 30.0\]"):
        MarketParameters(maturity=1e-6, **base)
