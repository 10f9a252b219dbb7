import math

import numpy as np
import pytest

from double_boundary.errors import QuadratureError
from double_boundary.quadrature import (
    AdaptiveGaussLobatto,
    GaussLegendreRule,
    GKRule,
    integrate,
    integrate_with_fallback,
    simpson_integrate,
    trapezoid_weights,
)


@pytest.mark.parametrize("rule", list(GKRule))
def test_fixed_rule_is_exact_for_polynomials(rule) -> None:
    gl = GaussLegendreRule(rule)
    assert len(gl.nodes) == rule.value
    assert gl.integrate(lambda x: x**5, 0.0, 2.0) == pytest.approx(64.0 / 6.0, rel=1e-13)
    assert gl.integrate(lambda x: x**5, 0.0, 2.0, vectorized=True) == pytest.approx(64.0 / 6.0, rel=1e-13)


def test_fixed_rule_options() -> None:
    assert len(GaussLegendreRule(points=7).nodes) == 7
    assert len(GaussLegendreRule(31).nodes) == 31
    custom = GaussLegendreRule(nodes=[0.0], weights=[2.0])
    assert custom.integrate(lambda x: 3.0, -1.0, 1.0) == pytest.approx(6.0)
    assert custom.integrate(lambda x: 3.0, 1.0, 1.0) == 0.0
    with pytest.raises(ValueError):
        GaussLegendreRule(nodes=[0.0])
    with pytest.raises(ValueError):
        GaussLegendreRule(nodes=[0.0, 0.5], weights=[2.0])


def test_adaptive_lobatto() -> None:
    lobatto = AdaptiveGaussLobatto(rel_tol=1e-12)
    assert lobatto.integrate(math.sin, 0.0, math.pi) == pytest.approx(2.0, abs=1e-11)
    assert lobatto.integrate(math.sqrt, 0.0, 1.0) == pytest.approx(2.0 / 3.0, abs=1e-9)
    assert lobatto.integrate(math.sin, math.pi, 0.0) == pytest.approx(-2.0, abs=1e-11)
    assert lobatto.evaluations > 0


def test_adaptive_lobatto_raises_on_budget() -> None:
    lobatto = AdaptiveGaussLobatto(rel_tol=1e-12, max_evaluations=20)
    with pytest.raises(QuadratureError) as excinfo:
        lobatto.integrate(lambda x: math.sin(50.0 * x), 0.0, 10.0)
    assert excinfo.value.evaluations >= 20


def test_fallback_to_simpson() -> None:
    value, used_fallback = integrate_with_fallback(
        lambda x: math.sin(50.0 * x), 0.0, 10.0, tolerance=1e-12, max_evaluations=20
    )
    assert used_fallback
    assert value == pytest.approx((1.0 - math.cos(500.0)) / 50.0, abs=1e-3)


def test_no_fallback_for_smooth_integrand() -> None:
    value, used_fallback = integrate_with_fallback(math.exp, 0.0, 1.0)
    assert not used_fallback
    assert value == pytest.approx(math.e - 1.0, rel=1e-10)
    assert integrate(math.exp, 0.0, 1.0) == pytest.approx(math.e - 1.0, rel=1e-10)
    assert integrate_with_fallback(math.exp, 1.0, 1.0) == (0.0, False)


def test_simpson() -> None:
    assert simpson_integrate(lambda x: x * x, 0.0, 3.0, points=101) == pytest.approx(9.0, rel=1e-12)


def test_trapezoid_weights() -> None:
    x = np.array([0.0, 1.0, 3.0])
    assert np.allclose(trapezoid_weights(x), [0.5, 1.5, 1.0])
    grid = np.linspace(0.0, 2.0, 11)
    assert np.sum(trapezoid_weights(grid) * (3.0 * grid + 1.0)) == pytest.approx(8.0)
    assert np.all(trapezoid_weights(np.array([1.0])) == 0.0)
