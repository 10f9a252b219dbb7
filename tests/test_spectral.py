import math

import numpy as np
import pytest

from double_boundary.spectral import (
    BoundaryFunction,
    BoundarySample,
    ChebyshevInterpolant,
    cgl_nodes,
    node_times,
)


def test_cgl_nodes() -> None:
    x = cgl_nodes(5)
    assert x[0] == pytest.approx(1.0)
    assert x[-1] == pytest.approx(-1.0)
    assert x[2] == pytest.approx(0.0, abs=1e-15)
    assert np.all(np.diff(x) < 0.0)
    with pytest.raises(ValueError):
        cgl_nodes(1)


def test_interpolant_recovers_chebyshev_coefficients() -> None:
    x = cgl_nodes(4)
    interp = ChebyshevInterpolant(x**3 - 2.0 * x + 1.0)
    assert np.allclose(interp.coefficients, [1.0, -1.25, 0.0, 0.25], atol=1e-13)
    assert interp(0.3) == pytest.approx(0.3**3 - 0.6 + 1.0, abs=1e-13)
    assert interp.derivative(0.3) == pytest.approx(3 * 0.09 - 2.0, abs=1e-12)


def test_coefficients_are_a_copy() -> None:
    x = cgl_nodes(6)
    interp = ChebyshevInterpolant(np.exp(x))
    before = interp(0.1)
    coeffs = interp.coefficients
    coeffs[:] = 0.0
    assert interp(0.1) == before


def test_convergence_rate() -> None:
    assert math.isnan(ChebyshevInterpolant([1.0, 2.0, 3.0, 4.0]).convergence_rate())
    x = cgl_nodes(16)
    assert ChebyshevInterpolant(np.exp(x)).convergence_rate() > 5.0


def test_sample_is_read_only_snapshot() -> None:
    times = np.array([0.0, 0.5, 1.0])
    values = np.array([40.0, 35.0, 33.0])
    sample = BoundarySample(times, values)
    values[0] = 0.0
    assert sample.values[0] == 40.0
    with pytest.raises(ValueError):
        sample.values[0] = 1.0
    assert len(sample) == 3
    assert sample.at(0.25) == pytest.approx(37.5)
    assert sample.at(2.0) == pytest.approx(33.0)
    other = BoundarySample(times, [40.0, 34.0, 33.5])
    assert sample.max_abs_change(other) == pytest.approx(1.0)


@pytest.mark.parametrize("times,values", [
    ([1.0, 0.5, 0.0], [1.0, 2.0, 3.0]),
    ([0.0, 1.0], [1.0, 2.0, 3.0]),
])
def test_sample_validation(times, values) -> None:
    with pytest.raises(ValueError):
        BoundarySample(times, values)


def _exact_boundary(tau):
    return 40.0 * np.exp(-0.3 * np.sqrt(tau))


def test_square_root_boundary_is_reproduced_exactly() -> None:
    # H = (0.3)^2 tau is a quadratic in the Chebyshev variable
    T = 2.0
    taus = node_times(8, T)
    fn = BoundaryFunction.from_boundary_values(_exact_boundary(taus), T, 40.0, sign=-1.0)
    grid = np.linspace(0.0, T, 23)
    assert np.allclose(fn.evaluate(grid), _exact_boundary(grid), rtol=1e-12)
    assert fn(0.0) == pytest.approx(40.0)

    tau = 0.37
    expected = -0.3 * _exact_boundary(tau) / (2.0 * math.sqrt(tau))
    assert fn.derivative(tau) == pytest.approx(expected, rel=1e-8)
    assert np.all(fn.derivative(np.array([0.0, 0.5, 1.0])) < 0.0)


def test_call_boundary_is_reflected() -> None:
    T = 1.0
    put = BoundaryFunction.from_boundary_values(_exact_boundary(node_times(8, T)), T, 40.0)
    call = put.as_call(40.0)
    for tau in (0.0, 0.2, 1.0):
        assert call(tau) == pytest.approx(1600.0 / put(tau))
    assert call.derivative(0.5) == pytest.approx(-1600.0 / put(0.5) ** 2 * put.derivative(0.5), rel=1e-10)
    assert "call" in repr(call)
    with pytest.raises(ValueError):
        BoundaryFunction(put._interp, T, 40.0, is_call=True)


def test_from_samples_and_back() -> None:
    T = 1.5
    dense = np.linspace(0.0, T, 400)
    sample = BoundarySample(dense, _exact_boundary(dense))
    fn = BoundaryFunction.from_samples(sample, 40.0, nodes=12)
    assert fn.sign == -1.0
    assert fn.nodes == 12
    assert fn(0.8) == pytest.approx(_exact_boundary(0.8), rel=1e-4)
    resampled = fn.samples(30)
    assert len(resampled) == 30
    assert resampled.times[-1] == pytest.approx(T)


def test_upper_branch_pins_values_below_the_limit() -> None:
    T = 1.0
    taus = node_times(6, T)
    values = 50.0 * np.exp(0.1 * np.sqrt(taus))
    values[-1] = 49.0
    fn = BoundaryFunction.from_boundary_values(values, T, 50.0, sign=1.0)
    assert fn(0.0) == pytest.approx(50.0)
    assert np.all(fn.evaluate(np.linspace(0.0, T, 11)) >= 50.0)
