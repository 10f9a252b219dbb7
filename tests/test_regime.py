import math

import pytest

from double_boundary.regime import (
    ExerciseRegime,
    characteristic_roots,
    classify_regime,
    critical_volatility,
    exercise_limit,
    perpetual_boundaries,
)


@pytest.mark.parametrize("r,q", [(0.05, 0.02), (0.0, 0.0), (0.03, -0.01), (0.1, 0.1), (0.5, -0.5)])
@pytest.mark.parametrize("sigma", [0.01, 0.2, 2.0])
def test_rate_above_dividend_and_zero_is_single_positive(r, q, sigma) -> None:
    assert classify_regime(r, q, sigma) is ExerciseRegime.SINGLE_BOUNDARY_POSITIVE


def test_critical_volatility_formula() -> None:
    r, q = -0.01, -0.02
    expected = abs(math.sqrt(0.02) - math.sqrt(0.04))
    assert critical_volatility(r, q) == pytest.approx(expected, abs=1e-15)
    assert critical_volatility(r, q) == pytest.approx(0.0585786, abs=1e-6)


@pytest.mark.parametrize("r,q", [(0.01, 0.02), (-0.02, -0.01), (-0.01, 0.0), (0.0, -0.01)])
def test_critical_volatility_is_nan_outside_negative_corner(r, q) -> None:
    assert math.isnan(critical_volatility(r, q))


@pytest.mark.parametrize("r,q", [(-0.01, -0.02), (-0.005, -0.01), (-0.03, -0.2)])
def test_classification_flips_exactly_at_critical_volatility(r, q) -> None:
    sigma_star = critical_volatility(r, q)
    assert classify_regime(r, q, sigma_star) is ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES
    assert classify_regime(r, q, sigma_star * (1.0 - 1e-9)) is ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES
    assert classify_regime(r, q, sigma_star * (1.0 + 1e-9)) is ExerciseRegime.NO_EARLY_EXERCISE


def test_negative_rate_regression_cases() -> None:
    r, q = -0.01, -0.02
    assert classify_regime(r, q, 0.40) is ExerciseRegime.NO_EARLY_EXERCISE
    assert classify_regime(r, q, 0.05) is ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES
    # sigma* = 0.0586 for these rates, so 10% volatility is already above it
    assert classify_regime(r, q, 0.10) is ExerciseRegime.NO_EARLY_EXERCISE


@pytest.mark.parametrize("r,q", [(-0.02, -0.01), (-0.01, -0.01), (-0.3, -0.001)])
def test_rate_below_negative_dividend_never_exercises(r, q) -> None:
    assert classify_regime(r, q, 0.2) is ExerciseRegime.NO_EARLY_EXERCISE


def test_table_completions() -> None:
    assert classify_regime(0.02, 0.06, 0.2) is ExerciseRegime.SINGLE_BOUNDARY_POSITIVE
    assert classify_regime(-0.01, 0.02, 0.2) is ExerciseRegime.NO_EARLY_EXERCISE
    assert classify_regime(0.0, 0.03, 0.2) is ExerciseRegime.NO_EARLY_EXERCISE


def test_call_side_swaps_rate_and_dividend() -> None:
    assert classify_regime(-0.02, -0.01, 0.05, is_call=True) is ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES
    assert classify_regime(0.05, 0.0, 0.2, is_call=True) is ExerciseRegime.NO_EARLY_EXERCISE
    assert classify_regime(0.02, 0.06, 0.2, is_call=True) is ExerciseRegime.SINGLE_BOUNDARY_POSITIVE


@pytest.mark.parametrize("r,q,sigma", [
    (math.nan, 0.0, 0.2),
    (0.05, math.inf, 0.2),
    (0.05, 0.02, 0.0),
    (0.05, 0.02, -0.1),
    (0.05, 0.02, math.nan),
    ("abc", 0.02, 0.2),
])
def test_nonsense_inputs_are_degenerate_not_errors(r, q, sigma) -> None:
    assert classify_regime(r, q, sigma) is ExerciseRegime.DEGENERATE


def test_regime_properties() -> None:
    assert ExerciseRegime.SINGLE_BOUNDARY_POSITIVE.has_single_boundary
    assert ExerciseRegime.SINGLE_BOUNDARY_NEGATIVE_DIVIDEND.has_single_boundary
    assert ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES.has_double_boundary
    assert not ExerciseRegime.NO_EARLY_EXERCISE.has_single_boundary
    assert not ExerciseRegime.NO_EARLY_EXERCISE.has_double_boundary


@pytest.mark.parametrize("r,q,sigma", [(0.06, 0.02, 0.2), (-0.01, -0.02, 0.05), (0.02, -0.01, 0.3)])
def test_characteristic_roots_solve_the_quadratic(r, q, sigma) -> None:
    for lam in characteristic_roots(r, q, sigma):
        residual = 0.5 * sigma**2 * lam * (lam - 1.0) + (r - q) * lam - r
        assert abs(residual) < 1e-12


def test_characteristic_roots_complex_just_above_critical_volatility() -> None:
    with pytest.raises(ValueError):
        characteristic_roots(-0.01, -0.02, 0.1)


def test_characteristic_roots_real_again_at_high_volatility() -> None:
    # the complex band ends at sqrt(0.02) + sqrt(0.04) = 0.3414
    r, q, sigma = -0.01, -0.02, 0.4
    lam_minus, lam_plus = characteristic_roots(r, q, sigma)
    assert lam_minus < lam_plus
    for lam in (lam_minus, lam_plus):
        assert abs(0.5 * sigma**2 * lam * (lam - 1.0) + (r - q) * lam - r) < 1e-12


def test_perpetual_bracket_of_double_boundary_put() -> None:
    upper_inf, lower_inf = perpetual_boundaries(100.0, -0.01, -0.02, 0.05)
    assert upper_inf == pytest.approx(84.7598, abs=1e-3)
    assert lower_inf == pytest.approx(58.9902, abs=1e-3)
    assert exercise_limit(100.0, -0.01, -0.02) < lower_inf < upper_inf < 100.0


def test_exercise_limit() -> None:
    assert exercise_limit(100.0, -0.01, -0.02) == pytest.approx(50.0)
    assert exercise_limit(100.0, 0.02, 0.06) == pytest.approx(100.0 / 3.0)
    assert exercise_limit(100.0, 0.06, 0.02) == pytest.approx(100.0)
    assert exercise_limit(100.0, 0.02, -0.01) == pytest.approx(100.0)
    assert exercise_limit(100.0, 0.05, 0.0) == pytest.approx(100.0)
