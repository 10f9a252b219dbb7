"""
Exercise-regime classification.

For an American put the sign pattern of (r, q) decides whether the
exercise region is empty, a half-line below one boundary, or an interval
between two boundaries (Battauz, De Donno & Sbuelz, 2015; Healy, 2021).
Calls are classified by put-call symmetry, i.e. with r and q swapped.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Tuple

EPSILON = 1e-12


class ExerciseRegime(Enum):
    SINGLE_BOUNDARY_POSITIVE = "single_boundary_positive"
    SINGLE_BOUNDARY_NEGATIVE_DIVIDEND = "single_boundary_negative_dividend"
    DOUBLE_BOUNDARY_NEGATIVE_RATES = "double_boundary_negative_rates"
    NO_EARLY_EXERCISE = "no_early_exercise"
    DEGENERATE = "degenerate"

    @property
    def has_single_boundary(self) -> bool:
        return self in (
            ExerciseRegime.SINGLE_BOUNDARY_POSITIVE,
            ExerciseRegime.SINGLE_BOUNDARY_NEGATIVE_DIVIDEND,
        )

    @property
    def has_double_boundary(self) -> bool:
        return self is ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES


def critical_volatility(r: float, q: float) -> float:
    """
    Volatility above which the two put boundaries cannot coexist.

    ``sigma* = |sqrt(-2r) - sqrt(-2q)|``, defined for ``q < r < 0`` only;
    NaN elsewhere.
    """
    if not (math.isfinite(r) and math.isfinite(q)):
        return math.nan
    if r >= -EPSILON or q >= -EPSILON or r <= q + EPSILON:
        return math.nan
    return abs(math.sqrt(-2.0 * r) - math.sqrt(-2.0 * q))


def _put_regime(r: float, q: float, sigma: float) -> ExerciseRegime:
    if r >= max(q, 0.0):
        return ExerciseRegime.SINGLE_BOUNDARY_POSITIVE
    if r >= 0.0 > q:
        return ExerciseRegime.SINGLE_BOUNDARY_NEGATIVE_DIVIDEND
    if 0.0 < r < q:
        # high-dividend put: one boundary starting at K*r/q
        return ExerciseRegime.SINGLE_BOUNDARY_POSITIVE
    if q < r < 0.0:
        sigma_star = critical_volatility(r, q)
        if math.isnan(sigma_star):
            return ExerciseRegime.DEGENERATE
        if sigma <= sigma_star:
            return ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES
        return ExerciseRegime.NO_EARLY_EXERCISE
    if r <= q < 0.0:
        return ExerciseRegime.NO_EARLY_EXERCISE
    if r <= 0.0 <= q:
        # the strike earns nothing or a negative rate while the stock pays a
        # dividend: holding the put always dominates exercising it
        return ExerciseRegime.NO_EARLY_EXERCISE
    return ExerciseRegime.DEGENERATE


def classify_regime(r: float, q: float, sigma: float, is_call: bool = False) -> ExerciseRegime:
    """
    Map (rate, dividend yield, volatility, side) to an exercise regime.

    Never raises: inputs that make no sense (non-finite values,
    non-positive volatility) come back as ``DEGENERATE`` and the caller
    decides what to do with it.
    """
    try:
        r = float(r)
        q = float(q)
        sigma = float(sigma)
    except (TypeError, ValueError):
        return ExerciseRegime.DEGENERATE
    if not (math.isfinite(r) and math.isfinite(q) and math.isfinite(sigma)) or sigma <= 0.0:
        return ExerciseRegime.DEGENERATE
    if is_call:
        return _put_regime(q, r, sigma)
    return _put_regime(r, q, sigma)


def characteristic_roots(r: float, q: float, sigma: float) -> Tuple[float, float]:
    """
    Roots of ``0.5 sigma^2 l (l - 1) + (r - q) l - r = 0``.

    Returns ``(lambda_minus, lambda_plus)``. Raises ValueError when the
    roots are complex, which for ``q < r < 0`` happens only inside the band
    ``sigma* < sigma < sqrt(-2r) + sqrt(-2q)``; above it they are real again.
    """
    sigma2 = sigma * sigma
    mu = r - q - 0.5 * sigma2
    disc = mu * mu + 2.0 * r * sigma2
    if disc < 0.0:
        raise ValueError("characteristic roots are complex for these parameters")
    sqrt_disc = math.sqrt(disc)
    return (-mu - sqrt_disc) / sigma2, (-mu + sqrt_disc) / sigma2


def perpetual_boundaries(strike: float, r: float, q: float, sigma: float) -> Tuple[float, float]:
    """
    Perpetual put boundaries ``K * l / (l - 1)`` for both roots.

    Returns ``(upper, lower)``. In the double-boundary regime the finite
    maturity boundaries satisfy ``upper(tau) in [upper_inf, K]`` and
    ``lower(tau) in [K r/q, lower_inf]``. For a single-boundary put with
    r > 0 only the first value is meaningful: it is the classic perpetual
    put boundary ``K l_- / (l_- - 1)``.
    """
    lam_minus, lam_plus = characteristic_roots(r, q, sigma)
    values = []
    for lam in (lam_minus, lam_plus):
        if abs(lam - 1.0) < EPSILON:
            raise ValueError("degenerate characteristic root equal to one")
        values.append(strike * lam / (lam - 1.0))
    return values[0], values[1]


def exercise_limit(strike: float, r: float, q: float) -> float:
    """
    Put boundary value as time to maturity goes to zero.

    ``X = K * min(1, r/q)`` when r and q share a sign, ``K`` otherwise.
    For the double-boundary put this is the starting point of the lower
    boundary; the upper one starts at K.
    """
    if q != 0.0 and r / q > 0.0:
        return strike * min(1.0, r / q)
    return strike


if __name__ == "__main__":
    for r, q, sigma in [(0.06, 0.02, 0.2), (0.02, -0.01, 0.2), (-0.01, -0.02, 0.05), (-0.01, -0.02, 0.4)]:
        print(f"r={r:+.3f} q={q:+.3f} sigma={sigma:.2f} -> {classify_regime(r, q, sigma).value}"
              f"  sigma*={critical_volatility(r, q):.4f}")
