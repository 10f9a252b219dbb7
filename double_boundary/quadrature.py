"""
Quadrature provider.

* fixed Gauss-Legendre rules on [-1, 1] for the smooth boundary integrals,
* an adaptive Gauss-Lobatto integrator (Gander & Gautschi, 2000) for the
  early-exercise premium,
* a composite Simpson fallback used when the adaptive rule gives up,
* a numba trapezoid-weight kernel for the Kim refiner's grids.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Callable, Tuple

import numpy as np
from numba import njit
from numpy.polynomial.legendre import leggauss
from scipy.integrate import simpson

from .errors import QuadratureError

logger = logging.getLogger(__name__)


class GKRule(Enum):
    """Named fixed rules, by number of nodes."""

    FAST = 15
    BALANCED = 21
    ACCURATE = 31
    ULTRA = 41


class GaussLegendreRule:
    """
    Fixed-node rule on [-1, 1].

    Options:
    - a named :class:`GKRule` (15/21/31/41 nodes),
    - ``points`` for an arbitrary Gauss-Legendre size,
    - explicit ``nodes`` and ``weights``.
    """

    def __init__(self, rule=GKRule.BALANCED, points=None, nodes=None, weights=None):
        if nodes is not None or weights is not None:
            if nodes is None or weights is None:
                raise ValueError("Both nodes and weights must be provided for a custom rule")
            self._x = np.asarray(nodes, dtype=float)
            self._w = np.asarray(weights, dtype=float)
            if self._x.shape != self._w.shape:
                raise ValueError("nodes and weights must have the same shape")
        else:
            if points is None:
                if not isinstance(rule, GKRule):
                    rule = GKRule(rule)
                points = rule.value
            n = int(points)
            if n < 1:
                raise ValueError("points must be >= 1")
            self._x, self._w = leggauss(n)

    @property
    def nodes(self) -> np.ndarray:
        return self._x

    @property
    def weights(self) -> np.ndarray:
        return self._w

    def integrate(self, func: Callable, a: float, b: float, vectorized: bool = False) -> float:
        if b <= a:
            return 0.0
        t = 0.5 * (b - a) * self._x + 0.5 * (b + a)
        if vectorized:
            ft = np.asarray(func(t), dtype=float)
        else:
            ft = np.array([func(v) for v in t], dtype=float)
        return float(0.5 * (b - a) * np.sum(self._w * ft))


class AdaptiveGaussLobatto:
    """
    Adaptive 4-point Gauss-Lobatto rule with 7-point Kronrod extension.

    The absolute tolerance of every sub-interval is fixed up front from a
    13-point estimate of the whole integral. Raises
    :class:`QuadratureError` when the evaluation budget runs out or an
    interval can no longer be split in floating point.
    """

    _ALPHA = math.sqrt(2.0 / 3.0)
    _BETA = 1.0 / math.sqrt(5.0)
    _X1 = 0.94288241569547971906
    _X2 = 0.64185334234578130578
    _X3 = 0.23638319966214988028

    def __init__(self, abs_tol: float = 1e-14, rel_tol: float = 1e-10, max_evaluations: int = 20000):
        self.abs_tol = float(abs_tol)
        self.rel_tol = float(rel_tol)
        self.max_evaluations = int(max_evaluations)
        self.evaluations = 0

    def _eval(self, func: Callable[[float], float], x: float) -> float:
        self.evaluations += 1
        return float(func(x))

    def _tolerance(self, func, a, b):
        m = 0.5 * (a + b)
        h = 0.5 * (b - a)
        y1 = self._eval(func, a)
        y3 = self._eval(func, m - self._ALPHA * h)
        y5 = self._eval(func, m - self._BETA * h)
        y7 = self._eval(func, m)
        y9 = self._eval(func, m + self._BETA * h)
        y11 = self._eval(func, m + self._ALPHA * h)
        y13 = self._eval(func, b)
        f1 = self._eval(func, m - self._X1 * h)
        f2 = self._eval(func, m + self._X1 * h)
        f3 = self._eval(func, m - self._X2 * h)
        f4 = self._eval(func, m + self._X2 * h)
        f5 = self._eval(func, m - self._X3 * h)
        f6 = self._eval(func, m + self._X3 * h)

        estimate = h * (
            0.0158271919734801831 * (y1 + y13)
            + 0.0942738402188500455 * (f1 + f2)
            + 0.1550719873365853963 * (y3 + y11)
            + 0.1888215739601824544 * (f3 + f4)
            + 0.1997734052268585268 * (y5 + y9)
            + 0.2249264653333395270 * (f5 + f6)
            + 0.2426110719014077338 * y7
        )
        if not math.isfinite(estimate):
            raise QuadratureError("non-finite integrand", self.evaluations)
        return max(self.abs_tol, self.rel_tol * abs(estimate)), y1, y13

    def _step(self, func, a, b, fa, fb, tol):
        if self.evaluations >= self.max_evaluations:
            raise QuadratureError("maximum number of evaluations reached", self.evaluations)

        h = 0.5 * (b - a)
        m = 0.5 * (a + b)
        mll = m - self._ALPHA * h
        ml = m - self._BETA * h
        mr = m + self._BETA * h
        mrr = m + self._ALPHA * h

        fmll = self._eval(func, mll)
        fml = self._eval(func, ml)
        fm = self._eval(func, m)
        fmr = self._eval(func, mr)
        fmrr = self._eval(func, mrr)

        lobatto = (h / 6.0) * (fa + fb + 5.0 * (fml + fmr))
        kronrod = (h / 1470.0) * (
            77.0 * (fa + fb) + 432.0 * (fmll + fmrr) + 625.0 * (fml + fmr) + 672.0 * fm
        )
        if not math.isfinite(kronrod):
            raise QuadratureError("non-finite integrand", self.evaluations)

        if abs(kronrod - lobatto) <= tol or mll <= a or b <= mrr:
            if not (a < m < b):
                raise QuadratureError("interval contains no more machine numbers", self.evaluations)
            return kronrod

        return (
            self._step(func, a, mll, fa, fmll, tol)
            + self._step(func, mll, ml, fmll, fml, tol)
            + self._step(func, ml, m, fml, fm, tol)
            + self._step(func, m, mr, fm, fmr, tol)
            + self._step(func, mr, mrr, fmr, fmrr, tol)
            + self._step(func, mrr, b, fmrr, fb, tol)
        )

    def integrate(self, func: Callable[[float], float], a: float, b: float) -> float:
        self.evaluations = 0
        if b == a:
            return 0.0
        if b < a:
            return -self.integrate(func, b, a)
        tol, fa, fb = self._tolerance(func, a, b)
        return self._step(func, a, b, fa, fb, tol)


def simpson_integrate(func: Callable[[float], float], a: float, b: float, points: int = 2001) -> float:
    """Composite Simpson rule on ``points`` equally spaced nodes."""
    if b <= a:
        return 0.0
    x = np.linspace(a, b, int(points))
    y = np.array([func(v) for v in x], dtype=float)
    finite = np.isfinite(y)
    if not np.all(finite):
        y[~finite] = 0.0
    return float(simpson(y, x=x))


def integrate_with_fallback(
    func: Callable[[float], float],
    a: float,
    b: float,
    tolerance: float = 1e-10,
    max_evaluations: int = 20000,
    simpson_points: int = 2001,
) -> Tuple[float, bool]:
    """
    Adaptive Gauss-Lobatto integral with a Simpson fallback.

    Returns
    -------
    (value, used_fallback)
    """
    if b <= a:
        return 0.0, False
    lobatto = AdaptiveGaussLobatto(rel_tol=tolerance, max_evaluations=max_evaluations)
    try:
        value = lobatto.integrate(func, a, b)
    except QuadratureError as exc:
        logger.warning("Gauss-Lobatto failed on [%g, %g] after %d evaluations (%s); using Simpson",
                       a, b, exc.evaluations, exc)
        return simpson_integrate(func, a, b, simpson_points), True
    if not math.isfinite(value):
        logger.warning("Gauss-Lobatto returned %r on [%g, %g]; using Simpson", value, a, b)
        return simpson_integrate(func, a, b, simpson_points), True
    return value, False


def integrate(func: Callable[[float], float], a: float, b: float, tolerance: float = 1e-10) -> float:
    return integrate_with_fallback(func, a, b, tolerance)[0]


@njit(fastmath=True)
def trapezoid_weights(x):
    n = len(x)
    w = np.zeros(n)
    if n < 2:
        return w

    w[0] = 0.5 * (x[1] - x[0])
    for i in range(1, n - 1):
        w[i] = 0.5 * (x[i + 1] - x[i - 1])
    w[n - 1] = 0.5 * (x[n - 1] - x[n - 2])

    return w
