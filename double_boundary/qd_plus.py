"""
QD+ boundary approximation (Li, 2005; Andersen, Lake & Offengelden, 2016),
extended to the two-boundary put of Healy (2021).

Everything is computed for a put. A call is priced through put-call
symmetry, ``C(S, K, r, q) = (S/K) P(K^2/S, K, q, r)``, so its boundaries are
``K^2 / B`` of the put boundaries with upper and lower exchanged.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.optimize import brentq

from .black_scholes import BlackScholesKernel, norm_cdf
from .config import DEFAULT_CONFIG, SolverConfig
from .errors import Diagnostic, UnsupportedRegime
from .market import MarketParameters
from .regime import ExerciseRegime, characteristic_roots, classify_regime, exercise_limit, perpetual_boundaries

logger = logging.getLogger(__name__)

SMALL_H = 1e-12


@dataclass(frozen=True)
class BoundarySeeds:
    """
    Starting boundary values at the valuation date.

    For a put the exercise region is ``lower <= S <= upper``; a single
    boundary put has ``lower = 0``, a single boundary call ``upper = inf``.
    An empty region (no early exercise) is ``upper = lower = 0`` for a put
    and ``inf`` for a call. Unpacks as ``(upper, lower)``.
    """

    upper: float
    lower: float
    regime: ExerciseRegime
    diagnostics: Tuple[Diagnostic, ...] = ()
    method: str = ""

    def __iter__(self):
        yield self.upper
        yield self.lower

    def reflect(self, strike: float) -> "BoundarySeeds":
        """Map put seeds to call seeds (and back) through ``B -> K^2 / B``."""
        k2 = strike * strike

        def flip(b):
            if b == 0.0:
                return math.inf
            if math.isinf(b):
                return 0.0
            return k2 / b

        return BoundarySeeds(flip(self.lower), flip(self.upper), self.regime, self.diagnostics, self.method)


def _numeric_derivatives(f: Callable[[float], float], x: float) -> Tuple[float, float, float]:
    h = 1e-5 * max(abs(x), 1.0)
    f0 = f(x)
    fp = f(x + h)
    fm = f(x - h)
    return f0, (fp - fm) / (2.0 * h), (fp - 2.0 * f0 + fm) / (h * h)


def super_halley(f: Callable[[float], float], x0: float, lo: float, hi: float,
                 tol: float = 1e-10, max_iter: int = 50) -> Tuple[float, bool, int]:
    """
    Super-Halley iteration with a Newton fallback.

    ``Lf = f f'' / f'^2``, ``x <- x - (1 + Lf / (2 (1 - Lf))) f / f'``; the
    plain Newton step is used when ``|1 - Lf|`` is tiny. Iterates are
    clamped to ``[lo, hi]``; an iteration that stalls on a bound is reported
    as not converged.

    Returns
    -------
    (root, converged, iterations)
    """
    x = min(max(x0, lo), hi)
    for it in range(1, max_iter + 1):
        f0, d1, d2 = _numeric_derivatives(f, x)
        if not (math.isfinite(f0) and math.isfinite(d1) and math.isfinite(d2)) or abs(d1) < 1e-300:
            return x, False, it
        newton = f0 / d1
        Lf = f0 * d2 / (d1 * d1)
        if abs(1.0 - Lf) < 1e-8:
            step = newton
        else:
            step = (1.0 + 0.5 * Lf / (1.0 - Lf)) * newton
        x_new = min(max(x - step, lo), hi)
        if abs(x_new - x) <= tol * max(abs(x), 1.0):
            # pinned against a clamp is not a root
            return x_new, lo < x_new < hi or f0 == 0.0, it
        x = x_new
    return x, False, max_iter


class QDPlusApproximator:
    """
    QD+ seeds for the early-exercise boundary.

    Parameters
    ----------
    params : MarketParameters
        Contract and market; calls are handled in put space.
    config : SolverConfig, optional
        Uses ``tolerance``, ``max_iterations`` and ``near_expiry_threshold``.
    """

    def __init__(self, params: MarketParameters, config: Optional[SolverConfig] = None):
        self.params = params
        self.config = config or DEFAULT_CONFIG
        put = params.to_put_space()
        self.K = put.strike
        self.T = put.maturity
        self.r = put.rate
        self.q = put.dividend_yield
        self.sigma = put.volatility
        self.regime = classify_regime(self.r, self.q, self.sigma)
        self.X = exercise_limit(self.K, self.r, self.q)
        self.bs = BlackScholesKernel(self.K, self.r, self.q, self.sigma)
        self.diagnostics = []

    def _flag(self, diagnostic: Diagnostic) -> None:
        if diagnostic not in self.diagnostics:
            self.diagnostics.append(diagnostic)

    # ------------------------------------------------------------------
    # Characteristic equation
    # ------------------------------------------------------------------
    def _lambda_params(self, tau: float, plus_root: bool = False):
        """alpha, beta, h, lambda, lambda'(h) at time to maturity ``tau``."""
        sigma2 = self.sigma * self.sigma
        h = 1.0 - math.exp(-self.r * tau)
        alpha = 2.0 * self.r / sigma2
        beta = 2.0 * (self.r - self.q) / sigma2
        disc = (beta - 1.0) ** 2 + 4.0 * alpha / h
        if disc < 0.0:
            raise ValueError("complex QD+ roots")
        sqrt_disc = math.sqrt(disc)
        if plus_root:
            lam = 0.5 * (-(beta - 1.0) + sqrt_disc)
            lam_prime = -alpha / (h * h * sqrt_disc)
        else:
            lam = 0.5 * (-(beta - 1.0) - sqrt_disc)
            lam_prime = alpha / (h * h * sqrt_disc)
        return alpha, beta, h, lam, lam_prime

    def _c0_times_E(self, S: float, tau: float, alpha, beta, h, lam, lam_prime) -> Tuple[float, float]:
        """
        ``(c0 * E, E)`` with ``E = K - S - p(S)``.

        Written without dividing by ``E`` so the product stays finite as
        ``E`` goes through zero.
        """
        E = self.K - S - self.bs.price(S, tau)
        theta = self.bs.theta(S, tau)
        denom = 2.0 * lam + beta - 1.0
        c0E = -((1.0 - h) * alpha / denom) * (
            E / h - math.exp(self.r * tau) * theta / self.r + lam_prime * E / denom
        )
        return c0E, E

    # ------------------------------------------------------------------
    # Single boundary
    # ------------------------------------------------------------------
    def _small_h_seeds(self, tau: float) -> Tuple[float, float]:
        factor = 0.2 * self.sigma * math.sqrt(tau)
        return self.K * (1.0 - factor), self.K * (0.5 + 0.5 * factor)

    def _single_seed(self, tau: float) -> float:
        """Perpetual boundary pulled towards ``X`` for short maturities (BAW style)."""
        lam_inf = characteristic_roots(self.r, self.q, self.sigma)[0]
        B_inf = self.K * lam_inf / (lam_inf - 1.0)
        if B_inf >= self.X:
            return self.X * (1.0 - 0.2 * self.sigma * math.sqrt(tau))
        h2 = ((self.r - self.q) * tau - 2.0 * self.sigma * math.sqrt(tau)) * self.X / (self.X - B_inf)
        return min(self.X, B_inf + (self.X - B_inf) * math.exp(h2))

    def _pasting_equation(self, tau: float, plus_root: bool = False) -> Callable[[float], float]:
        """
        Smooth-pasting condition ``V'(B) = -1`` of the QD+ price.

        ``g(S) = S (1 - e^{-q tau} N(-d1)) + (lambda + c0) E``. The minus root
        gives the boundary with continuation above it (the single boundary
        and the upper one of a double region), the plus root the boundary
        with continuation below it.
        """
        alpha, beta, h, lam, lam_prime = self._lambda_params(tau, plus_root)

        def g(S):
            if S <= 0.0:
                return math.nan
            c0E, E = self._c0_times_E(S, tau, alpha, beta, h, lam, lam_prime)
            d1 = float(self.bs.d1(S, tau))
            return S * (1.0 - math.exp(-self.q * tau) * norm_cdf(-d1)) + lam * E + c0E

        return g

    def _bracket_root(self, g: Callable[[float], float], seed: float, grid: np.ndarray) -> Optional[float]:
        # sign change on the grid closest to the seed
        values = np.array([g(s) for s in grid])
        best = None
        for i in range(len(grid) - 1):
            a, b = values[i], values[i + 1]
            if not (math.isfinite(a) and math.isfinite(b)) or a * b > 0.0:
                continue
            if best is None or abs(0.5 * (grid[i] + grid[i + 1]) - seed) < abs(0.5 * (best[0] + best[1]) - seed):
                best = (grid[i], grid[i + 1])
        if best is None:
            return None
        try:
            return brentq(g, best[0], best[1], xtol=1e-12 * self.K)
        except ValueError:
            return None

    def boundary_at(self, tau: float) -> float:
        """QD+ estimate of the single put boundary ``tau`` years before expiry."""
        if tau <= 0.0:
            return self.X
        if self.r <= 0.0:
            # no single boundary below X without a positive put-space rate
            return 0.0
        if abs(1.0 - math.exp(-self.r * tau)) < SMALL_H:
            self._flag(Diagnostic.NUMERICAL_SINGULARITY)
            return min(self._small_h_seeds(tau)[0], self.X)

        seed = self._single_seed(tau)
        g = self._pasting_equation(tau)
        lo = 1e-6 * self.X
        root, converged, iterations = super_halley(g, seed, lo, self.X, self.config.tolerance,
                                                   self.config.max_iterations)
        if converged and lo < root < self.X:
            logger.debug("QD+ single boundary tau=%.6g: %.8g after %d Super-Halley steps", tau, root, iterations)
            return root

        root = self._bracket_root(g, seed, np.geomspace(1e-4 * self.X, self.X * (1.0 - 1e-10), 60))
        if root is not None:
            logger.debug("QD+ single boundary tau=%.6g: %.8g from bracketing", tau, root)
            return min(root, self.X)

        logger.warning("QD+ found no root at tau=%.6g; keeping seed %.6g", tau, seed)
        self._flag(Diagnostic.SPURIOUS_ROOT)
        return seed

    # ------------------------------------------------------------------
    # Double boundary
    # ------------------------------------------------------------------
    def perpetual_seeds(self, tau: Optional[float] = None) -> Tuple[float, float]:
        """
        Perpetual bracket pulled towards its short-maturity ends, BAW style.

        The upper seed decays from ``K`` to ``upper_inf`` and the lower one
        from ``X`` to ``lower_inf`` with the same ``h2`` exponent as the
        single-boundary seed.
        """
        tau = self.T if tau is None else tau
        upper_inf, lower_inf = perpetual_boundaries(self.K, self.r, self.q, self.sigma)
        decay = min(0.0, (self.r - self.q) * tau - 2.0 * self.sigma * math.sqrt(tau))
        upper = upper_inf + (self.K - upper_inf) * math.exp(decay * self.K / (self.K - upper_inf))
        lower = lower_inf - (lower_inf - self.X) * math.exp(decay * self.X / (lower_inf - self.X))
        return self._clip_double(upper, lower)

    def _clip_double(self, upper: float, lower: float) -> Tuple[float, float]:
        upper_inf, lower_inf = perpetual_boundaries(self.K, self.r, self.q, self.sigma)
        upper = min(max(upper, upper_inf), self.K)
        lower = min(max(lower, self.X), lower_inf)
        if lower > upper:
            lower = upper
        return upper, lower

    def near_expiry_seeds(self) -> Tuple[float, float]:
        spread = max(0.01, self.sigma * math.sqrt(self.T))
        upper = self.K * (1.0 - 0.3 * spread)
        lower = self.K * (1.0 - spread)
        if lower >= upper:
            lower = upper * 0.99
        return self._clip_double(upper, lower)

    def _validate_root(self, root: float, seed: float) -> bool:
        if not math.isfinite(root) or root <= 0.0:
            return False
        if abs(root - self.K) < 0.05 * self.K:
            return False
        scale = self.K / 100.0
        if self.T < 3.0:
            max_rel, max_abs = 0.10, 5.0 * scale
        else:
            max_rel, max_abs = 0.15, 8.0 * scale
        deviation = abs(root - seed)
        return deviation <= max_rel * seed and deviation <= max_abs

    def _solve_double_side(self, plus_root: bool, seed: float, lo: float, hi: float) -> float:
        name = "lower" if plus_root else "upper"
        try:
            g = self._pasting_equation(self.T, plus_root)
        except (ValueError, ZeroDivisionError):
            self._flag(Diagnostic.NUMERICAL_SINGULARITY)
            return seed
        root, converged, iterations = super_halley(g, seed, lo, hi, self.config.tolerance,
                                                   self.config.max_iterations)
        if converged and self._validate_root(root, seed):
            logger.debug("QD+ %s boundary %.8g after %d Super-Halley steps", name, root, iterations)
            return root

        bracketed = self._bracket_root(g, seed, np.linspace(lo, hi, 41))
        if bracketed is not None and self._validate_root(bracketed, seed):
            logger.debug("QD+ %s boundary %.8g from bracketing", name, bracketed)
            return bracketed
        logger.warning("QD+ %s root %.6g rejected (converged=%s); keeping seed %.6g", name, root, converged, seed)
        self._flag(Diagnostic.SPURIOUS_ROOT)
        return seed

    def double_boundaries(self) -> Tuple[float, float]:
        if self.T < self.config.near_expiry_threshold:
            self._flag(Diagnostic.NEAR_EXPIRY)
            return self.near_expiry_seeds()

        if abs(1.0 - math.exp(-self.r * self.T)) < SMALL_H:
            self._flag(Diagnostic.NUMERICAL_SINGULARITY)
            return self._clip_double(*self._small_h_seeds(self.T))

        upper_inf, lower_inf = perpetual_boundaries(self.K, self.r, self.q, self.sigma)
        upper_seed, lower_seed = self.perpetual_seeds()
        upper = self._solve_double_side(False, upper_seed, upper_inf, self.K)
        lower = self._solve_double_side(True, lower_seed, self.X, lower_inf)
        upper, lower = self._clip_double(upper, lower)
        return upper, lower

    # ------------------------------------------------------------------
    def approximate_put_space(self) -> BoundarySeeds:
        regime = self.regime
        if regime is ExerciseRegime.DEGENERATE:
            raise UnsupportedRegime("cannot seed boundaries for a degenerate regime", regime)
        if regime is ExerciseRegime.NO_EARLY_EXERCISE:
            return BoundarySeeds(0.0, 0.0, regime, (), "no early exercise")
        if regime.has_single_boundary:
            upper = self.boundary_at(self.T)
            return BoundarySeeds(upper, 0.0, regime, tuple(self.diagnostics), "QD+ single boundary")
        upper, lower = self.double_boundaries()
        method = "near-expiry seeds" if Diagnostic.NEAR_EXPIRY in self.diagnostics else "QD+ double boundary"
        return BoundarySeeds(upper, lower, regime, tuple(self.diagnostics), method)

    def approximate(self) -> BoundarySeeds:
        seeds = self.approximate_put_space()
        if self.params.is_call:
            return seeds.reflect(self.K)
        return seeds


def approximate_boundaries(params: MarketParameters, config: Optional[SolverConfig] = None) -> BoundarySeeds:
    """QD+ ``(upper, lower)`` seeds at the valuation date, in the option's own space."""
    return QDPlusApproximator(params, config).approximate()


if __name__ == "__main__":
    for p in [
        MarketParameters(36.0, 40.0, 1.0, 0.06, 0.02, 0.2),
        MarketParameters(100.0, 100.0, 5.0, -0.01, -0.02, 0.05),
        MarketParameters(100.0, 100.0, 1.0, 0.02, 0.06, 0.2, is_call=True),
    ]:
        s = approximate_boundaries(p)
        print(f"{p.option_type} r={p.rate:+.3f} q={p.dividend_yield:+.3f} T={p.maturity:g}: "
              f"upper={s.upper:.4f} lower={s.lower:.4f} {s.regime.value} {[d.value for d in s.diagnostics]}")
