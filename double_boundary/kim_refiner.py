"""
Kim integral equation for the two-boundary American put, solved by the
stabilised fixed point FP-B' of Healy (2021).

Boundaries live on a uniform calendar grid ``t_i = i T / (M - 1)``; the
last point is expiry where ``upper = K`` and ``lower = K r / q``. At every
point the value-matching condition reads

    u_i = K N(t_i, u_i) / D(t_i, u_i)
    l_i = K N'(t_i, l_i) / D'(t_i, l_i),   N' = N + (l_i / K) I_D,  D' = D0

with the lower point evaluated against the upper value computed in the
same sweep. ``N``, ``D`` carry the European term and a trapezoid integral
over ``[max(t_i, t*), T]``, ``t*`` being the calendar time before which
the two boundaries have merged.

Clearing denominators, both conditions share one numerator

    F(B) = K N(B) - B D(B) = (K - B) - p_E(B) - e(B),

minus the time value of the option at the boundary. With negative rates
``N`` and ``D`` are both of order ``rate * tau`` and plain substitution
``B <- K N / D`` runs away from the solution, so each point is found as the
zero of ``F`` instead: ``F > 0`` inside the exercise interval and ``F < 0``
outside it, and a scan of ``F`` brackets both boundaries. The integral only
looks forward in calendar time, so sweeps run from expiry backwards and
every point sees an already updated future.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np
from numba import njit
from scipy.optimize import brentq
from scipy.special import ndtr

from .config import DEFAULT_CONFIG, NUMERICAL_EPSILON, SolverConfig
from .errors import Diagnostic, UnsupportedRegime
from .market import MarketParameters
from .qd_plus import BoundarySeeds
from .quadrature import trapezoid_weights
from .regime import ExerciseRegime, classify_regime, exercise_limit
from .spectral import BoundarySample

logger = logging.getLogger(__name__)


@njit(fastmath=True)
def pool_adjacent_violators(values, increasing):
    """Least-squares isotonic fit; non-increasing fits run on the reversed array."""
    n = len(values)
    if increasing:
        y = values.copy()
    else:
        y = values[::-1].copy()

    means = np.empty(n)
    sizes = np.empty(n, dtype=np.int64)
    nb = 0
    for i in range(n):
        means[nb] = y[i]
        sizes[nb] = 1
        nb += 1
        while nb > 1 and means[nb - 2] > means[nb - 1]:
            total = sizes[nb - 2] + sizes[nb - 1]
            means[nb - 2] = (means[nb - 2] * sizes[nb - 2] + means[nb - 1] * sizes[nb - 1]) / total
            sizes[nb - 2] = total
            nb -= 1

    out = np.empty(n)
    k = 0
    for b in range(nb):
        for _ in range(sizes[b]):
            out[k] = means[b]
            k += 1

    if increasing:
        return out
    return out[::-1].copy()


@dataclass(frozen=True)
class KimRefinement:
    """
    Refined boundary profiles.

    ``upper`` and ``lower`` are samples over time to maturity (ascending),
    ``crossing_time`` is calendar time with 0 meaning the boundaries never
    merge.
    """

    upper: BoundarySample
    lower: BoundarySample
    crossing_time: float
    iterations: int
    residual: float
    residual_history: Tuple[float, ...]
    converged: bool
    diagnostics: Tuple[Diagnostic, ...] = ()

    def __iter__(self):
        yield self.upper
        yield self.lower
        yield self.crossing_time
        yield self.iterations
        yield self.residual

    def reflect(self, strike: float) -> "KimRefinement":
        """Put-space profiles to call-space ones (``B -> K^2 / B``, roles swapped)."""
        k2 = strike * strike
        upper = BoundarySample(self.lower.times, k2 / np.asarray(self.lower.values))
        lower = BoundarySample(self.upper.times, k2 / np.asarray(self.upper.values))
        return KimRefinement(upper, lower, self.crossing_time, self.iterations, self.residual,
                             self.residual_history, self.converged, self.diagnostics)


@dataclass(frozen=True)
class KimNodes:
    """
    Trapezoid nodes of the Kim integral at one calendar time ``t``.

    The boundary at node ``m`` is ``tail[m] + head[m] * B(t)``: linear
    interpolation of the profile on the grid after ``t``, with the value at
    ``t`` itself left free.
    """

    tau: float
    s: np.ndarray
    weights_n: np.ndarray
    weights_d: np.ndarray
    head: np.ndarray
    upper_tail: np.ndarray
    lower_tail: np.ndarray


class KimIntegralRefiner:
    """
    FP-B' refinement of a double-boundary put.

    Parameters
    ----------
    params : MarketParameters
        Contract in the double-boundary regime (calls are mapped to put
        space).
    config : SolverConfig, optional
        Uses the ``kim_*`` settings and ``crossing_resolution``.
    """

    def __init__(self, params: MarketParameters, config: Optional[SolverConfig] = None):
        self.config = config or DEFAULT_CONFIG
        put = params.to_put_space()
        self.K = put.strike
        self.T = put.maturity
        self.r = put.rate
        self.q = put.dividend_yield
        self.sigma = put.volatility
        regime = classify_regime(self.r, self.q, self.sigma)
        if regime is not ExerciseRegime.DOUBLE_BOUNDARY_NEGATIVE_RATES:
            raise UnsupportedRegime(f"Kim refinement needs a double-boundary regime, got {regime.value}", regime)

        self.M = int(self.config.kim_grid_points)
        self.grid = np.linspace(0.0, self.T, self.M)
        self.X = exercise_limit(self.K, self.r, self.q)
        self.diagnostics: List[Diagnostic] = []

    def _flag(self, diagnostic: Diagnostic) -> None:
        if diagnostic not in self.diagnostics:
            self.diagnostics.append(diagnostic)

    # ------------------------------------------------------------------
    # Kernel pieces
    # ------------------------------------------------------------------
    def _cdf_neg_d(self, s, ratio, plus):
        """``Phi(-d_pm(s, ratio))``, with the ``s -> 0`` limit taken from the sign of ``ln ratio``."""
        s = np.asarray(s, dtype=float)
        log_ratio = np.log(ratio)
        out = np.empty(np.broadcast(s, log_ratio).shape)
        log_ratio = np.broadcast_to(log_ratio, out.shape)
        s = np.broadcast_to(s, out.shape)
        tiny = s < 1e-14
        if np.any(tiny):
            lr = log_ratio[tiny]
            out[tiny] = np.where(lr > 0.0, 0.0, np.where(lr < 0.0, 1.0, 0.5))
        live = ~tiny
        if np.any(live):
            vol = self.sigma * np.sqrt(s[live])
            shift = 0.5 * vol * vol if plus else -0.5 * vol * vol
            d = (log_ratio[live] + (self.r - self.q) * s[live] + shift) / vol
            out[live] = ndtr(-d)
        return out

    def kim_nodes(self, t: float, j: int, upper: np.ndarray, lower: np.ndarray) -> KimNodes:
        """
        Nodes over ``[t, T]`` against the profiles from grid index ``j`` on.

        ``j`` is the first grid index after ``t``. Points before the
        crossing time are never solved, so ``t >= t*`` and the integral
        starts at ``t``.
        """
        knots = np.concatenate(([t], self.grid[j:]))
        nodes = np.linspace(t, self.T, int(self.config.kim_integration_points) + 1)
        w = trapezoid_weights(nodes)
        s = nodes - t
        unit = np.zeros(len(knots))
        unit[0] = 1.0
        return KimNodes(
            tau=self.T - t,
            s=s,
            weights_n=self.r * w * np.exp(-self.r * s),
            weights_d=self.q * w * np.exp(-self.q * s),
            head=np.interp(nodes, knots, unit),
            upper_tail=np.interp(nodes, knots, np.concatenate(([0.0], upper[j:]))),
            lower_tail=np.interp(nodes, knots, np.concatenate(([0.0], lower[j:]))),
        )

    def mismatch(self, nodes: KimNodes, B, upper_at_t, lower_at_t) -> np.ndarray:
        """
        ``K N - B D`` for candidate boundary values ``B`` at the nodes' time.

        ``upper_at_t`` and ``lower_at_t`` are the two boundaries at that
        time; the side being solved passes ``B`` itself.
        """
        B = np.atleast_1d(np.asarray(B, dtype=float))
        u = nodes.upper_tail + nodes.head * np.broadcast_to(upper_at_t, B.shape)[:, None]
        l = nodes.lower_tail + nodes.head * np.broadcast_to(lower_at_t, B.shape)[:, None]
        ratio_u = B[:, None] / u
        ratio_l = B[:, None] / l

        n_term = self._cdf_neg_d(nodes.s, ratio_u, False) - self._cdf_neg_d(nodes.s, ratio_l, False)
        d_term = self._cdf_neg_d(nodes.s, ratio_u, True) - self._cdf_neg_d(nodes.s, ratio_l, True)
        I_N = np.sum(n_term * nodes.weights_n, axis=1)
        I_D = np.sum(d_term * nodes.weights_d, axis=1)

        n0 = 1.0 - math.exp(-self.r * nodes.tau) * self._cdf_neg_d(nodes.tau, B / self.K, False)
        d0 = 1.0 - math.exp(-self.q * nodes.tau) * self._cdf_neg_d(nodes.tau, B / self.K, True)
        return self.K * (n0 - I_N) - B * (d0 - I_D)

    def _bracketed_root(self, fn: Callable, lo: float, hi: float, top: bool) -> Optional[float]:
        """
        Edge of ``{B : fn(B) > 0}`` inside ``[lo, hi]``.

        ``top`` picks the upper edge, otherwise the lower one. None when no
        scan node lies inside the exercise interval.
        """
        candidates = np.linspace(lo, hi, int(self.config.kim_scan_points))
        values = fn(candidates)
        if not np.all(np.isfinite(values)):
            self._flag(Diagnostic.NUMERICAL_SINGULARITY)
        inside = np.nonzero(values > 0.0)[0]
        if len(inside) == 0:
            return None

        if top:
            k = int(inside[-1])
            if k == len(candidates) - 1:
                return hi
            a, b = float(candidates[k]), float(candidates[k + 1])
        else:
            k = int(inside[0])
            if k == 0:
                return lo
            a, b = float(candidates[k - 1]), float(candidates[k])

        def scalar(x):
            return float(fn(x)[0])

        fa, fb = scalar(a), scalar(b)
        if not (math.isfinite(fa) and math.isfinite(fb)) or fa * fb > 0.0:
            # no usable sign change: keep the last node inside
            self._flag(Diagnostic.NUMERICAL_SINGULARITY)
            return float(candidates[k])
        return brentq(scalar, a, b, xtol=NUMERICAL_EPSILON * self.K)

    def exercise_interval(self, nodes: KimNodes, lo: float, hi: float) -> Optional[Tuple[float, float]]:
        """
        ``(upper, lower)`` at the nodes' time, searched inside ``[lo, hi]``.

        The upper point is solved first against ``lo`` as the lower value,
        then the lower point against the new upper one. None when the
        exercise interval is empty.
        """

        def upper_side(B):
            return self.mismatch(nodes, B, B, lo)

        u = self._bracketed_root(upper_side, lo, hi, top=True)
        if u is None:
            return None

        def lower_side(B):
            return self.mismatch(nodes, B, u, B)

        l = self._bracketed_root(lower_side, lo, u, top=False)
        if l is None:
            return None
        return u, l

    # ------------------------------------------------------------------
    # Crossing time
    # ------------------------------------------------------------------
    def find_crossing_time(self, upper: np.ndarray, lower: np.ndarray) -> float:
        """
        Last grid time before expiry with ``upper <= lower``, 0 if none.

        Merged boundaries sit at the start of the calendar grid (long
        maturities); they separate on the way to expiry.
        """
        crossed = np.nonzero(upper[:-1] <= lower[:-1])[0]
        if len(crossed) == 0:
            return 0.0
        i = int(crossed[-1])
        if i == 0:
            # only the first point is merged: bracket it on [t_0, t_1]
            return 0.5 * float(self.grid[1])
        return float(self.grid[i])

    def refine_crossing_time(self, upper: np.ndarray, lower: np.ndarray, t0: float) -> float:
        """Bisect the sign change of ``upper - lower`` on the grid cell after ``t0``."""
        if t0 <= 0.0 or t0 >= self.T:
            return t0
        i = min(int(np.searchsorted(self.grid, t0, side="right")) - 1, self.M - 2)
        left = float(self.grid[i])
        right = float(self.grid[i + 1])
        while right - left > self.config.crossing_resolution:
            mid = 0.5 * (left + right)
            if np.interp(mid, self.grid, upper) > np.interp(mid, self.grid, lower):
                right = mid
            else:
                left = mid
        return 0.5 * (left + right)

    def bisect_closing_time(self, i: int, upper: np.ndarray, lower: np.ndarray) -> Tuple[float, float]:
        """
        Crossing time inside ``(t_i, t_{i+1})`` and the merged boundary value.

        The exercise interval is empty at ``t_i`` and open at ``t_{i+1}``;
        bisection runs on the Kim equation itself.
        """
        left, right = float(self.grid[i]), float(self.grid[i + 1])
        merged = 0.5 * (upper[i + 1] + lower[i + 1])
        while right - left > self.config.crossing_resolution:
            mid = 0.5 * (left + right)
            interval = self.exercise_interval(self.kim_nodes(mid, i + 1, upper, lower),
                                              lower[i + 1], upper[i + 1])
            if interval is None:
                left = mid
            else:
                right = mid
                merged = 0.5 * (interval[0] + interval[1])
        return 0.5 * (left + right), merged

    def collapse(self, upper: np.ndarray, lower: np.ndarray, t_star: float) -> None:
        """Merge both profiles onto their midpoint up to the crossing index."""
        if t_star <= 0.0 or t_star >= self.T:
            return
        j = min(int(t_star / self.T * (self.M - 1)), self.M - 2)
        mid = 0.5 * (upper[j] + lower[j])
        upper[: j + 1] = mid
        lower[: j + 1] = mid

    def _recollapse(self, upper: np.ndarray, lower: np.ndarray, t_star: float) -> float:
        """Merge any leading stretch where PAV left ``lower > upper``."""
        crossed = np.nonzero(lower[:-1] > upper[:-1])[0]
        if len(crossed) == 0:
            return t_star
        j = int(crossed[-1])
        mid = 0.5 * (upper[j] + lower[j])
        mid = min(max(mid, lower[j + 1]), upper[j + 1])
        upper[: j + 1] = mid
        lower[: j + 1] = mid
        self._flag(Diagnostic.BOUNDARY_ORDERING_VIOLATION)
        return max(t_star, float(self.grid[j]))

    # ------------------------------------------------------------------
    def _initial_profiles(self, seeds: BoundarySeeds,
                          initial: Optional[Tuple[BoundarySample, BoundarySample]]):
        if initial is not None:
            up, lo = initial
            taus = self.T - self.grid
            upper = np.interp(taus, up.times, up.values)
            lower = np.interp(taus, lo.times, lo.values)
        else:
            upper = np.full(self.M, float(seeds.upper))
            lower = np.full(self.M, float(seeds.lower))
        upper[-1] = self.K
        lower[-1] = self.X
        return upper, lower

    def sweep(self, upper: np.ndarray, lower: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        One FP-B' pass from expiry back to the valuation date.

        Each point is searched between its neighbours towards expiry, which
        keeps ``lower <= upper`` and both monotone. Once the exercise
        interval closes, every earlier point takes the merged value.
        """
        upper = upper.copy()
        lower = lower.copy()
        upper[-1] = self.K
        lower[-1] = self.X
        for i in range(self.M - 2, -1, -1):
            nodes = self.kim_nodes(float(self.grid[i]), i + 1, upper, lower)
            interval = self.exercise_interval(nodes, lower[i + 1], upper[i + 1])
            if interval is None:
                t_star, merged = self.bisect_closing_time(i, upper, lower)
                upper[: i + 1] = merged
                lower[: i + 1] = merged
                return upper, lower, t_star
            upper[i], lower[i] = interval
        return upper, lower, 0.0

    def refine(self, seeds: BoundarySeeds,
               initial: Optional[Tuple[BoundarySample, BoundarySample]] = None) -> KimRefinement:
        """
        Run FP-B' sweeps from constant seeds (or from a supplied pair of
        profiles) until the largest change of a point falls below
        ``kim_tolerance``.

        Seeds and profiles are put-space values.
        """
        cfg = self.config
        upper, lower = self._initial_profiles(seeds, initial)

        t_star = self.find_crossing_time(upper, lower)
        t_star = self.refine_crossing_time(upper, lower, t_star)
        self.collapse(upper, lower, t_star)
        if t_star > 0.0:
            logger.info("initial boundaries cross at t*=%.4f", t_star)

        history: List[float] = []
        converged = False
        residual = math.inf
        iteration = 0
        for iteration in range(1, cfg.kim_max_iterations + 1):
            upper_new, lower_new, t_star = self.sweep(upper, lower)
            residual = float(max(np.max(np.abs(upper_new - upper)), np.max(np.abs(lower_new - lower))))
            history.append(residual)
            upper, lower = upper_new, lower_new
            logger.debug("FP-B' sweep %d: max change = %.3e, t* = %.4f", iteration, residual, t_star)
            if residual < cfg.kim_tolerance:
                converged = True
                break

        if not converged:
            logger.warning("FP-B' did not converge in %d iterations (residual %.3e)", iteration, residual)
            self._flag(Diagnostic.CONVERGENCE_FAILURE)

        # upper grows towards K and lower falls towards K r/q as expiry approaches
        upper = pool_adjacent_violators(upper, True)
        lower = pool_adjacent_violators(lower, False)
        t_star = self._recollapse(upper, lower, t_star)

        taus = (self.T - self.grid)[::-1]
        return KimRefinement(
            upper=BoundarySample(taus, upper[::-1]),
            lower=BoundarySample(taus, lower[::-1]),
            crossing_time=float(t_star),
            iterations=iteration,
            residual=residual,
            residual_history=tuple(history),
            converged=converged,
            diagnostics=tuple(self.diagnostics),
        )


def refine_boundaries(params: MarketParameters, seeds: BoundarySeeds,
                      initial: Optional[Tuple[BoundarySample, BoundarySample]] = None,
                      config: Optional[SolverConfig] = None) -> KimRefinement:
    """
    Refine QD+ seeds into full boundary profiles.

    ``seeds`` and ``initial`` are in the option's own space, and so is the
    result: for a call the put-space profiles are reflected back.
    """
    refiner = KimIntegralRefiner(params, config)
    if params.is_call:
        seeds = seeds.reflect(params.strike)
        if initial is not None:
            k2 = params.strike * params.strike
            up, lo = initial
            initial = (BoundarySample(lo.times, k2 / np.asarray(lo.values)),
                       BoundarySample(up.times, k2 / np.asarray(up.values)))
    result = refiner.refine(seeds, initial)
    if params.is_call:
        return result.reflect(params.strike)
    return result
