"""
Pricing pipeline: classify -> seed -> refine -> integrate.

* no early exercise: the European value,
* one boundary: QD+ seeds, FP-B collocation, premium integral,
* two boundaries: QD+ seeds, FP-B' Kim refinement, Chebyshev fit,
  premium integral.

Calls go through put-call symmetry ``C(S, K, r, q) = (S/K) P(K^2/S, K, q, r)``.
Greeks come from bump-and-reprice; every bump is an independent ``price``
call on a fresh parameter set.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .black_scholes import european_price
from .config import (
    DEFAULT_CONFIG,
    MAX_MATURITY,
    MAX_RATE,
    MAX_VOLATILITY,
    MIN_MATURITY,
    MIN_RATE,
    MIN_VOLATILITY,
    SolverConfig,
)
from .errors import Diagnostic, InvalidParameters, UnsupportedRegime
from .fixed_point import SingleBoundarySolver
from .kim_refiner import KimIntegralRefiner, refine_boundaries
from .market import MarketParameters
from .premium import PremiumIntegrator
from .qd_plus import QDPlusApproximator, approximate_boundaries
from .regime import ExerciseRegime, classify_regime, critical_volatility, exercise_limit
from .spectral import BoundaryFunction

logger = logging.getLogger(__name__)

__all__ = [
    "DoubleBoundaryEngine",
    "Greeks",
    "PricingResult",
    "approximate_boundaries",
    "classify_regime",
    "price",
    "refine_boundaries",
]


@dataclass(frozen=True)
class PricingResult:
    """
    Outcome of one pricing call.

    Boundaries are given in the option's own space: a put exercises for
    ``lower <= S <= upper`` (``lower`` is None with a single boundary), a
    call for ``S >= lower`` (and ``S <= upper`` with two boundaries).
    """

    price: float
    regime: ExerciseRegime
    critical_volatility: float
    crossing_time: float
    iterations: int
    final_residual: float
    converged: bool
    european_price: float
    premium: float
    upper_boundary: Optional[BoundaryFunction] = None
    lower_boundary: Optional[BoundaryFunction] = None
    qd_upper: float = math.nan
    qd_lower: float = math.nan
    method: str = ""
    diagnostics: Tuple[Diagnostic, ...] = ()
    residual_history: Tuple[float, ...] = ()
    params: Optional[MarketParameters] = None

    @property
    def is_valid(self) -> bool:
        return math.isfinite(self.price) and self.price >= 0.0 and math.isfinite(self.final_residual)

    @property
    def upper_improvement(self) -> float:
        """Distance the refined upper boundary moved away from its QD+ seed, at valuation."""
        if self.upper_boundary is None or not math.isfinite(self.qd_upper):
            return math.nan
        return abs(self.upper_boundary.evaluate(self.upper_boundary.tau_max) - self.qd_upper)

    @property
    def lower_improvement(self) -> float:
        if self.lower_boundary is None or not math.isfinite(self.qd_lower):
            return math.nan
        return abs(self.lower_boundary.evaluate(self.lower_boundary.tau_max) - self.qd_lower)

    @property
    def time_value(self) -> float:
        if self.params is None:
            return math.nan
        return self.price - self.params.intrinsic()

    def boundary_frame(self, n: int = 50) -> pd.DataFrame:
        """Boundaries on ``n`` equally spaced times to maturity (NaN where absent)."""
        maturity = self.params.maturity if self.params is not None else None
        for fn in (self.upper_boundary, self.lower_boundary):
            if fn is not None:
                maturity = fn.tau_max
        if maturity is None:
            return pd.DataFrame(columns=["tau", "upper", "lower"])
        tau = np.linspace(0.0, maturity, int(n))
        upper = self.upper_boundary.evaluate(tau) if self.upper_boundary is not None else np.full(len(tau), np.nan)
        lower = self.lower_boundary.evaluate(tau) if self.lower_boundary is not None else np.full(len(tau), np.nan)
        return pd.DataFrame({"tau": tau, "upper": upper, "lower": lower})


@dataclass(frozen=True)
class Greeks:
    """Bump-and-reprice sensitivities; vega and rho per unit, theta per year."""

    price: float
    delta: float
    gamma: float
    vega: float
    theta: float
    rho: float


class DoubleBoundaryEngine:
    """
    American option pricer for one- and two-boundary exercise regions.

    Parameters
    ----------
    config : SolverConfig, optional
        Numerical settings; defaults to ``SolverConfig.standard()``.
    """

    def __init__(self, config: Optional[SolverConfig] = None):
        self.config = config or DEFAULT_CONFIG

    # ------------------------------------------------------------------
    def price(self, params: MarketParameters) -> PricingResult:
        regime = classify_regime(params.rate, params.dividend_yield, params.volatility, params.is_call)
        put = params.to_put_space()
        sigma_star = critical_volatility(put.rate, put.dividend_yield)
        euro = european_price(params.spot, params.strike, params.maturity, params.rate,
                              params.dividend_yield, params.volatility, params.is_call)

        if regime is ExerciseRegime.DEGENERATE:
            raise UnsupportedRegime(f"cannot price {params.option_type} in a degenerate regime", regime)

        common = dict(regime=regime, critical_volatility=sigma_star, european_price=euro, params=params)

        if regime is ExerciseRegime.NO_EARLY_EXERCISE or (regime.has_single_boundary and put.rate <= 0.0):
            logger.info("%s: no early exercise, European value", params.option_type)
            return PricingResult(price=euro, crossing_time=0.0, iterations=0, final_residual=0.0,
                                 converged=True, premium=0.0, method="European (no early exercise)",
                                 **common)

        if regime.has_single_boundary:
            return self._price_single(params, put, common)
        return self._price_double(params, put, common)

    def _price_single(self, params: MarketParameters, put: MarketParameters, common: dict) -> PricingResult:
        logger.info("%s: single boundary, QD+ seeded FP-B", params.option_type)
        solution = SingleBoundarySolver(put, self.config).solve()
        diagnostics = list(solution.diagnostics)
        boundary = solution.boundary
        scale = params.symmetry_scale

        if put.spot <= boundary.evaluate(put.maturity):
            value, premium, method = params.intrinsic(), 0.0, "immediate exercise"
        else:
            premium, used_fallback = PremiumIntegrator(put, self.config).premium(put.spot, boundary)
            if used_fallback:
                diagnostics.append(Diagnostic.QUADRATURE_FALLBACK)
            premium *= scale
            value = max(common["european_price"] + premium, params.intrinsic())
            method = "QD+ / FP-B single boundary"

        if params.is_call:
            upper_fn, lower_fn = None, boundary.as_call(params.strike)
            qd_upper, qd_lower = math.inf, params.strike ** 2 / solution.qd_boundary
        else:
            upper_fn, lower_fn = boundary, None
            qd_upper, qd_lower = solution.qd_boundary, 0.0

        return PricingResult(
            price=value,
            crossing_time=0.0,
            iterations=solution.iterations,
            final_residual=solution.residual,
            converged=solution.converged,
            premium=premium,
            upper_boundary=upper_fn,
            lower_boundary=lower_fn,
            qd_upper=qd_upper,
            qd_lower=qd_lower,
            method=method,
            diagnostics=tuple(diagnostics),
            residual_history=solution.residual_history,
            **common,
        )

    def _price_double(self, params: MarketParameters, put: MarketParameters, common: dict) -> PricingResult:
        logger.info("%s: double boundary, QD+ seeds + FP-B' Kim refinement", params.option_type)
        cfg = self.config
        seeds = QDPlusApproximator(put, cfg).approximate_put_space()
        refinement = KimIntegralRefiner(put, cfg).refine(seeds)

        X = exercise_limit(put.strike, put.rate, put.dividend_yield)
        upper = BoundaryFunction.from_samples(refinement.upper, X, nodes=cfg.spectral_nodes, sign=1.0)
        lower = BoundaryFunction.from_samples(refinement.lower, X, nodes=cfg.spectral_nodes, sign=1.0)
        logger.debug("spectral fit decay rates: upper %.2f, lower %.2f",
                     upper.convergence_rate(), lower.convergence_rate())

        diagnostics = list(seeds.diagnostics)
        for flag in refinement.diagnostics:
            if flag not in diagnostics:
                diagnostics.append(flag)

        T = put.maturity
        if lower.evaluate(T) <= put.spot <= upper.evaluate(T):
            value, premium, method = params.intrinsic(), 0.0, "immediate exercise"
        else:
            premium, used_fallback = PremiumIntegrator(put, cfg).premium(put.spot, upper, lower)
            if used_fallback:
                diagnostics.append(Diagnostic.QUADRATURE_FALLBACK)
            premium *= params.symmetry_scale
            value = max(common["european_price"] + premium, params.intrinsic())
            method = f"{seeds.method} / FP-B' Kim refinement"

        if params.is_call:
            k2 = params.strike ** 2
            upper_fn, lower_fn = lower.as_call(params.strike), upper.as_call(params.strike)
            qd_upper, qd_lower = k2 / seeds.lower, k2 / seeds.upper
        else:
            upper_fn, lower_fn = upper, lower
            qd_upper, qd_lower = seeds.upper, seeds.lower

        return PricingResult(
            price=value,
            crossing_time=refinement.crossing_time,
            iterations=refinement.iterations,
            final_residual=refinement.residual,
            converged=refinement.converged,
            premium=premium,
            upper_boundary=upper_fn,
            lower_boundary=lower_fn,
            qd_upper=qd_upper,
            qd_lower=qd_lower,
            method=method,
            diagnostics=tuple(diagnostics),
            residual_history=refinement.residual_history,
            **common,
        )

    # ------------------------------------------------------------------
    def _bumped(self, params: MarketParameters, name: str, step: float, lo: float, hi: float):
        """Prices at ``value +/- step`` clipped to ``[lo, hi]``, and the actual spacing."""
        value = getattr(params, name)
        up = min(value + step, hi)
        down = max(value - step, lo)
        p_up = self.price(params.replace(**{name: up})).price
        p_down = self.price(params.replace(**{name: down})).price
        return p_up, p_down, up - down

    def _theta(self, params: MarketParameters, base: float) -> float:
        """
        Calendar decay ``-dV/dT`` by a central difference in maturity.

        The step shrinks for short maturities so the shorter leg stays above
        ``MIN_MATURITY``; at ``MAX_MATURITY`` only the shorter leg exists.
        """
        T = params.maturity
        dt = min(self.config.time_bump, 0.25 * (T - MIN_MATURITY))
        p_short = self.price(params.replace(maturity=T - dt)).price
        if T + dt > MAX_MATURITY:
            return (p_short - base) / dt
        p_long = self.price(params.replace(maturity=T + dt)).price
        return (p_short - p_long) / (2.0 * dt)

    def greeks(self, params: MarketParameters) -> Greeks:
        cfg = self.config
        base = self.price(params).price

        h = cfg.spot_bump * params.spot
        up = self.price(params.replace(spot=params.spot + h)).price
        down = self.price(params.replace(spot=params.spot - h)).price
        delta = (up - down) / (2.0 * h)
        gamma = (up - 2.0 * base + down) / (h * h)

        v_up, v_down, dv = self._bumped(params, "volatility", cfg.vol_bump, MIN_VOLATILITY, MAX_VOLATILITY)
        r_up, r_down, dr = self._bumped(params, "rate", cfg.rate_bump, MIN_RATE, MAX_RATE)

        theta = self._theta(params, base)

        return Greeks(
            price=base,
            delta=delta,
            gamma=gamma,
            vega=(v_up - v_down) / dv,
            theta=theta,
            rho=(r_up - r_down) / dr,
        )

    def sensitivity(self, params: MarketParameters, spot_min: float, spot_max: float,
                    steps: int = 11) -> pd.DataFrame:
        """Price and Greeks over an evenly spaced spot ladder."""
        if not (math.isfinite(spot_min) and math.isfinite(spot_max)) or spot_min <= 0.0:
            raise InvalidParameters("spot range must be finite and positive")
        if spot_min >= spot_max:
            raise InvalidParameters(f"spot_min must be below spot_max, got {spot_min} >= {spot_max}")
        if int(steps) < 2:
            raise InvalidParameters(f"steps must be >= 2, got {steps}")

        rows = []
        for spot in np.linspace(spot_min, spot_max, int(steps)):
            bumped = params.replace(spot=float(spot))
            result = self.price(bumped)
            g = self.greeks(bumped)
            rows.append({
                "spot": float(spot),
                "price": result.price,
                "european": result.european_price,
                "premium": result.premium,
                "delta": g.delta,
                "gamma": g.gamma,
                "vega": g.vega,
                "theta": g.theta,
                "rho": g.rho,
                "regime": result.regime.value,
            })
        return pd.DataFrame(rows)


def price(params: MarketParameters, config: Optional[SolverConfig] = None) -> PricingResult:
    return DoubleBoundaryEngine(config).price(params)


if __name__ == "__main__":
    engine = DoubleBoundaryEngine(SolverConfig.high_precision())
    res = engine.price(MarketParameters(36.0, 40.0, 1.0, 0.06, 0.02, 0.2))
    print(f"benchmark put: {res.price:.8f} (tree reference 4.6874349), {res.method}, "
          f"{res.iterations} iterations, residual {res.final_residual:.2e}")

    res = DoubleBoundaryEngine().price(MarketParameters(100.0, 100.0, 5.0, -0.01, -0.02, 0.05))
    print(f"double boundary put: {res.price:.6f} (European {res.european_price:.6f}), "
          f"crossing {res.crossing_time:.4f}, diagnostics {[d.value for d in res.diagnostics]}")
    print(res.boundary_frame(6))
