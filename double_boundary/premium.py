from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

from .black_scholes import norm_cdf
from .config import DEFAULT_CONFIG, SolverConfig
from .market import MarketParameters
from .quadrature import integrate_with_fallback
from .spectral import BoundaryFunction

logger = logging.getLogger(__name__)


class PremiumIntegrator:
    """
    Early-exercise premium of a put with one or two exercise boundaries.

        e(S) = int_0^T  r K e^{-rs} [Phi(-d-(s, S/u)) - Phi(-d-(s, S/l))]
                      - q S e^{-qs} [Phi(-d+(s, S/u)) - Phi(-d+(s, S/l))] ds

    with ``u = upper(T - s)`` and ``l = lower(T - s)``. Without a lower
    boundary the ``l`` terms vanish and this is the usual single-boundary
    premium. The integral runs through the adaptive Gauss-Lobatto rule and
    drops to composite Simpson if that fails.
    """

    def __init__(self, params: MarketParameters, config: Optional[SolverConfig] = None):
        put = params.to_put_space()
        self.K = put.strike
        self.T = put.maturity
        self.r = put.rate
        self.q = put.dividend_yield
        self.sigma = put.volatility
        self.config = config or DEFAULT_CONFIG

    def _cdf_neg_d(self, s: float, ratio: float, plus: bool) -> float:
        if ratio <= 0.0:
            return 1.0
        if math.isinf(ratio):
            return 0.0
        log_ratio = math.log(ratio)
        if s <= 1e-14:
            if log_ratio > 0.0:
                return 0.0
            return 1.0 if log_ratio < 0.0 else 0.5
        vol = self.sigma * math.sqrt(s)
        drift = (self.r - self.q) * s + (0.5 if plus else -0.5) * vol * vol
        return float(norm_cdf(-(log_ratio + drift) / vol))

    def integrand(self, s: float, spot: float, upper: BoundaryFunction,
                  lower: Optional[BoundaryFunction] = None) -> float:
        tau = self.T - s
        u = upper.evaluate(tau)
        minus = self._cdf_neg_d(s, spot / u, False)
        plus = self._cdf_neg_d(s, spot / u, True)
        if lower is not None:
            l = lower.evaluate(tau)
            minus -= self._cdf_neg_d(s, spot / l, False)
            plus -= self._cdf_neg_d(s, spot / l, True)
        return (self.r * self.K * math.exp(-self.r * s) * minus
                - self.q * spot * math.exp(-self.q * s) * plus)

    def premium(self, spot: float, upper: BoundaryFunction,
                lower: Optional[BoundaryFunction] = None) -> Tuple[float, bool]:
        """
        Returns
        -------
        (premium, used_fallback)
        """
        cfg = self.config
        value, used_fallback = integrate_with_fallback(
            lambda s: self.integrand(s, spot, upper, lower),
            0.0,
            self.T,
            tolerance=cfg.quadrature_tolerance,
            max_evaluations=cfg.quadrature_max_evaluations,
            simpson_points=cfg.simpson_points,
        )
        logger.debug("early-exercise premium at S=%g: %.10g (fallback=%s)", spot, value, used_fallback)
        return value, used_fallback


def early_exercise_premium(params: MarketParameters, upper: BoundaryFunction,
                           lower: Optional[BoundaryFunction] = None,
                           config: Optional[SolverConfig] = None) -> Tuple[float, bool]:
    """Premium of the put-space equivalent of ``params`` at its own spot."""
    put = params.to_put_space()
    return PremiumIntegrator(put, config).premium(put.spot, upper, lower)
