from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .black_scholes import norm_cdf
from .config import DEFAULT_CONFIG, SolverConfig
from .errors import Diagnostic
from .market import MarketParameters
from .qd_plus import QDPlusApproximator
from .quadrature import GaussLegendreRule
from .regime import exercise_limit
from .spectral import BoundaryFunction, node_times

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixedPointSolution:
    boundary: BoundaryFunction
    iterations: int
    residual: float
    residual_history: Tuple[float, ...]
    converged: bool
    qd_boundary: float
    diagnostics: Tuple[Diagnostic, ...] = ()


@dataclass
class SingleBoundarySolver:
    """
    Early-exercise boundary of a single-boundary American put.

    Solves the FP-B form of the integral equation (Andersen, Lake &
    Offengelden, 2016)

        B(tau) = K exp(-(r - q) tau) N(tau, B) / D(tau, B)

    on Chebyshev collocation nodes in ``sqrt(tau)``, with every node seeded
    by QD+. The inner integrals use a fixed Gauss-Legendre rule after the
    substitution ``tau - u = tau (1 + y)^2 / 4`` which removes the
    ``sqrt`` behaviour at ``u = tau``.

    Parameters
    ----------
    params : MarketParameters
        A put (calls are mapped to put space by the caller or here).
    config : SolverConfig
        ``spectral_nodes``, ``gk_rule``, ``tolerance`` and
        ``max_iterations`` are used.
    """

    params: MarketParameters
    config: SolverConfig = field(default_factory=lambda: DEFAULT_CONFIG)

    def __post_init__(self) -> None:
        put = self.params.to_put_space()
        self.K = put.strike
        self.r = put.rate
        self.q = put.dividend_yield
        self.sigma = put.volatility
        self.T = put.maturity
        self.X = exercise_limit(self.K, self.r, self.q)
        self._rule = GaussLegendreRule(rule=self.config.gk_rule)
        self._qd = QDPlusApproximator(put, self.config)

    def d_plus(self, tau, z):
        vol = self.sigma * np.sqrt(tau)
        return (np.log(z) + (self.r - self.q) * tau + 0.5 * vol * vol) / vol

    def d_minus(self, tau, z):
        return self.d_plus(tau, z) - self.sigma * np.sqrt(tau)

    def _integrals(self, tau: float, B_tau: float, boundary: BoundaryFunction) -> Tuple[float, float]:
        """Integral parts of N and D at ``tau``, vectorised over the rule's nodes."""
        z = 0.5 * (1.0 + self._rule.nodes)
        s = tau * z * z
        u = tau - s
        jac = tau * z * self._rule.weights
        ratio = B_tau / boundary.evaluate(u)
        dp = self.d_plus(s, ratio)
        dm = dp - self.sigma * np.sqrt(s)
        n_int = self.r * np.sum(jac * np.exp(self.r * u) * norm_cdf(dm))
        d_int = self.q * np.sum(jac * np.exp(self.q * u) * norm_cdf(dp))
        return float(n_int), float(d_int)

    def _boundary_update(self, tau: float, B_tau: float, boundary: BoundaryFunction) -> float:
        n_int, d_int = self._integrals(tau, B_tau, boundary)
        N = float(norm_cdf(self.d_minus(tau, B_tau / self.K))) + n_int
        D = float(norm_cdf(self.d_plus(tau, B_tau / self.K))) + d_int
        if not (math.isfinite(N) and math.isfinite(D)) or D <= 1e-300:
            return math.nan
        return self.K * math.exp(-(self.r - self.q) * tau) * N / D

    def initial_boundary(self, taus: np.ndarray) -> np.ndarray:
        return np.array([self._qd.boundary_at(t) for t in taus])

    def solve(self) -> FixedPointSolution:
        cfg = self.config
        n = cfg.spectral_nodes
        taus = node_times(n, self.T)
        B = np.minimum(self.initial_boundary(taus), self.X)
        B[taus <= 0.0] = self.X
        qd_boundary = float(B[0])
        diagnostics: List[Diagnostic] = list(self._qd.diagnostics)

        history: List[float] = []
        converged = False
        residual = math.inf
        iterations = 0
        for iterations in range(1, cfg.max_iterations + 1):
            boundary = BoundaryFunction.from_boundary_values(B, self.T, self.X, sign=-1.0)
            B_new = B.copy()
            for i, tau in enumerate(taus):
                if tau <= 0.0:
                    continue
                value = self._boundary_update(tau, B[i], boundary)
                if not math.isfinite(value) or value <= 0.0:
                    if Diagnostic.NUMERICAL_SINGULARITY not in diagnostics:
                        diagnostics.append(Diagnostic.NUMERICAL_SINGULARITY)
                    continue
                B_new[i] = min(value, self.X)

            residual = float(np.max(np.abs(B_new - B)) / self.K)
            history.append(residual)
            B = B_new
            logger.debug("FP-B iteration %d: max|dB|/K = %.3e", iterations, residual)
            if residual < cfg.tolerance:
                converged = True
                break

        if not converged:
            logger.warning("single-boundary fixed point stopped after %d iterations, residual %.3e",
                           iterations, residual)
            diagnostics.append(Diagnostic.CONVERGENCE_FAILURE)

        return FixedPointSolution(
            boundary=BoundaryFunction.from_boundary_values(B, self.T, self.X, sign=-1.0),
            iterations=iterations,
            residual=residual,
            residual_history=tuple(history),
            converged=converged,
            qd_boundary=qd_boundary,
            diagnostics=tuple(diagnostics),
        )


def solve_single_boundary(params: MarketParameters, config: Optional[SolverConfig] = None) -> FixedPointSolution:
    return SingleBoundarySolver(params, config or DEFAULT_CONFIG).solve()


if __name__ == "__main__":
    sol = solve_single_boundary(MarketParameters(36.0, 40.0, 1.0, 0.06, 0.02, 0.2))
    print("iterations:", sol.iterations, "residual:", sol.residual)
    for t in np.linspace(0.0, 1.0, 6):
        print(f"  tau={t:.2f}  B={sol.boundary.evaluate(t):.6f}")
