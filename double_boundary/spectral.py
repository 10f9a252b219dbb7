"""
Chebyshev representation of exercise boundaries.

A boundary sampled on a time-to-maturity grid is mapped through

    xi = sqrt(tau / tau_max),  x = 2 xi - 1,
    G = ln(B / X),             H = G^2,

with ``X = K min(1, r/q)`` the expiry limit of the put boundary, and ``H`` is
interpolated on Chebyshev-Gauss-Lobatto nodes. The square-root clock puts
most nodes near expiry where the boundary moves fastest, and ``H`` behaves
like ``tau`` for small ``tau`` which the polynomial fits easily
(Andersen, Lake & Offengelden, 2016).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.polynomial import chebyshev as C
from scipy.fft import dct


def cgl_nodes(n: int) -> np.ndarray:
    """Chebyshev-Gauss-Lobatto nodes ``cos(pi j / (n - 1))``, from 1 down to -1."""
    if n < 2:
        raise ValueError("need at least two Chebyshev nodes")
    return np.cos(np.pi * np.arange(n) / (n - 1))


def _readonly(values) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class BoundarySample:
    """
    Boundary values on an ascending time-to-maturity grid.

    Instances are snapshots: both arrays are copied and made read-only, so
    an iteration that produces a new profile has to build a new sample.
    """

    times: np.ndarray
    values: np.ndarray

    def __post_init__(self) -> None:
        times = _readonly(self.times)
        values = _readonly(self.values)
        if times.ndim != 1 or times.shape != values.shape:
            raise ValueError("times and values must be 1-D arrays of the same length")
        if len(times) > 1 and np.any(np.diff(times) < 0.0):
            raise ValueError("times must be ascending")
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.times)

    def at(self, tau):
        """Linear interpolation, flat outside the grid."""
        out = np.interp(tau, self.times, self.values)
        return float(out) if np.ndim(out) == 0 else out

    def max_abs_change(self, other: "BoundarySample") -> float:
        return float(np.max(np.abs(self.values - np.asarray(other.values))))


class ChebyshevInterpolant:
    """
    Polynomial through values given at the CGL nodes of [-1, 1].

    Coefficients come from a type-I DCT; evaluation uses Clenshaw's
    recurrence (``numpy.polynomial.chebyshev.chebval``).
    """

    def __init__(self, node_values):
        values = np.asarray(node_values, dtype=float)
        n = len(values)
        if n < 2:
            raise ValueError("need at least two node values")
        coeffs = dct(values, type=1) / (n - 1)
        coeffs[0] *= 0.5
        coeffs[-1] *= 0.5
        self._coeffs = _readonly(coeffs)
        self._deriv = _readonly(C.chebder(coeffs))

    @property
    def coefficients(self) -> np.ndarray:
        return self._coeffs.copy()

    @property
    def size(self) -> int:
        return len(self._coeffs)

    def __call__(self, x):
        return C.chebval(x, self._coeffs)

    def derivative(self, x):
        return C.chebval(x, self._deriv)

    def convergence_rate(self) -> float:
        """
        Decay rate of the tail coefficients.

        Negated slope of ``log|a_k|`` against ``log k`` over the last five
        coefficients; NaN with fewer than five. A well-resolved smooth
        boundary gives a large positive number.
        """
        n = self.size
        if n < 5:
            return math.nan
        k = np.arange(max(1, n - 5), n)
        mags = np.abs(self._coeffs[k]) + 1e-300
        slope = np.polyfit(np.log(k), np.log(mags), 1)[0]
        return float(-slope)


class BoundaryFunction:
    """
    Smooth, immutable exercise boundary on ``[0, tau_max]``.

    Parameters
    ----------
    interpolant : ChebyshevInterpolant
        Fit of ``H`` on the CGL nodes in ``x``.
    tau_max : float
        Maturity the clock ``xi = sqrt(tau / tau_max)`` is normalised to.
    limit : float
        ``X``, the put boundary at expiry used to normalise ``B``.
    sign : float
        Branch of ``G = ln(B / X)``: -1 for boundaries below ``X``
        (single-boundary puts), +1 above it (both double-boundary puts).
    strike : float, optional
        Needed only when ``is_call`` is set.
    is_call : bool
        The fit is done in put space; a call boundary is returned as
        ``K^2 / B``.
    """

    def __init__(self, interpolant: ChebyshevInterpolant, tau_max: float, limit: float,
                 sign: float = -1.0, strike: Optional[float] = None, is_call: bool = False):
        if tau_max <= 0.0:
            raise ValueError("tau_max must be positive")
        if limit <= 0.0:
            raise ValueError("limit must be positive")
        if is_call and strike is None:
            raise ValueError("a call boundary needs the strike")
        self._interp = interpolant
        self.tau_max = float(tau_max)
        self.limit = float(limit)
        self.sign = 1.0 if sign >= 0.0 else -1.0
        self.strike = None if strike is None else float(strike)
        self.is_call = bool(is_call)

    @classmethod
    def from_node_values(cls, H_values, tau_max, limit, sign=-1.0, strike=None, is_call=False):
        return cls(ChebyshevInterpolant(H_values), tau_max, limit, sign, strike, is_call)

    @classmethod
    def from_boundary_values(cls, values, tau_max, limit, sign=-1.0, strike=None, is_call=False):
        """Build from put-space boundary values already sitting on the CGL nodes."""
        G = np.log(np.maximum(np.asarray(values, dtype=float), 1e-300) / limit)
        # a sample on the wrong side of X is pinned to X
        G = sign * np.maximum(sign * G, 0.0)
        return cls.from_node_values(G * G, tau_max, limit, sign, strike, is_call)

    @classmethod
    def from_samples(cls, sample: BoundarySample, limit: float, nodes: int = 12,
                     sign: Optional[float] = None, strike=None, is_call=False):
        """
        Resample a put-space boundary onto ``nodes`` CGL nodes and fit it.

        ``sign`` defaults to the side of ``X`` the bulk of the samples sit on.
        """
        tau_max = float(sample.times[-1])
        if sign is None:
            sign = 1.0 if np.median(sample.values) >= limit else -1.0
        taus = node_times(nodes, tau_max)
        values = np.interp(taus, sample.times, sample.values)
        return cls.from_boundary_values(values, tau_max, limit, sign, strike, is_call)

    @property
    def nodes(self) -> int:
        return self._interp.size

    @property
    def coefficients(self) -> np.ndarray:
        return self._interp.coefficients

    def convergence_rate(self) -> float:
        return self._interp.convergence_rate()

    def _x(self, tau):
        tau = np.clip(np.asarray(tau, dtype=float), 0.0, self.tau_max)
        return 2.0 * np.sqrt(tau / self.tau_max) - 1.0, tau

    def _put_value(self, tau):
        x, _ = self._x(tau)
        H = np.maximum(self._interp(x), 0.0)
        return self.limit * np.exp(self.sign * np.sqrt(H))

    def evaluate(self, tau):
        B = self._put_value(tau)
        if self.is_call:
            B = self.strike * self.strike / B
        return float(B) if np.ndim(B) == 0 else B

    __call__ = evaluate

    def derivative(self, tau):
        """
        ``dB/dtau`` from the chain rule through the transform.

        ``dB/dtau = B sign H'(x) / (2 sqrt(H) sqrt(tau tau_max))``; where
        ``H`` or ``tau`` vanish the formula is 0/0 and a one-sided finite
        difference is used instead.
        """
        scalar = np.ndim(tau) == 0
        x, t = self._x(np.atleast_1d(tau))
        H = np.maximum(self._interp(x), 0.0)
        dH = self._interp.derivative(x)
        B = self.limit * np.exp(self.sign * np.sqrt(H))

        out = np.empty_like(t)
        regular = (H > 1e-14) & (t > 1e-12 * self.tau_max)
        out[regular] = (B[regular] * self.sign * dH[regular]
                        / (2.0 * np.sqrt(H[regular]) * np.sqrt(t[regular] * self.tau_max)))
        if np.any(~regular):
            step = 1e-6 * self.tau_max
            lo = np.clip(t[~regular] - step, 0.0, self.tau_max)
            hi = np.clip(t[~regular] + step, 0.0, self.tau_max)
            out[~regular] = (self._put_value(hi) - self._put_value(lo)) / (hi - lo)

        if self.is_call:
            out = -self.strike * self.strike / (B * B) * out
        return float(out[0]) if scalar else out

    def as_call(self, strike: float) -> "BoundaryFunction":
        """Same fit, read back as the call boundary ``K^2 / B``."""
        return BoundaryFunction(self._interp, self.tau_max, self.limit, self.sign, strike, is_call=True)

    def samples(self, n: int = 50) -> BoundarySample:
        taus = np.linspace(0.0, self.tau_max, int(n))
        return BoundarySample(taus, self.evaluate(taus))

    def __repr__(self) -> str:
        side = "call" if self.is_call else "put"
        return (f"BoundaryFunction({side}, nodes={self.nodes}, tau_max={self.tau_max:g}, "
                f"limit={self.limit:g}, sign={self.sign:+.0f})")


def node_times(n: int, tau_max: float) -> np.ndarray:
    """Times to maturity of the ``n`` CGL nodes under the square-root clock."""
    xi = 0.5 * (cgl_nodes(n) + 1.0)
    return tau_max * xi * xi
