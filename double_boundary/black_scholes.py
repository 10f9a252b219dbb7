"""European Black-Scholes values and Greeks with a continuous yield."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.special import ndtr
from scipy.stats import norm


def norm_cdf(x):
    return ndtr(x)


def norm_pdf(x):
    return norm.pdf(x)


def d1(S, K, tau, r, q, sigma):
    S = np.asarray(S, dtype=float)
    K = np.asarray(K, dtype=float)
    tau = np.asarray(tau, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        vol = sigma * np.sqrt(tau)
        out = (np.log(S / K) + (r - q + 0.5 * sigma * sigma) * tau) / vol
    return out


def d2(S, K, tau, r, q, sigma):
    return d1(S, K, tau, r, q, sigma) - sigma * np.sqrt(np.asarray(tau, dtype=float))


def european_price(S, K, tau, r, q, sigma, is_call=False):
    """
    European price; ``tau <= 0`` gives the payoff.

    Works on scalars and on numpy arrays of spots.
    """
    S_arr = np.asarray(S, dtype=float)
    phi = 1.0 if is_call else -1.0
    if tau <= 0.0:
        out = np.maximum(phi * (S_arr - K), 0.0)
        return float(out) if out.ndim == 0 else out

    a = d1(S_arr, K, tau, r, q, sigma)
    b = a - sigma * np.sqrt(tau)
    out = phi * (S_arr * np.exp(-q * tau) * ndtr(phi * a) - K * np.exp(-r * tau) * ndtr(phi * b))
    return float(out) if np.ndim(out) == 0 else out


def delta(S, K, tau, r, q, sigma, is_call=False):
    phi = 1.0 if is_call else -1.0
    a = d1(S, K, tau, r, q, sigma)
    return float(phi * np.exp(-q * tau) * ndtr(phi * a))


def gamma(S, K, tau, r, q, sigma):
    a = d1(S, K, tau, r, q, sigma)
    return float(np.exp(-q * tau) * norm.pdf(a) / (S * sigma * np.sqrt(tau)))


def vega(S, K, tau, r, q, sigma):
    a = d1(S, K, tau, r, q, sigma)
    return float(S * np.exp(-q * tau) * norm.pdf(a) * np.sqrt(tau))


def theta(S, K, tau, r, q, sigma, is_call=False):
    """Calendar-time derivative dV/dt (negative of dV/dtau)."""
    phi = 1.0 if is_call else -1.0
    a = d1(S, K, tau, r, q, sigma)
    b = a - sigma * np.sqrt(tau)
    decay = -S * np.exp(-q * tau) * norm.pdf(a) * sigma / (2.0 * np.sqrt(tau))
    carry = phi * (q * S * np.exp(-q * tau) * ndtr(phi * a) - r * K * np.exp(-r * tau) * ndtr(phi * b))
    return float(decay + carry)


def rho(S, K, tau, r, q, sigma, is_call=False):
    phi = 1.0 if is_call else -1.0
    b = d2(S, K, tau, r, q, sigma)
    return float(phi * K * tau * np.exp(-r * tau) * ndtr(phi * b))


@dataclass(frozen=True)
class BlackScholesKernel:
    """
    Black-Scholes closure over strike, rates and volatility.

    The approximation stages evaluate the European value and theta at many
    trial spots for a fixed contract; this keeps those call sites short.
    """

    K: float
    r: float
    q: float
    sigma: float
    is_call: bool = False

    def d1(self, S, tau):
        return d1(S, self.K, tau, self.r, self.q, self.sigma)

    def d2(self, S, tau):
        return d2(S, self.K, tau, self.r, self.q, self.sigma)

    def price(self, S, tau):
        return european_price(S, self.K, tau, self.r, self.q, self.sigma, self.is_call)

    def delta(self, S, tau):
        return delta(S, self.K, tau, self.r, self.q, self.sigma, self.is_call)

    def gamma(self, S, tau):
        return gamma(S, self.K, tau, self.r, self.q, self.sigma)

    def vega(self, S, tau):
        return vega(S, self.K, tau, self.r, self.q, self.sigma)

    def theta(self, S, tau):
        return theta(S, self.K, tau, self.r, self.q, self.sigma, self.is_call)

    def rho(self, S, tau):
        return rho(S, self.K, tau, self.r, self.q, self.sigma, self.is_call)
