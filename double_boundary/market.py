from __future__ import annotations

import math
from dataclasses import dataclass, replace

from .config import MAX_MATURITY, MAX_RATE, MAX_VOLATILITY, MIN_MATURITY, MIN_RATE, MIN_VOLATILITY
from .errors import InvalidParameters


@dataclass(frozen=True)
class MarketParameters:
    """
    Inputs of one pricing request.

    Parameters
    ----------
    spot, strike : float
        Underlying price and strike, both positive.
    maturity : float
        Time to expiry in years, in (1e-6, 30].
    rate, dividend_yield : float
        Continuously compounded rate and yield, each in [-0.5, 0.5].
    volatility : float
        Black-Scholes volatility, in [0.001, 5].
    is_call : bool
        Call if True, put otherwise.
    """

    spot: float
    strike: float
    maturity: float
    rate: float
    dividend_yield: float
    volatility: float
    is_call: bool = False

    def __post_init__(self) -> None:
        for name in ("spot", "strike", "maturity", "rate", "dividend_yield", "volatility"):
            value = float(getattr(self, name))
            if not math.isfinite(value):
                raise InvalidParameters(f"{name} must be finite, got {value}")
            object.__setattr__(self, name, value)
        object.__setattr__(self, "is_call", bool(self.is_call))

        if self.spot <= 0.0:
            raise InvalidParameters(f"spot must be positive, got {self.spot}")
        if self.strike <= 0.0:
            raise InvalidParameters(f"strike must be positive, got {self.strike}")
        if not MIN_MATURITY < self.maturity <= MAX_MATURITY:
            raise InvalidParameters(
                f"maturity must be in ({MIN_MATURITY}, {MAX_MATURITY}], got {self.maturity}"
            )
        if not MIN_VOLATILITY <= self.volatility <= MAX_VOLATILITY:
            raise InvalidParameters(
                f"volatility must be in [{MIN_VOLATILITY}, {MAX_VOLATILITY}], got {self.volatility}"
            )
        if not MIN_RATE <= self.rate <= MAX_RATE:
            raise InvalidParameters(f"rate must be in [{MIN_RATE}, {MAX_RATE}], got {self.rate}")
        if not MIN_RATE <= self.dividend_yield <= MAX_RATE:
            raise InvalidParameters(
                f"dividend_yield must be in [{MIN_RATE}, {MAX_RATE}], got {self.dividend_yield}"
            )

    @property
    def option_type(self) -> str:
        return "call" if self.is_call else "put"

    def replace(self, **changes) -> "MarketParameters":
        return replace(self, **changes)

    def intrinsic(self, spot: float | None = None) -> float:
        S = self.spot if spot is None else float(spot)
        if self.is_call:
            return max(S - self.strike, 0.0)
        return max(self.strike - S, 0.0)

    def to_put_space(self) -> "MarketParameters":
        """
        Equivalent put under put-call symmetry.

        ``C(S, K, r, q) = (S/K) * P(K^2/S, K, q, r)``; the returned put has
        the same strike, spot ``K^2/S`` and swapped rates. Puts map to
        themselves.
        """
        if not self.is_call:
            return self
        return MarketParameters(
            spot=self.strike * self.strike / self.spot,
            strike=self.strike,
            maturity=self.maturity,
            rate=self.dividend_yield,
            dividend_yield=self.rate,
            volatility=self.volatility,
            is_call=False,
        )

    @property
    def symmetry_scale(self) -> float:
        """Factor turning a put-space price back into this option's price."""
        return self.spot / self.strike if self.is_call else 1.0
