from __future__ import annotations

import matplotlib.pyplot as plt
import numpy as np

from .engine import PricingResult


def plot_boundaries(result: PricingResult, ax=None, n: int = 200, show_seeds: bool = True):
    """
    Draw the exercise boundaries of a priced option against time to maturity.

    Returns the axes so callers can keep decorating or save the figure.
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 5))

    frame = result.boundary_frame(n)
    if result.upper_boundary is not None:
        ax.plot(frame["tau"], frame["upper"], label="upper boundary")
    if result.lower_boundary is not None:
        ax.plot(frame["tau"], frame["lower"], label="lower boundary")

    if show_seeds and len(frame):
        tau_max = float(frame["tau"].iloc[-1])
        for value, label in ((result.qd_upper, "QD+ upper"), (result.qd_lower, "QD+ lower")):
            if np.isfinite(value) and value > 0.0:
                ax.plot([tau_max], [value], "x", label=label)

    if result.params is not None:
        ax.axhline(result.params.strike, color="black", linestyle="--", linewidth=0.8, label="strike")
        ax.axvline(result.params.maturity, color="grey", linestyle=":", linewidth=0.8)

    if result.crossing_time > 0.0 and result.params is not None:
        ax.axvline(result.params.maturity - result.crossing_time, color="red", linestyle=":",
                   linewidth=0.8, label="boundaries merge")

    ax.set_xlabel("time to maturity")
    ax.set_ylabel("boundary")
    ax.set_title(f"{result.regime.value}: price {result.price:.6f}")
    ax.legend()
    return ax
