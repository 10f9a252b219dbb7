
import os
import sys

import matplotlib.pyplot as plt

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from double_boundary import DoubleBoundaryEngine, MarketParameters, SolverConfig
from double_boundary.plotting import plot_boundaries


def main():
    engine = DoubleBoundaryEngine(SolverConfig.standard())
    cases = [
        ("Single boundary put", MarketParameters(36.0, 40.0, 1.0, 0.06, 0.02, 0.2)),
        ("Double boundary put", MarketParameters(100.0, 100.0, 5.0, -0.01, -0.02, 0.05)),
        ("Double boundary call", MarketParameters(100.0, 100.0, 5.0, -0.02, -0.01, 0.05, is_call=True)),
    ]

    fig, axes = plt.subplots(1, len(cases), figsize=(6 * len(cases), 5))
    for ax, (title, params) in zip(axes, cases):
        res = engine.price(params)
        plot_boundaries(res, ax=ax)
        ax.set_title(f"{title}\nprice {res.price:.6f}, {res.iterations} iterations")

    fig.tight_layout()
    if len(sys.argv) > 1:
        fig.savefig(sys.argv[1], dpi=120)
    else:
        plt.show()


if __name__ == "__main__":
    main()
