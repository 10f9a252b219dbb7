import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt

from double_boundary import MarketParameters, SolverConfig, price
from double_boundary.plotting import plot_boundaries


def test_plot_single_boundary() -> None:
    result = price(MarketParameters(36.0, 40.0, 1.0, 0.06, 0.02, 0.2), SolverConfig.fast())
    fig, ax = plt.subplots()
    returned = plot_boundaries(result, ax=ax, n=50)
    assert returned is ax
    labels = [line.get_label() for line in ax.get_lines()]
    assert "upper boundary" in labels
    assert "lower boundary" not in labels
    plt.close(fig)


def test_plot_european_result_has_no_boundaries() -> None:
    result = price(MarketParameters(100.0, 100.0, 1.0, -0.02, -0.01, 0.2), SolverConfig.fast())
    ax = plot_boundaries(result, show_seeds=False)
    labels = [line.get_label() for line in ax.get_lines()]
    assert "upper boundary" not in labels
    plt.close(ax.figure)
