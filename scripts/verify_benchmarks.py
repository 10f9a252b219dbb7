
import os
import sys

import numpy as np
import pandas as pd

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from double_boundary import DoubleBoundaryEngine, MarketParameters, SolverConfig


def run_verification(config=None):
    engine = DoubleBoundaryEngine(config or SolverConfig.high_precision())
    results = []

    # --- Reference prices ---
    # S, K, T, r, q, sigma, type, reference
    data_reference = [
        (36.0, 40.0, 1.0, 0.06, 0.02, 0.2, 'put', 4.687425),
        # two boundaries, CRR tree with 20000 steps
        (100.0, 100.0, 1.0, -0.01, -0.02, 0.05, 'put', 1.637197),
        (100.0, 100.0, 5.0, -0.01, -0.02, 0.05, 'put', 2.989066),
    ]

    print("--- Reference values ---")
    print(f"{'S':<6} {'K':<6} {'T':<5} {'r':<7} {'q':<7} {'Vol':<5} {'Ref':<12} {'Calcd':<12} {'Diff':<10}")
    for S, K, T, r, q, sigma, kind, ref_val in data_reference:
        res = engine.price(MarketParameters(S, K, T, r, q, sigma, is_call=(kind == 'call')))
        diff = res.price - ref_val
        results.append({'Case': 'reference', 'Type': kind, 'S': S, 'r': r, 'q': q, 'Sigma': sigma, 'T': T,
                        'Ref': ref_val, 'Calc': res.price, 'Diff': diff, 'Regime': res.regime.value})
        print(f"{S:<6} {K:<6} {T:<5} {r:<7} {q:<7} {sigma:<5} {ref_val:<12.8f} {res.price:<12.8f} {diff:<10.2e}")

    # --- Put-call symmetry ---
    # C(S, K, r, q) = (S/K) P(K^2/S, K, q, r)
    print("\n--- Put-call symmetry ---")
    print(f"{'S':<6} {'r':<7} {'q':<7} {'Call':<12} {'Sym. put':<12} {'Diff':<10}")
    for S, r, q, sigma in [(110.0, 0.02, 0.06, 0.2), (90.0, 0.03, 0.08, 0.3), (250.0, -0.02, -0.01, 0.05)]:
        K, T = 100.0, 1.0
        call = engine.price(MarketParameters(S, K, T, r, q, sigma, is_call=True))
        put = engine.price(MarketParameters(K * K / S, K, T, q, r, sigma))
        ref_val = S / K * put.price
        diff = call.price - ref_val
        results.append({'Case': 'symmetry', 'Type': 'call', 'S': S, 'r': r, 'q': q, 'Sigma': sigma, 'T': T,
                        'Ref': ref_val, 'Calc': call.price, 'Diff': diff, 'Regime': call.regime.value})
        print(f"{S:<6} {r:<7} {q:<7} {call.price:<12.8f} {ref_val:<12.8f} {diff:<10.2e}")

    # --- Negative rates: K=100, r=-1%, q=-2% ---
    # sigma* = 5.86%: below it two boundaries, above it no early exercise
    print("\n--- Negative rates (K=100, r=-0.01, q=-0.02) ---")
    print(f"{'S':<6} {'Vol':<5} {'T':<5} {'European':<12} {'American':<12} {'Premium':<10} {'t*':<8} Regime")
    for S, sigma, T in [(40.0, 0.05, 1.0), (40.0, 0.05, 5.0), (100.0, 0.05, 5.0), (100.0, 0.10, 5.0)]:
        res = engine.price(MarketParameters(S, 100.0, T, -0.01, -0.02, sigma))
        results.append({'Case': 'negative rates', 'Type': 'put', 'S': S, 'r': -0.01, 'q': -0.02, 'Sigma': sigma,
                        'T': T, 'Ref': res.european_price, 'Calc': res.price,
                        'Diff': res.price - res.european_price, 'Regime': res.regime.value})
        print(f"{S:<6} {sigma:<5} {T:<5} {res.european_price:<12.6f} {res.price:<12.6f} "
              f"{res.premium:<10.6f} {res.crossing_time:<8.4f} {res.regime.value}")

    df = pd.DataFrame(results)
    ref_rows = df[df['Case'] != 'negative rates']
    mae = ref_rows['Diff'].abs().mean()
    rmse = np.sqrt((ref_rows['Diff'] ** 2).mean())
    print(f"\nReference MAE: {mae:.2e}")
    print(f"Reference RMSE: {rmse:.2e}")
    return df


if __name__ == "__main__":
    run_verification()
