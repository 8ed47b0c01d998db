"""
Example: Fingerprint Position Estimators

Compares weighted k-NN with the linear and nonlinear fingerprint position
estimators on a simulated radio map, with and without a constant receiver
bias on the query readings.

Implements:
    - Weighted k-NN: x_hat = sum w_i x_i / sum w_i
    - Linear estimator: squared distances from the propagation model,
      linearized by subtracting pairs of sources
    - Nonlinear estimator: Taylor expansion of received power (order 1-3)
      fitted with Levenberg-Marquardt
"""

import time
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from fingerprint_positioning.errors import EstimationError
from fingerprint_positioning.fingerprinting import (
    ApproximationOrder,
    FinderMode,
    LinearFingerprintPositionEstimator,
    NonLinearFingerprintPositionEstimator,
    RadioSource,
    RadioSourceKNearestFinder,
    knn_localize,
    make_fingerprint,
    make_located_fingerprint,
)
from fingerprint_positioning.rf import received_power_dbm

AREA_SIZE = 50.0  # m
TX_POWER = -60.0  # dBm
PATH_LOSS_EXPONENT = 2.0


def create_sources():
    """Five access points around a 50 x 50 m area."""
    positions = [[-10, -10], [60, -10], [60, 60], [-10, 60], [25, -15]]
    return [
        RadioSource(f"AP{i + 1}", p, transmitted_power=TX_POWER)
        for i, p in enumerate(positions)
    ]


def simulate_rssi(position, sources, noise_std=0.0, bias=0.0, rng=None):
    """RSSI of every source at a position, as {source_id: rssi}."""
    rssi = {}
    for s in sources:
        d = np.linalg.norm(np.asarray(position) - s.position)
        value = received_power_dbm(s.transmitted_power, d, PATH_LOSS_EXPONENT)
        if noise_std > 0.0:
            value += rng.normal(0.0, noise_std)
        rssi[s.identifier] = value + bias
    return rssi


def create_radio_map(sources, n_points=1000, noise_std=0.0, seed=42):
    """Located fingerprints at random survey positions."""
    rng = np.random.default_rng(seed)
    positions = rng.uniform(0.0, AREA_SIZE, size=(n_points, 2))
    return [
        make_located_fingerprint(simulate_rssi(p, sources, noise_std, rng=rng), p)
        for p in positions
    ]


def evaluate_method(name, localize, queries, true_positions):
    """Run a localization function on every query and collect statistics."""
    errors = []
    times = []
    failures = 0

    for query, true_pos in zip(queries, true_positions):
        t0 = time.perf_counter()
        try:
            x_hat = localize(query)
        except EstimationError:
            failures += 1
            continue
        times.append(time.perf_counter() - t0)
        errors.append(np.linalg.norm(x_hat - true_pos))

    errors = np.array(errors)
    return {
        "method": name,
        "errors": errors,
        "rmse": np.sqrt(np.mean(errors**2)),
        "median_error": np.median(errors),
        "p90": np.percentile(errors, 90),
        "mean_time_ms": np.mean(times) * 1000,
        "failures": failures,
    }


def build_methods(radio_map, sources):
    """Localization functions to compare, by name."""
    raw_finder = RadioSourceKNearestFinder(radio_map, FinderMode.RAW)

    def linear(remove_means):
        def localize(query):
            return LinearFingerprintPositionEstimator(
                located_fingerprints=radio_map,
                fingerprint=query,
                sources=sources,
                use_no_mean_nearest_fingerprint_finder=remove_means,
                means_from_fingerprint_readings_removed=remove_means,
            ).estimate()

        return localize

    def nonlinear(order):
        def localize(query):
            return NonLinearFingerprintPositionEstimator(
                located_fingerprints=radio_map,
                fingerprint=query,
                sources=sources,
                order=order,
                fallback_rssi_std=2.0,
            ).estimate()

        return localize

    return [
        ("k-NN (k=4)", lambda q: knn_localize(q, raw_finder, k=4)),
        ("Linear", linear(False)),
        ("Linear (mean removed)", linear(True)),
        ("Nonlinear (1st order)", nonlinear(ApproximationOrder.FIRST)),
        ("Nonlinear (3rd order)", nonlinear(ApproximationOrder.THIRD)),
    ]


def main():
    """Run fingerprint position estimator comparison."""
    print("=" * 70)
    print("Fingerprint Position Estimators")
    print("=" * 70)

    print("\n1. Building radio map...")
    sources = create_sources()
    radio_map = create_radio_map(sources, n_points=1000, noise_std=1.0)
    print(f"   {len(sources)} radio sources, {len(radio_map)} located fingerprints")

    print("\n2. Generating test queries...")
    rng = np.random.default_rng(7)
    n_queries = 100
    true_positions = rng.uniform(5.0, AREA_SIZE - 5.0, size=(n_queries, 2))
    scenarios = {}
    for bias in (0.0, 3.0):
        scenarios[bias] = [
            make_fingerprint(simulate_rssi(p, sources, 1.0, bias, rng))
            for p in true_positions
        ]
    print(f"   {n_queries} queries, 1 dBm noise, receiver bias 0 and 3 dB")

    print("\n3. Evaluating methods...")
    methods = build_methods(radio_map, sources)
    results = {}
    for bias, queries in scenarios.items():
        results[bias] = [
            evaluate_method(name, localize, queries, true_positions)
            for name, localize in methods
        ]

    for bias, rows in results.items():
        print("\n" + "=" * 70)
        print(f"RESULTS (bias = {bias:.0f} dB)")
        print("=" * 70)
        print(f"{'Method':<25} {'RMSE (m)':<10} {'Median (m)':<12} "
              f"{'90th % (m)':<12} {'Time (ms)':<10} {'Failed':<6}")
        print("-" * 70)
        for r in rows:
            print(f"{r['method']:<25} {r['rmse']:<10.2f} {r['median_error']:<12.2f} "
                  f"{r['p90']:<12.2f} {r['mean_time_ms']:<10.3f} {r['failures']:<6d}")

    print("\n4. Generating visualizations...")
    fig, axes = plt.subplots(1, 3, figsize=(16, 5))

    ax = axes[0]
    located = np.array([f.position for f in radio_map])
    ax.scatter(located[:, 0], located[:, 1], s=4, c="lightgray", label="Located fingerprints")
    src = np.array([s.position for s in sources])
    ax.scatter(src[:, 0], src[:, 1], marker="^", s=120, c="black", label="Radio sources")
    ax.scatter(true_positions[:, 0], true_positions[:, 1], marker="x", c="red", s=20,
               label="Queries")
    ax.set_xlabel("X (m)")
    ax.set_ylabel("Y (m)")
    ax.set_title("Scenario")
    ax.legend(fontsize=8)
    ax.grid(True, alpha=0.3)
    ax.axis("equal")

    for ax, (bias, rows) in zip(axes[1:], results.items()):
        for r in rows:
            sorted_errors = np.sort(r["errors"])
            cdf = np.arange(1, len(sorted_errors) + 1) / len(sorted_errors)
            ax.plot(sorted_errors, cdf, label=r["method"], linewidth=2)
        ax.set_xlabel("Positioning Error (m)")
        ax.set_ylabel("CDF")
        ax.set_title(f"Error CDF, bias = {bias:.0f} dB")
        ax.legend(fontsize=8)
        ax.grid(True, alpha=0.3)

    plt.tight_layout()

    output_file = Path(__file__).parent / "fingerprint_estimators.png"
    plt.savefig(output_file, dpi=150, bbox_inches="tight")
    print(f"   Saved: {output_file}")

    plt.show()

    print("\n" + "=" * 70)
    print("Example complete!")
    print("=" * 70)
    print("\nKey Findings:")
    print("  - Model-based estimators interpolate between survey points")
    print("  - Mean removal makes the linear estimator robust to receiver bias")
    print("  - Higher Taylor orders reduce the model error of the nonlinear fit")


if __name__ == "__main__":
    main()
