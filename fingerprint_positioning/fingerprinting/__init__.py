"""RSSI fingerprint position estimation.

Main components:
    - RssiReading, Fingerprint, LocatedFingerprint, RadioSource: value types
    - RadioSourceKNearestFinder: nearest located fingerprint search
    - knn_localize: weighted k-NN position from nearest fingerprints
    - LinearFingerprintPositionEstimator: closed-form estimator
    - NonLinearFingerprintPositionEstimator: Taylor expansion + Levenberg-Marquardt

Example usage:
    >>> from fingerprint_positioning.fingerprinting import (
    ...     NonLinearFingerprintPositionEstimator,
    ...     RadioSource,
    ...     make_fingerprint,
    ...     make_located_fingerprint,
    ... )
    >>> aps = [RadioSource("ap1", [0.0, 0.0]), RadioSource("ap2", [10.0, 0.0])]
    >>> survey = [make_located_fingerprint({"ap1": -40.0, "ap2": -55.0}, [1.0, 1.0])]
    >>> query = make_fingerprint({"ap1": -45.0, "ap2": -50.0})
    >>> estimator = NonLinearFingerprintPositionEstimator(
    ...     located_fingerprints=survey, fingerprint=query, sources=aps
    ... )
    >>> x_hat = estimator.estimate()
"""

from .base import (
    DEFAULT_MAX_NEAREST_FINGERPRINTS,
    DEFAULT_MIN_NEAREST_FINGERPRINTS,
    FingerprintPositionEstimator,
    FingerprintPositionEstimatorListener,
    Observation,
)
from .finder import FinderMode, Neighbour, RadioSourceKNearestFinder, fingerprint_distance
from .linear import (
    LinearFingerprintPositionEstimator,
    reference_pairs,
    squared_distance_estimate,
)
from .nonlinear import (
    DEFAULT_ORDER,
    DEFAULT_PROPAGATE_FINGERPRINT_RSSI_STD,
    DEFAULT_PROPAGATE_PATH_LOSS_EXPONENT_STD,
    FALLBACK_RSSI_STD,
    ApproximationOrder,
    NonLinearFingerprintPositionEstimator,
    path_loss_exponent_sensitivity,
    taylor_received_power,
)
from .types import (
    Fingerprint,
    LocatedFingerprint,
    Position,
    RadioSource,
    RssiReading,
    as_position,
    common_dimensions,
    make_fingerprint,
    make_located_fingerprint,
    no_mean_rssi_distance,
    rssi_distance,
)
from .wknn import knn_localize, weighted_knn_position

__all__ = [
    # Types
    "Position",
    "RssiReading",
    "Fingerprint",
    "LocatedFingerprint",
    "RadioSource",
    "as_position",
    "common_dimensions",
    "make_fingerprint",
    "make_located_fingerprint",
    # Finder
    "FinderMode",
    "Neighbour",
    "RadioSourceKNearestFinder",
    "fingerprint_distance",
    "rssi_distance",
    "no_mean_rssi_distance",
    # Weighted k-NN
    "weighted_knn_position",
    "knn_localize",
    # Estimators
    "DEFAULT_MIN_NEAREST_FINGERPRINTS",
    "DEFAULT_MAX_NEAREST_FINGERPRINTS",
    "FingerprintPositionEstimator",
    "FingerprintPositionEstimatorListener",
    "Observation",
    "LinearFingerprintPositionEstimator",
    "squared_distance_estimate",
    "reference_pairs",
    "ApproximationOrder",
    "DEFAULT_ORDER",
    "FALLBACK_RSSI_STD",
    "DEFAULT_PROPAGATE_FINGERPRINT_RSSI_STD",
    "DEFAULT_PROPAGATE_PATH_LOSS_EXPONENT_STD",
    "NonLinearFingerprintPositionEstimator",
    "taylor_received_power",
    "path_loss_exponent_sensitivity",
]
