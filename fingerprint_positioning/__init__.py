"""Indoor position estimation from RSSI fingerprints.

This package contains:
- rf: Log-distance radio propagation model and its derivatives
- estimators: Linear and Levenberg-Marquardt least squares solvers
- fingerprinting: Fingerprint types, nearest fingerprint search and the
  linear / nonlinear position estimators
- errors: Exception hierarchy
"""

from fingerprint_positioning.errors import (
    ConfigurationError,
    EstimationError,
    FingerprintPositioningError,
    LockedError,
    NotReadyError,
)

__version__ = "0.1.0"

__all__ = [
    "FingerprintPositioningError",
    "ConfigurationError",
    "LockedError",
    "NotReadyError",
    "EstimationError",
]
