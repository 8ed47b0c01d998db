"""Error taxonomy for fingerprint-based position estimation.

Callers are expected to branch on the error kind:

    - ConfigurationError: invalid argument at a constructor or setter.
    - LockedError: mutation attempted while an estimation is in progress.
    - NotReadyError: estimate() called before all required inputs are set.
    - EstimationError: numerical failure while solving for a position.
"""


class FingerprintPositioningError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(FingerprintPositioningError, ValueError):
    """Invalid constructor or setter argument. No state has been modified."""


class LockedError(FingerprintPositioningError, RuntimeError):
    """Estimator is locked because an estimation is in progress."""

    def __init__(self, message: str = "estimator is locked while estimating"):
        super().__init__(message)


class NotReadyError(FingerprintPositioningError, RuntimeError):
    """Estimator lacks the configuration required to estimate."""

    def __init__(self, message: str = "estimator is not ready"):
        super().__init__(message)


class EstimationError(FingerprintPositioningError, RuntimeError):
    """Position could not be estimated (singular system, fit failure)."""
