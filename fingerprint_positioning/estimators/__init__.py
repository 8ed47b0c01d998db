"""
Numerical solvers used by the fingerprint position estimators.

Available solvers:
    - Linear Least Squares (closed-form, rank checked)
    - Nonlinear Least Squares (Levenberg-Marquardt, per-observation callback)
"""

from fingerprint_positioning.estimators.least_squares import linear_least_squares
from fingerprint_positioning.estimators.nonlinear_least_squares import (
    EvaluateFunction,
    FittingError,
    NonlinearLSResult,
    levenberg_marquardt,
)

__all__ = [
    # Linear LS
    "linear_least_squares",
    # Nonlinear LS
    "levenberg_marquardt",
    "EvaluateFunction",
    "FittingError",
    "NonlinearLSResult",
]
