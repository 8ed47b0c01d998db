"""
Linear least squares solve for over-determined position systems.

Solves x_hat = argmin ||Ax - b||^2 by QR factorization of the
column-scaled design matrix, after checking that it has full column rank.
"""

from typing import Optional, Tuple

import numpy as np


def linear_least_squares(
    A: np.ndarray, b: np.ndarray, return_covariance: bool = False
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Standard linear least squares estimation.

    Args:
        A: Design matrix (m x n), where m >= n.
        b: Observation vector (m,).
        return_covariance: If True, also compute sigma^2 (A'A)^-1.

    Returns:
        Tuple of:
            - x_hat: Estimated vector (n,).
            - P: Covariance matrix (n x n), or None if not requested.

    Raises:
        ValueError: If A and b dimensions don't match.
        np.linalg.LinAlgError: If the system is under-determined or A is
            rank deficient, so no unique solution exists.

    Example:
        >>> A = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        >>> b = np.array([1.0, 2.0, 3.0])
        >>> x_hat, _ = linear_least_squares(A, b)
        >>> print(x_hat)
        [1. 2.]
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)

    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")

    m, n = A.shape
    if len(b) != m:
        raise ValueError(f"Dimension mismatch: A has {m} rows, b has {len(b)} elements")

    if m < n:
        raise np.linalg.LinAlgError(f"Underdetermined system: m={m} < n={n}")

    if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
        raise np.linalg.LinAlgError("System contains non-finite values")

    # Column scaling keeps the rank test meaningful when unknowns have
    # very different magnitudes (coordinates vs. gain factors).
    scale = np.linalg.norm(A, axis=0)
    if np.any(scale == 0.0):
        raise np.linalg.LinAlgError("A has an all-zero column")
    As = A / scale

    rank = np.linalg.matrix_rank(As)
    if rank < n:
        raise np.linalg.LinAlgError(f"A is rank deficient: rank={rank} < n={n}")

    # QR solve on the scaled system avoids squaring the condition number
    q, r = np.linalg.qr(As)
    x_hat = np.linalg.solve(r, q.T @ b) / scale

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        sigma2 = np.sum(residuals**2) / (m - n) if m > n else 1.0
        P = sigma2 * np.linalg.inv(A.T @ A)

    return x_hat, P
