"""
Levenberg-Marquardt fitter for multi-dimensional nonlinear least squares.

The model is supplied one observation at a time through an evaluate
callback, so callers only need to describe a single observation:

    value = evaluate(i, point, params, derivatives)

where `point` holds the known inputs of observation i, `params` is the
current parameter vector, and the callback fills `derivatives` with
d(value)/d(params) and returns the predicted value.

Mathematical Formulation:
    Given observations y_i with standard deviations sigma_i, we seek:
        x_hat = argmin sum_i ((y_i - h_i(x)) / sigma_i)^2

    Levenberg-Marquardt update:
        (J'WJ + mu*I) dx = J'W r,    W = diag(1 / sigma_i^2)
    where mu is an adaptive damping parameter.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

EvaluateFunction = Callable[[int, np.ndarray, np.ndarray, np.ndarray], float]


class FittingError(RuntimeError):
    """Fit did not converge or its normal matrix is not invertible."""


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares fitting.

    Attributes:
        x: Estimated parameter vector.
        covariance: Parameter covariance (J'WJ)^-1 at the solution.
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x_hat).
        chi_sq: Final weighted cost sum((r_i / sigma_i)^2).
        converged: Whether the fitter converged within tolerance.
    """

    x: np.ndarray
    covariance: np.ndarray
    iterations: int
    residuals: np.ndarray
    chi_sq: float
    converged: bool


def _evaluate_all(
    evaluate: EvaluateFunction, points: np.ndarray, x: np.ndarray
) -> tuple:
    """Evaluate model values and Jacobian for every observation."""
    m = points.shape[0]
    n = len(x)
    hx = np.empty(m)
    J = np.empty((m, n))
    derivatives = np.empty(n)
    for i in range(m):
        hx[i] = evaluate(i, points[i], x, derivatives)
        J[i] = derivatives

    if not (np.all(np.isfinite(hx)) and np.all(np.isfinite(J))):
        raise FittingError("Model evaluation produced non-finite values")
    return hx, J


def levenberg_marquardt(
    evaluate: EvaluateFunction,
    points: np.ndarray,
    y: np.ndarray,
    x0: np.ndarray,
    sigmas: Optional[np.ndarray] = None,
    max_iter: int = 100,
    tol: float = 1e-10,
    gtol: float = 1e-12,
    mu0: float = 1e-3,
) -> NonlinearLSResult:
    """
    Fit model parameters with the Levenberg-Marquardt method.

    LM combines Gauss-Newton (fast near solution) with gradient descent
    (robust far from solution) by adaptively adjusting mu from the gain
    ratio between actual and predicted cost decrease.

    Args:
        evaluate: Per-observation model callback (see module docstring).
        points: Known inputs, shape (m, p). Row i is passed to evaluate.
        y: Observed values (m,).
        x0: Initial parameter vector (n,).
        sigmas: Standard deviation of each observation (m,). Uniform if None.
        max_iter: Iteration cap. Reaching it without converging is an error.
        tol: Relative convergence tolerance on the step size.
        gtol: Convergence tolerance on the weighted gradient J'Wr.
        mu0: Initial damping parameter.

    Returns:
        NonlinearLSResult with the fitted parameters and covariance.

    Raises:
        ValueError: If input shapes are inconsistent.
        FittingError: If there are fewer observations than parameters, the
            fit does not converge within max_iter, or the normal matrix is
            singular.

    Example:
        >>> # Fit y = a*t + b
        >>> def line(i, point, params, derivatives):
        ...     derivatives[0] = point[0]
        ...     derivatives[1] = 1.0
        ...     return params[0] * point[0] + params[1]
        >>> t = np.arange(5.0).reshape(-1, 1)
        >>> result = levenberg_marquardt(line, t, 2.0 * t[:, 0] + 1.0, np.zeros(2))
        >>> print(np.round(result.x, 6))
        [2. 1.]
    """
    points = np.asarray(points, dtype=float)
    y = np.asarray(y, dtype=float)
    x = np.array(x0, dtype=float)

    if points.ndim != 2:
        raise ValueError(f"points must be 2D array, got shape {points.shape}")
    if y.ndim != 1 or len(y) != points.shape[0]:
        raise ValueError(
            f"y must be 1D array of length {points.shape[0]}, got shape {y.shape}"
        )
    if x.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x.shape}")

    m = len(y)
    n = len(x)
    if m < n:
        raise FittingError(f"Not enough observations: m={m} < n={n}")

    if sigmas is None:
        w = np.ones(m)
    else:
        sigmas = np.asarray(sigmas, dtype=float)
        if sigmas.shape != (m,):
            raise ValueError(f"sigmas must be 1D array of length {m}")
        if np.any(sigmas <= 0.0):
            raise ValueError("sigmas must be positive")
        w = 1.0 / sigmas**2

    hx, J = _evaluate_all(evaluate, points, x)
    r = y - hx
    cost = 0.5 * r @ (w * r)

    mu = mu0
    nu = 2.0
    converged = False
    iteration = 0

    for iteration in range(1, max_iter + 1):
        JtW = J.T * w
        JtWJ = JtW @ J
        JtWr = JtW @ r

        if np.max(np.abs(JtWr)) <= gtol:
            converged = True
            break

        try:
            delta_x = np.linalg.solve(JtWJ + mu * np.eye(n), JtWr)
        except np.linalg.LinAlgError as e:
            raise FittingError(f"Singular damped normal matrix: {e}") from e

        if np.linalg.norm(delta_x) <= tol * (np.linalg.norm(x) + tol):
            converged = True
            break

        x_new = x + delta_x
        hx_new, J_new = _evaluate_all(evaluate, points, x_new)
        r_new = y - hx_new
        cost_new = 0.5 * r_new @ (w * r_new)

        # Predicted decrease: 1/2 dx'(mu*dx + J'Wr)
        predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
        if predicted_decrease > 0.0:
            gain_ratio = (cost - cost_new) / predicted_decrease
        else:
            gain_ratio = -1.0

        if gain_ratio > 0.0:
            x, r, J, cost = x_new, r_new, J_new, cost_new
            mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
            nu = 2.0
        else:
            mu = mu * nu
            nu = 2.0 * nu

    if not converged:
        raise FittingError(f"Fit did not converge after {max_iter} iterations")

    JtWJ = (J.T * w) @ J
    if np.linalg.matrix_rank(JtWJ) < n:
        raise FittingError("Normal matrix is singular at the solution")
    covariance = np.linalg.inv(JtWJ)

    return NonlinearLSResult(
        x=x,
        covariance=covariance,
        iterations=iteration,
        residuals=r,
        chi_sq=float(r @ (w * r)),
        converged=converged,
    )
