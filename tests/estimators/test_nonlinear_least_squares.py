"""
Unit tests for the Levenberg-Marquardt fitter.

The model is the canonical 2D range positioning problem,
h_i(x) = ||x - a_i||, written as a per-observation evaluate callback.
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from fingerprint_positioning.estimators.nonlinear_least_squares import (
    FittingError,
    NonlinearLSResult,
    levenberg_marquardt,
)


def range_model(i, point, params, derivatives):
    """Range from params to the anchor in point, with its gradient."""
    diff = params - point
    r = np.linalg.norm(diff)
    derivatives[:] = diff / r
    return r


class TestLevenbergMarquardtRangePositioning(unittest.TestCase):
    """Test LM on range positioning."""

    def setUp(self):
        self.anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        self.true_pos = np.array([3.0, 4.0])
        self.y_clean = np.linalg.norm(self.anchors - self.true_pos, axis=1)

    def test_exact_measurements_convergence(self):
        result = levenberg_marquardt(
            range_model, self.anchors, self.y_clean, np.array([5.0, 5.0])
        )

        self.assertIsInstance(result, NonlinearLSResult)
        self.assertTrue(result.converged)
        assert_allclose(result.x, self.true_pos, atol=1e-6)
        self.assertLess(result.chi_sq, 1e-10)
        assert_allclose(result.residuals, 0.0, atol=1e-6)

    def test_far_initial_guess(self):
        """Damping keeps the fit stable from a poor starting point."""
        result = levenberg_marquardt(
            range_model, self.anchors, self.y_clean, np.array([15.0, -5.0])
        )
        assert_allclose(result.x, self.true_pos, atol=1e-6)

    def test_covariance_scales_with_sigma(self):
        """Covariance is (J'WJ)^-1, so it scales with sigma^2."""
        x0 = np.array([5.0, 5.0])
        r1 = levenberg_marquardt(
            range_model, self.anchors, self.y_clean, x0, sigmas=np.full(4, 1.0)
        )
        r2 = levenberg_marquardt(
            range_model, self.anchors, self.y_clean, x0, sigmas=np.full(4, 2.0)
        )

        self.assertEqual(r1.covariance.shape, (2, 2))
        assert_allclose(r2.covariance, 4.0 * r1.covariance, rtol=1e-6)
        assert_allclose(r1.covariance, r1.covariance.T, atol=1e-12)

    def test_noisy_measurements(self):
        rng = np.random.default_rng(42)
        y = self.y_clean + 0.05 * rng.standard_normal(4)

        result = levenberg_marquardt(
            range_model, self.anchors, y, np.array([5.0, 5.0]), sigmas=np.full(4, 0.05)
        )

        self.assertLess(np.linalg.norm(result.x - self.true_pos), 0.3)
        self.assertGreater(result.chi_sq, 0.0)

    def test_too_few_observations(self):
        with self.assertRaises(FittingError):
            levenberg_marquardt(
                range_model, self.anchors[:1], self.y_clean[:1], np.array([5.0, 5.0])
            )

    def test_singular_normal_matrix(self):
        """A model independent of one parameter cannot be fitted."""

        def flat(i, point, params, derivatives):
            derivatives[0] = 1.0
            derivatives[1] = 0.0
            return params[0] + point[0]

        points = np.arange(4.0).reshape(-1, 1)
        with self.assertRaises(FittingError):
            levenberg_marquardt(flat, points, points[:, 0] + 1.0, np.zeros(2))

    def test_non_finite_model(self):
        def broken(i, point, params, derivatives):
            derivatives[:] = 0.0
            return np.nan

        with self.assertRaises(FittingError):
            levenberg_marquardt(broken, self.anchors, self.y_clean, np.zeros(2))

    def test_invalid_shapes(self):
        x0 = np.array([5.0, 5.0])
        with self.assertRaises(ValueError):
            levenberg_marquardt(range_model, self.anchors, self.y_clean[:3], x0)
        with self.assertRaises(ValueError):
            levenberg_marquardt(
                range_model, self.anchors, self.y_clean, x0, sigmas=np.zeros(4)
            )


if __name__ == "__main__":
    unittest.main()
