"""
Unit tests for the linear least squares solve.

Tests cover exact and over-determined systems, the optional covariance and
the failures that make the linear fingerprint estimator retry.
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from fingerprint_positioning.estimators.least_squares import linear_least_squares


class TestLinearLeastSquares(unittest.TestCase):
    """Test cases for standard linear least squares."""

    def test_exact_fit(self):
        """Test LS with exact data (no noise)."""
        # y = 2x + 1
        A = np.array([[1, 1], [1, 2], [1, 3]])
        b = np.array([3, 5, 7])

        x_hat, P = linear_least_squares(A, b)

        assert_allclose(x_hat, [1.0, 2.0], atol=1e-10)
        self.assertIsNone(P)

    def test_overdetermined_system(self):
        """Test LS with more equations than unknowns."""
        rng = np.random.default_rng(0)
        A = rng.standard_normal((20, 3))
        x_true = np.array([1.0, -0.5, 2.0])
        b = A @ x_true + 0.01 * rng.standard_normal(20)

        x_hat, P = linear_least_squares(A, b, return_covariance=True)

        assert_allclose(x_hat, x_true, atol=0.05)
        self.assertEqual(P.shape, (3, 3))
        self.assertTrue(np.all(np.linalg.eigvalsh(P) > 0))

    def test_badly_scaled_columns(self):
        """Unknowns of very different magnitude are still recovered."""
        A = np.array([[1.0, 1e6], [2.0, -3e6], [0.5, 2e6], [-1.0, 1e6]])
        x_true = np.array([3.0, 2e-6])

        x_hat, _ = linear_least_squares(A, A @ x_true)

        assert_allclose(x_hat, x_true, rtol=1e-8)

    def test_rank_deficient_raises_error(self):
        """Test that rank-deficient A raises LinAlgError."""
        A = np.array([[1, 2], [2, 4], [3, 6]])
        b = np.array([1, 2, 3])

        with self.assertRaises(np.linalg.LinAlgError) as context:
            linear_least_squares(A, b)

        self.assertIn("rank deficient", str(context.exception))

    def test_zero_column_raises_error(self):
        A = np.array([[1.0, 0.0], [2.0, 0.0], [3.0, 0.0]])
        with self.assertRaises(np.linalg.LinAlgError):
            linear_least_squares(A, np.ones(3))

    def test_underdetermined_raises_error(self):
        with self.assertRaises(np.linalg.LinAlgError):
            linear_least_squares(np.ones((1, 2)), np.ones(1))

    def test_non_finite_raises_error(self):
        A = np.eye(2)
        with self.assertRaises(np.linalg.LinAlgError):
            linear_least_squares(A, np.array([1.0, np.inf]))

    def test_dimension_mismatch(self):
        """Test that mismatched dimensions raise ValueError."""
        with self.assertRaises(ValueError):
            linear_least_squares(np.eye(3), np.ones(2))
        with self.assertRaises(ValueError):
            linear_least_squares(np.ones(3), np.ones(3))


if __name__ == "__main__":
    unittest.main()
