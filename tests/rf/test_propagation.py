"""
Unit tests for the log-distance propagation model.

Tests unit conversion, received power, its inverse and the position
derivatives used by the nonlinear estimator.
"""

import numpy as np
import pytest

from fingerprint_positioning.errors import ConfigurationError
from fingerprint_positioning.rf.propagation import (
    DEFAULT_FREQUENCY,
    SPEED_OF_LIGHT,
    dbm_to_mw,
    distance_from_received_power_dbm,
    mw_to_dbm,
    path_loss_constant,
    received_power,
    received_power_dbm,
    received_power_derivatives,
    received_power_partials,
)


def _rssi_at(position, source_position, tx_power_dbm=-60.0, n=2.0):
    return received_power_dbm(
        tx_power_dbm, np.linalg.norm(np.asarray(position) - source_position), n
    )


class TestUnitConversion:
    """Test dBm / mW conversion."""

    def test_dbm_to_mw(self):
        assert dbm_to_mw(-30.0) == pytest.approx(1e-3)
        assert dbm_to_mw(0.0) == pytest.approx(1.0)

    def test_mw_to_dbm(self):
        assert mw_to_dbm(1.0) == pytest.approx(0.0)
        assert mw_to_dbm(100.0) == pytest.approx(20.0)

    def test_mw_to_dbm_non_positive(self):
        with pytest.raises(ConfigurationError, match="positive"):
            mw_to_dbm(0.0)


class TestReceivedPower:
    """Test the received power model."""

    def test_path_loss_constant(self):
        k = path_loss_constant(DEFAULT_FREQUENCY)
        assert k == pytest.approx(SPEED_OF_LIGHT / (4.0 * np.pi * 2.4e9))

    def test_invalid_frequency(self):
        with pytest.raises(ConfigurationError):
            path_loss_constant(0.0)

    def test_dbm_matches_linear_model(self):
        """dBm model is the log of the linear model."""
        linear = received_power(dbm_to_mw(-60.0), 7.5, 2.5)
        assert received_power_dbm(-60.0, 7.5, 2.5) == pytest.approx(mw_to_dbm(linear))

    def test_known_value(self):
        assert received_power_dbm(-60.0, 10.0) == pytest.approx(-120.05, abs=0.01)

    def test_doubling_distance_free_space(self):
        """Doubling the distance loses about 6 dB when n = 2."""
        near = received_power_dbm(-60.0, 5.0, 2.0)
        far = received_power_dbm(-60.0, 10.0, 2.0)
        assert near - far == pytest.approx(20.0 * np.log10(2.0))

    def test_higher_exponent_attenuates_more(self):
        assert received_power_dbm(-60.0, 10.0, 3.0) < received_power_dbm(-60.0, 10.0, 2.0)

    @pytest.mark.parametrize("distance", [0.0, -1.0])
    def test_non_positive_distance(self, distance):
        with pytest.raises(ConfigurationError, match="Distance must be positive"):
            received_power_dbm(-60.0, distance)
        with pytest.raises(ConfigurationError):
            received_power(1.0, distance)

    def test_inverse(self):
        rssi = received_power_dbm(-55.0, 12.3, 2.2)
        d = distance_from_received_power_dbm(rssi, -55.0, 2.2)
        assert d == pytest.approx(12.3)

    def test_inverse_invalid_exponent(self):
        with pytest.raises(ConfigurationError):
            distance_from_received_power_dbm(-80.0, -60.0, 0.0)


class TestPartials:
    """Test derivatives respect transmitted power and path-loss exponent."""

    def test_partials_match_finite_differences(self):
        d, n, h = 8.0, 2.3, 1e-6
        d_tx, d_n = received_power_partials(d, n)

        fd_tx = (received_power_dbm(-60.0 + h, d, n) - received_power_dbm(-60.0 - h, d, n)) / (2 * h)
        fd_n = (received_power_dbm(-60.0, d, n + h) - received_power_dbm(-60.0, d, n - h)) / (2 * h)

        assert d_tx == 1.0
        assert fd_tx == pytest.approx(1.0, rel=1e-6)
        assert d_n == pytest.approx(fd_n, rel=1e-6)


class TestPositionDerivatives:
    """Test gradient, Hessian and third derivative respect position."""

    source = np.array([1.0, -2.0, 0.5])
    position = np.array([4.0, 3.0, 1.5])
    n = 2.4

    def test_returns_requested_orders(self):
        for order in (1, 2, 3):
            terms = received_power_derivatives(self.position, self.source, self.n, order)
            assert len(terms) == order
            for j, term in enumerate(terms):
                assert term.shape == (3,) * (j + 1)

    def test_gradient_matches_finite_differences(self):
        (g,) = received_power_derivatives(self.position, self.source, self.n, 1)

        h = 1e-6
        fd = np.zeros(3)
        for i in range(3):
            e = np.zeros(3)
            e[i] = h
            fd[i] = (
                _rssi_at(self.position + e, self.source, n=self.n)
                - _rssi_at(self.position - e, self.source, n=self.n)
            ) / (2 * h)

        np.testing.assert_allclose(g, fd, rtol=1e-6, atol=1e-8)

    def test_hessian_matches_finite_differences(self):
        _, H = received_power_derivatives(self.position, self.source, self.n, 2)

        h = 1e-6
        fd = np.zeros((3, 3))
        for i in range(3):
            e = np.zeros(3)
            e[i] = h
            g_plus = received_power_derivatives(self.position + e, self.source, self.n, 1)[0]
            g_minus = received_power_derivatives(self.position - e, self.source, self.n, 1)[0]
            fd[:, i] = (g_plus - g_minus) / (2 * h)

        np.testing.assert_allclose(H, fd, rtol=1e-5, atol=1e-8)
        np.testing.assert_allclose(H, H.T)

    def test_third_derivative_matches_finite_differences(self):
        T = received_power_derivatives(self.position, self.source, self.n, 3)[2]

        h = 1e-5
        fd = np.zeros((3, 3, 3))
        for k in range(3):
            e = np.zeros(3)
            e[k] = h
            H_plus = received_power_derivatives(self.position + e, self.source, self.n, 2)[1]
            H_minus = received_power_derivatives(self.position - e, self.source, self.n, 2)[1]
            fd[:, :, k] = (H_plus - H_minus) / (2 * h)

        np.testing.assert_allclose(T, fd, rtol=1e-5, atol=1e-8)
        np.testing.assert_allclose(T, np.transpose(T, (1, 0, 2)))
        np.testing.assert_allclose(T, np.transpose(T, (2, 1, 0)))

    def test_2d(self):
        (g,) = received_power_derivatives([3.0, 4.0], [0.0, 0.0], 2.0)
        c = -20.0 / np.log(10.0)
        np.testing.assert_allclose(g, c * np.array([3.0, 4.0]) / 25.0)

    def test_coincident_points(self):
        with pytest.raises(ConfigurationError, match="coincide"):
            received_power_derivatives(self.source, self.source, self.n)

    @pytest.mark.parametrize("order", [0, 4])
    def test_invalid_order(self, order):
        with pytest.raises(ConfigurationError, match="order"):
            received_power_derivatives(self.position, self.source, self.n, order)

    def test_shape_mismatch(self):
        with pytest.raises(ConfigurationError, match="shapes differ"):
            received_power_derivatives([1.0, 2.0], self.source, self.n)
