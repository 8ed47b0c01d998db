"""
Log-distance radio propagation model.

This module implements the received power model used by the fingerprint
position estimators, together with its derivatives:

    Pr = Pte * k^n / d^n,    k = c / (4*pi*f)

where Pte is the equivalent transmitted power, c the speed of light, f the
carrier frequency, n the path-loss exponent and d the distance between the
radio source and the receiver. In dBm:

    Pr(dBm) = Pte(dBm) + 10*n*log10(k) - 5*n*log10(d^2)

Only the last term depends on the receiver position, so differences of
received power between two points do not depend on Pte or f.
"""

from typing import List, Tuple

import numpy as np

from fingerprint_positioning.errors import ConfigurationError

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

DEFAULT_FREQUENCY = 2.4e9  # Hz, WiFi / BLE band
DEFAULT_PATH_LOSS_EXPONENT = 2.0  # free space

MAX_DERIVATIVE_ORDER = 3


def dbm_to_mw(power_dbm: float) -> float:
    """
    Convert power from dBm to milliwatts (mW = 10^(dBm/10)).

    Example:
        >>> dbm_to_mw(-30.0)
        0.001
    """
    return 10.0 ** (power_dbm / 10.0)


def mw_to_dbm(power_mw: float) -> float:
    """
    Convert power from milliwatts to dBm (dBm = 10*log10(mW)).

    Raises:
        ConfigurationError: If power is not strictly positive.
    """
    if power_mw <= 0.0:
        raise ConfigurationError(f"Power must be positive, got {power_mw} mW")
    return 10.0 * np.log10(power_mw)


def path_loss_constant(frequency: float = DEFAULT_FREQUENCY) -> float:
    """
    Compute k = c / (4*pi*f) for a carrier frequency in Hz.

    Raises:
        ConfigurationError: If frequency is not strictly positive.
    """
    if frequency <= 0.0:
        raise ConfigurationError(f"Frequency must be positive, got {frequency}")
    return SPEED_OF_LIGHT / (4.0 * np.pi * frequency)


def received_power(
    tx_power_mw: float,
    distance: float,
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    frequency: float = DEFAULT_FREQUENCY,
) -> float:
    """
    Expected received power in linear scale (mW).

    Implements Pr = Pte * (c / (4*pi*f))^n / d^n.

    Args:
        tx_power_mw: Equivalent transmitted power in mW.
        distance: Distance between source and receiver in meters.
        path_loss_exponent: Path-loss exponent n.
        frequency: Carrier frequency in Hz.

    Returns:
        Received power in mW.

    Raises:
        ConfigurationError: If distance is not strictly positive.
    """
    if distance <= 0.0:
        raise ConfigurationError("Distance must be positive")

    k = path_loss_constant(frequency)
    return tx_power_mw * k**path_loss_exponent / distance**path_loss_exponent


def received_power_dbm(
    tx_power_dbm: float,
    distance: float,
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    frequency: float = DEFAULT_FREQUENCY,
) -> float:
    """
    Expected received power in dBm.

    Pr(dBm) = Pte(dBm) + 10*n*log10(k) - 10*n*log10(d)

    Args:
        tx_power_dbm: Equivalent transmitted power in dBm.
        distance: Distance between source and receiver in meters.
        path_loss_exponent: Path-loss exponent n.
        frequency: Carrier frequency in Hz.

    Returns:
        Received power in dBm.

    Example:
        >>> # -60 dBm source at 2.4 GHz seen from 10 m in free space
        >>> rssi = received_power_dbm(-60.0, 10.0)
        >>> print(f"{rssi:.2f} dBm")
        -120.05 dBm

    Raises:
        ConfigurationError: If distance is not strictly positive.
    """
    if distance <= 0.0:
        raise ConfigurationError("Distance must be positive")

    k = path_loss_constant(frequency)
    return (
        tx_power_dbm
        + 10.0 * path_loss_exponent * np.log10(k)
        - 10.0 * path_loss_exponent * np.log10(distance)
    )


def distance_from_received_power_dbm(
    rx_power_dbm: float,
    tx_power_dbm: float,
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    frequency: float = DEFAULT_FREQUENCY,
) -> float:
    """
    Invert the propagation model: d = k * 10^((Pte - Pr) / (10*n)).

    Args:
        rx_power_dbm: Received power in dBm.
        tx_power_dbm: Equivalent transmitted power in dBm.
        path_loss_exponent: Path-loss exponent n.
        frequency: Carrier frequency in Hz.

    Returns:
        Distance in meters.
    """
    if path_loss_exponent <= 0.0:
        raise ConfigurationError(
            f"Path-loss exponent must be positive, got {path_loss_exponent}"
        )
    k = path_loss_constant(frequency)
    return k * 10.0 ** ((tx_power_dbm - rx_power_dbm) / (10.0 * path_loss_exponent))


def received_power_partials(
    distance: float,
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    frequency: float = DEFAULT_FREQUENCY,
) -> Tuple[float, float]:
    """
    Partial derivatives of Pr(dBm) respect transmitted power and exponent.

    Returns:
        Tuple (dPr/dPte(dBm), dPr/dn). The first one is always 1 because
        transmitted power enters additively in dBm; the second one equals
        10*log10(k) - 10*log10(d).
    """
    if distance <= 0.0:
        raise ConfigurationError("Distance must be positive")

    k = path_loss_constant(frequency)
    return 1.0, 10.0 * np.log10(k) - 10.0 * np.log10(distance)


def received_power_derivatives(
    position: np.ndarray,
    source_position: np.ndarray,
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    order: int = 1,
) -> List[np.ndarray]:
    """
    Derivatives of Pr(dBm) respect receiver position coordinates.

    With u = p - p_a, s = |u|^2 and c = -10*n/ln(10):

        gradient:  g_i   = c * u_i / s
        Hessian:   H_ij  = c * (delta_ij / s - 2*u_i*u_j / s^2)
        third:     T_ijk = c * (-2*(delta_ij*u_k + delta_ik*u_j + delta_jk*u_i) / s^2
                                + 8*u_i*u_j*u_k / s^3)

    These are the terms of the Taylor expansion used by the nonlinear
    estimator. They do not depend on transmitted power or frequency.

    Args:
        position: Point where derivatives are evaluated, shape (d,).
        source_position: Radio source position, shape (d,).
        path_loss_exponent: Path-loss exponent n.
        order: Highest derivative order to compute (1, 2 or 3).

    Returns:
        List of length `order` with the gradient (d,), the Hessian (d, d)
        and the third-derivative tensor (d, d, d) as requested.

    Raises:
        ConfigurationError: If order is out of range, shapes differ or both
            points coincide.
    """
    if order < 1 or order > MAX_DERIVATIVE_ORDER:
        raise ConfigurationError(
            f"order must be in [1, {MAX_DERIVATIVE_ORDER}], got {order}"
        )

    position = np.asarray(position, dtype=float)
    source_position = np.asarray(source_position, dtype=float)
    if position.shape != source_position.shape:
        raise ConfigurationError(
            f"Position shapes differ: {position.shape} vs {source_position.shape}"
        )

    u = position - source_position
    s = float(u @ u)
    if s == 0.0:
        raise ConfigurationError("Receiver and radio source positions coincide")

    c = -10.0 * path_loss_exponent / np.log(10.0)
    result = [c * u / s]

    if order >= 2:
        eye = np.eye(len(u))
        result.append(c * (eye / s - 2.0 * np.outer(u, u) / s**2))

    if order >= 3:
        eye = np.eye(len(u))
        sym = (
            np.einsum("ij,k->ijk", eye, u)
            + np.einsum("ik,j->ijk", eye, u)
            + np.einsum("jk,i->ijk", eye, u)
        )
        uuu = np.einsum("i,j,k->ijk", u, u, u)
        result.append(c * (-2.0 * sym / s**2 + 8.0 * uuu / s**3))

    return result
