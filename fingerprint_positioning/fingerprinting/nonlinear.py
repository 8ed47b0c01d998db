"""Nonlinear fingerprint position estimator.

The RSSI a receiver at p sees from a source at p_a follows the log-distance
model. Around a located fingerprint p_f it is approximated by its Taylor
expansion, with delta = p - p_f:

    Pr(p) ~ Pr_f + g . delta                                   (first order)
               + 1/2 delta' H delta                           (second order)
               + 1/6 T[delta, delta, delta]                    (third order)

where g, H and T are the derivatives of the model at p_f (see
received_power_derivatives). Every reading shared by a nearby fingerprint
and the unknown fingerprint gives one observation, and p is fitted with
Levenberg-Marquardt. Higher orders are more accurate away from p_f at a
higher cost per evaluation.

Each observation is weighted by the RSSI standard deviation of the unknown
fingerprint's reading, combined in quadrature with the propagated
uncertainty of the located reading and of the source's path-loss exponent.
"""

from enum import Enum
from typing import Optional, Sequence

import numpy as np

from fingerprint_positioning.errors import ConfigurationError
from fingerprint_positioning.estimators.nonlinear_least_squares import (
    FittingError,
    levenberg_marquardt,
)
from fingerprint_positioning.fingerprinting.base import (
    FingerprintPositionEstimator,
    Observation,
)
from fingerprint_positioning.fingerprinting.finder import Neighbour
from fingerprint_positioning.fingerprinting.types import Position, as_position
from fingerprint_positioning.rf.propagation import (
    received_power_derivatives,
    received_power_partials,
)

FALLBACK_RSSI_STD = 1.0  # dB, used when readings carry no std
MIN_RSSI_STD = 1e-12
DEFAULT_PROPAGATE_FINGERPRINT_RSSI_STD = True
DEFAULT_PROPAGATE_PATH_LOSS_EXPONENT_STD = True


class ApproximationOrder(Enum):
    """Order of the Taylor expansion of the propagation model.

    Attributes:
        FIRST: Gradient only.
        SECOND: Gradient and Hessian.
        THIRD: Gradient, Hessian and third-derivative tensor.
    """

    FIRST = 1
    SECOND = 2
    THIRD = 3


DEFAULT_ORDER = ApproximationOrder.THIRD


def taylor_received_power(
    order: ApproximationOrder,
    fingerprint_rssi: float,
    fingerprint_position: np.ndarray,
    source_position: np.ndarray,
    path_loss_exponent: float,
    position: np.ndarray,
    derivatives: np.ndarray,
) -> float:
    """
    Evaluate the Taylor expansion of the received power at a position.

    Args:
        order: Expansion order.
        fingerprint_rssi: RSSI at the expansion point.
        fingerprint_position: Expansion point p_f.
        source_position: Radio source position p_a.
        path_loss_exponent: Path-loss exponent n.
        position: Point p where the expansion is evaluated.
        derivatives: Output array filled with d(Pr)/dp at p.

    Returns:
        Approximated received power at p.
    """
    terms = received_power_derivatives(
        fingerprint_position, source_position, path_loss_exponent, order.value
    )
    delta = position - fingerprint_position

    g = terms[0]
    value = fingerprint_rssi + g @ delta
    grad = g.copy()

    if order.value >= 2:
        H = terms[1]
        Hd = H @ delta
        value += 0.5 * delta @ Hd
        grad += Hd

    if order.value >= 3:
        T = terms[2]
        Tdd = np.einsum("ijk,i,j->k", T, delta, delta)
        value += Tdd @ delta / 6.0
        grad += 0.5 * Tdd

    derivatives[:] = grad
    return float(value)


def path_loss_exponent_sensitivity(
    fingerprint_position: np.ndarray, source_position: np.ndarray, position: np.ndarray
) -> float:
    """
    Derivative with respect to n of the received power at a position,
    relative to the power measured at the fingerprint.

    Pr(p) - Pr_f = -10 n log10(|p - p_a| / |p_f - p_a|), so the derivative
    is the difference of the n partials at both distances. It vanishes at
    p = p_f.

    Raises:
        ConfigurationError: If either point coincides with the source.
    """
    d_f = np.linalg.norm(fingerprint_position - source_position)
    d = np.linalg.norm(position - source_position)
    # The path-loss constant cancels in the difference
    return received_power_partials(d)[1] - received_power_partials(d_f)[1]


class NonLinearFingerprintPositionEstimator(FingerprintPositionEstimator):
    """
    Iterative fingerprint position estimator.

    Attributes (properties):
        order: Taylor expansion order, THIRD by default.
        initial_position: Starting point of the fit. When None the position
            of the nearest located fingerprint is used.
        fallback_rssi_std: RSSI standard deviation used when no other can be
            determined for an observation.
        propagate_fingerprint_rssi_std: Add the located reading's RSSI
            variance to the variance of each observation.
        propagate_path_loss_exponent_std: Add the variance of the source's
            path-loss exponent, propagated to the start of the fit.
        covariance: Covariance of the last estimated position, or None.
        chi_sq: Weighted residual cost of the last estimate, or None.

    Example:
        >>> estimator = NonLinearFingerprintPositionEstimator(
        ...     located_fingerprints=survey, fingerprint=query, sources=aps,
        ...     order=ApproximationOrder.SECOND,
        ... )
        >>> position = estimator.estimate()
        >>> std = np.sqrt(np.diag(estimator.covariance))
    """

    def __init__(
        self,
        located_fingerprints=None,
        fingerprint=None,
        sources=None,
        listener=None,
        order: ApproximationOrder = DEFAULT_ORDER,
        initial_position=None,
        fallback_rssi_std: float = FALLBACK_RSSI_STD,
        propagate_fingerprint_rssi_std: bool = DEFAULT_PROPAGATE_FINGERPRINT_RSSI_STD,
        propagate_path_loss_exponent_std: bool = DEFAULT_PROPAGATE_PATH_LOSS_EXPONENT_STD,
        **kwargs,
    ):
        """
        Initialize estimator.

        Args:
            located_fingerprints, fingerprint, sources, listener, **kwargs:
                See FingerprintPositionEstimator.
            order: Taylor expansion order.
            initial_position: Optional starting point, shape (d,).
            fallback_rssi_std: Assumed RSSI std in dB (> 0).
            propagate_fingerprint_rssi_std: Propagate located reading stds.
            propagate_path_loss_exponent_std: Propagate source path-loss
                exponent stds.

        Raises:
            ConfigurationError: If any argument is invalid.
        """
        self._order = DEFAULT_ORDER
        self._initial_position: Optional[Position] = None
        self._fallback_rssi_std = FALLBACK_RSSI_STD
        self._propagate_fingerprint_rssi_std = bool(propagate_fingerprint_rssi_std)
        self._propagate_path_loss_exponent_std = bool(propagate_path_loss_exponent_std)
        self._covariance: Optional[np.ndarray] = None
        self._chi_sq: Optional[float] = None
        super().__init__(located_fingerprints, fingerprint, sources, listener, **kwargs)

        self._set_order(order)
        if initial_position is not None:
            self._initial_position = as_position(initial_position)
        self._set_fallback_rssi_std(fallback_rssi_std)

    @property
    def min_required_sources(self) -> int:
        return self.number_of_dimensions or 2

    @property
    def is_ready(self) -> bool:
        if not super().is_ready:
            return False
        return (
            self._initial_position is None
            or self._initial_position.shape[0] == self.number_of_dimensions
        )

    @property
    def order(self) -> ApproximationOrder:
        """Taylor expansion order."""
        return self._order

    @order.setter
    def order(self, value: ApproximationOrder) -> None:
        self._check_unlocked()
        self._set_order(value)

    @property
    def initial_position(self) -> Optional[Position]:
        """Starting point of the fit, None to start at the nearest fingerprint."""
        return self._initial_position

    @initial_position.setter
    def initial_position(self, value) -> None:
        self._check_unlocked()
        self._initial_position = None if value is None else as_position(value)

    @property
    def fallback_rssi_std(self) -> float:
        """RSSI std assumed for readings without one."""
        return self._fallback_rssi_std

    @fallback_rssi_std.setter
    def fallback_rssi_std(self, value: float) -> None:
        self._check_unlocked()
        self._set_fallback_rssi_std(value)

    @property
    def propagate_fingerprint_rssi_std(self) -> bool:
        """Whether located reading stds add to the observation variance."""
        return self._propagate_fingerprint_rssi_std

    @propagate_fingerprint_rssi_std.setter
    def propagate_fingerprint_rssi_std(self, value: bool) -> None:
        self._check_unlocked()
        self._propagate_fingerprint_rssi_std = bool(value)

    @property
    def propagate_path_loss_exponent_std(self) -> bool:
        """Whether source path-loss exponent stds add to the observation variance."""
        return self._propagate_path_loss_exponent_std

    @propagate_path_loss_exponent_std.setter
    def propagate_path_loss_exponent_std(self, value: bool) -> None:
        self._check_unlocked()
        self._propagate_path_loss_exponent_std = bool(value)

    @property
    def covariance(self) -> Optional[np.ndarray]:
        """Covariance of the last estimated position."""
        return self._covariance

    @property
    def chi_sq(self) -> Optional[float]:
        """Weighted residual cost of the last estimate."""
        return self._chi_sq

    def evaluate(
        self, i: int, point: np.ndarray, params: np.ndarray, derivatives: np.ndarray
    ) -> float:
        """
        Model callback for the fitter.

        Args:
            i: Observation index (unused, the model is the same for all).
            point: [Pr_f, p_f (d values), p_a (d values), n].
            params: Current position estimate, shape (d,).
            derivatives: Output array filled with d(Pr)/d(params).

        Returns:
            Approximated received power at params.
        """
        dims = len(params)
        return taylor_received_power(
            self._order,
            point[0],
            point[1 : 1 + dims],
            point[1 + dims : 1 + 2 * dims],
            point[1 + 2 * dims],
            params,
            derivatives,
        )

    def observation_rssi_std(self, observation: Observation, position: np.ndarray) -> float:
        """
        RSSI standard deviation of one observation.

        The query reading variance is added to the located reading variance
        and to the path-loss exponent variance propagated to `position`,
        each when known and enabled. Falls back to fallback_rssi_std when
        nothing is known or the result is below MIN_RSSI_STD.

        Args:
            observation: Observation to weight.
            position: Point where the exponent uncertainty is propagated,
                normally the start of the fit.

        Returns:
            Standard deviation in dB.
        """
        variances = []
        if observation.query_rssi_std is not None:
            variances.append(observation.query_rssi_std**2)
        if (
            self._propagate_fingerprint_rssi_std
            and observation.fingerprint_rssi_std is not None
        ):
            variances.append(observation.fingerprint_rssi_std**2)
        if (
            self._propagate_path_loss_exponent_std
            and observation.path_loss_exponent_std is not None
            and not np.array_equal(position, observation.source_position)
        ):
            dn = path_loss_exponent_sensitivity(
                observation.fingerprint_position, observation.source_position, position
            )
            variances.append((dn * observation.path_loss_exponent_std) ** 2)

        std = float(np.sqrt(np.sum(variances))) if variances else 0.0
        if std < MIN_RSSI_STD:
            return self._fallback_rssi_std
        return std

    def _reset_results(self) -> None:
        super()._reset_results()
        self._covariance = None
        self._chi_sq = None

    def _solve(self, neighbours: Sequence[Neighbour]) -> Position:
        dims = self.number_of_dimensions
        observations = self._build_observations(neighbours)
        if len(observations) < dims:
            raise FittingError(
                f"Not enough observations: {len(observations)} < {dims}"
            )

        points = np.array(
            [
                np.concatenate(
                    (
                        [obs.fingerprint_rssi],
                        obs.fingerprint_position,
                        obs.source_position,
                        [obs.path_loss_exponent],
                    )
                )
                for obs in observations
            ]
        )
        if self._initial_position is not None:
            x0 = self._initial_position
        else:
            x0 = neighbours[0].fingerprint.position

        y = np.array([obs.query_rssi for obs in observations])
        sigmas = np.array([self.observation_rssi_std(obs, x0) for obs in observations])

        result = levenberg_marquardt(self.evaluate, points, y, x0, sigmas=sigmas)
        self._covariance = result.covariance
        self._chi_sq = result.chi_sq
        return result.x

    def _set_order(self, value: ApproximationOrder) -> None:
        try:
            self._order = ApproximationOrder(value)
        except ValueError as e:
            raise ConfigurationError(f"Unknown approximation order: {value!r}") from e

    def _set_fallback_rssi_std(self, value: float) -> None:
        if not value > MIN_RSSI_STD:
            raise ConfigurationError(
                f"fallback_rssi_std must be greater than {MIN_RSSI_STD}, got {value}"
            )
        self._fallback_rssi_std = float(value)
