"""Base class for fingerprint position estimators.

Holds the configuration shared by the linear and nonlinear estimators and
implements their common life cycle:

    Unlocked + NotReady  --(set inputs)-->  Unlocked + Ready
    Unlocked + Ready     --estimate()-->    Locked  --> Unlocked + Ready

While locked, every setter and estimate() raise LockedError without
modifying anything. Listener callbacks run while the estimator is locked.

The estimate itself searches the k nearest located fingerprints, starting
at min_nearest_fingerprints, and asks the concrete estimator to solve for a
position. If solving fails numerically, k is increased until
max_nearest_fingerprints is reached. A single RuntimeWarning reports any retries.
"""

import warnings
from abc import ABC, abstractmethod
from typing import Dict, Hashable, Iterable, List, NamedTuple, Optional, Sequence

import numpy as np

from fingerprint_positioning.errors import (
    ConfigurationError,
    EstimationError,
    LockedError,
    NotReadyError,
)
from fingerprint_positioning.estimators.nonlinear_least_squares import FittingError
from fingerprint_positioning.fingerprinting.finder import (
    FinderMode,
    Neighbour,
    RadioSourceKNearestFinder,
)
from fingerprint_positioning.fingerprinting.types import (
    Fingerprint,
    LocatedFingerprint,
    Position,
    RadioSource,
    common_dimensions,
)
from fingerprint_positioning.rf.propagation import DEFAULT_PATH_LOSS_EXPONENT

DEFAULT_MIN_NEAREST_FINGERPRINTS = 1
DEFAULT_MAX_NEAREST_FINGERPRINTS = None  # unbounded

# Failures after which a larger set of nearest fingerprints is tried
NUMERICAL_ERRORS = (np.linalg.LinAlgError, FittingError)


class FingerprintPositionEstimatorListener:
    """Receives estimation life cycle events. Methods are no-ops by default."""

    def on_estimate_start(self, estimator: "FingerprintPositionEstimator") -> None:
        """Called when estimation starts, with the estimator already locked."""

    def on_estimate_end(self, estimator: "FingerprintPositionEstimator") -> None:
        """Called after a successful estimation, before unlocking."""


class Observation(NamedTuple):
    """RSSI of one radio source seen both at a located fingerprint and at
    the unknown position.

    RSSI values are de-meaned when means are removed from readings. The
    standard deviations are None when unknown.
    """

    query_rssi: float
    fingerprint_rssi: float
    fingerprint_position: Position
    source_position: Position
    path_loss_exponent: float
    query_rssi_std: Optional[float]
    fingerprint_rssi_std: Optional[float]
    path_loss_exponent_std: Optional[float]
    fingerprint_index: int
    source_id: Hashable


class FingerprintPositionEstimator(ABC):
    """
    Abstract fingerprint position estimator.

    Attributes are exposed as properties. Setting any of them while an
    estimation is in progress raises LockedError.
    """

    def __init__(
        self,
        located_fingerprints: Optional[Iterable[LocatedFingerprint]] = None,
        fingerprint: Optional[Fingerprint] = None,
        sources: Optional[Iterable[RadioSource]] = None,
        listener: Optional[FingerprintPositionEstimatorListener] = None,
        min_nearest_fingerprints: int = DEFAULT_MIN_NEAREST_FINGERPRINTS,
        max_nearest_fingerprints: Optional[int] = DEFAULT_MAX_NEAREST_FINGERPRINTS,
        path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        use_sources_path_loss_exponent_when_available: bool = True,
        use_no_mean_nearest_fingerprint_finder: bool = True,
        means_from_fingerprint_readings_removed: bool = False,
    ):
        """
        Initialize estimator.

        Args:
            located_fingerprints: Surveyed fingerprints (non-empty, same
                dimensionality).
            fingerprint: Fingerprint read at the unknown position.
            sources: Radio sources with known positions.
            listener: Optional life cycle listener.
            min_nearest_fingerprints: Smallest number of nearest fingerprints
                to use (>= 1).
            max_nearest_fingerprints: Largest number of nearest fingerprints
                to try, None for all of them.
            path_loss_exponent: Default path-loss exponent (> 0).
            use_sources_path_loss_exponent_when_available: Use a source's own
                path-loss exponent when it has one.
            use_no_mean_nearest_fingerprint_finder: Rank fingerprints with the
                mean-removed distance instead of the raw one.
            means_from_fingerprint_readings_removed: Subtract each
                fingerprint's mean RSSI from its readings before solving.

        Raises:
            ConfigurationError: If any argument is invalid.
        """
        self._locked = False
        self._located_fingerprints: Optional[List[LocatedFingerprint]] = None
        self._dims: Optional[int] = None
        self._fingerprint: Optional[Fingerprint] = None
        self._sources: Optional[Dict[Hashable, RadioSource]] = None
        self._listener = listener
        self._min_nearest_fingerprints = DEFAULT_MIN_NEAREST_FINGERPRINTS
        self._max_nearest_fingerprints = DEFAULT_MAX_NEAREST_FINGERPRINTS
        self._path_loss_exponent = DEFAULT_PATH_LOSS_EXPONENT
        self._use_sources_path_loss_exponent = bool(
            use_sources_path_loss_exponent_when_available
        )
        self._use_no_mean_finder = bool(use_no_mean_nearest_fingerprint_finder)
        self._remove_means = bool(means_from_fingerprint_readings_removed)
        self._estimated_position: Optional[Position] = None
        self._nearest_fingerprints: Optional[List[Neighbour]] = None

        if located_fingerprints is not None:
            self._set_located_fingerprints(located_fingerprints)
        if fingerprint is not None:
            self._set_fingerprint(fingerprint)
        if sources is not None:
            self._set_sources(sources)
        self._set_min_max_nearest_fingerprints(
            min_nearest_fingerprints, max_nearest_fingerprints
        )
        self._set_path_loss_exponent(path_loss_exponent)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def is_locked(self) -> bool:
        """True while estimate() is running."""
        return self._locked

    def _check_unlocked(self) -> None:
        if self._locked:
            raise LockedError()

    @property
    def number_of_dimensions(self) -> Optional[int]:
        """Dimensionality of the located fingerprints, None until set."""
        return self._dims

    @property
    @abstractmethod
    def min_required_sources(self) -> int:
        """Readings to known sources the unknown fingerprint needs at least."""

    @property
    def usable_source_count(self) -> int:
        """Number of readings of the unknown fingerprint to known sources."""
        if self._fingerprint is None or self._sources is None:
            return 0
        return sum(1 for s in self._fingerprint.source_ids if s in self._sources)

    @property
    def is_ready(self) -> bool:
        """True if all inputs required by estimate() are set and consistent."""
        if (
            self._located_fingerprints is None
            or self._fingerprint is None
            or self._sources is None
        ):
            return False
        if any(s.dims != self._dims for s in self._sources.values()):
            return False
        return self.usable_source_count >= self.min_required_sources

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def located_fingerprints(self) -> Optional[List[LocatedFingerprint]]:
        """Surveyed fingerprints searched for nearest neighbours."""
        return self._located_fingerprints

    @located_fingerprints.setter
    def located_fingerprints(self, value: Iterable[LocatedFingerprint]) -> None:
        self._check_unlocked()
        self._set_located_fingerprints(value)

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        """Fingerprint read at the unknown position."""
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, value: Fingerprint) -> None:
        self._check_unlocked()
        self._set_fingerprint(value)

    @property
    def sources(self) -> Optional[List[RadioSource]]:
        """Radio sources with known positions."""
        if self._sources is None:
            return None
        return list(self._sources.values())

    @sources.setter
    def sources(self, value: Iterable[RadioSource]) -> None:
        self._check_unlocked()
        self._set_sources(value)

    @property
    def min_nearest_fingerprints(self) -> int:
        """Smallest number of nearest fingerprints used."""
        return self._min_nearest_fingerprints

    @property
    def max_nearest_fingerprints(self) -> Optional[int]:
        """Largest number of nearest fingerprints tried, None if unbounded."""
        return self._max_nearest_fingerprints

    def set_min_max_nearest_fingerprints(
        self, min_nearest_fingerprints: int, max_nearest_fingerprints: Optional[int]
    ) -> None:
        """
        Set bounds on the number of nearest fingerprints.

        Raises:
            LockedError: If an estimation is in progress.
            ConfigurationError: If min < 1 or max < min.
        """
        self._check_unlocked()
        self._set_min_max_nearest_fingerprints(
            min_nearest_fingerprints, max_nearest_fingerprints
        )

    @property
    def path_loss_exponent(self) -> float:
        """Default path-loss exponent."""
        return self._path_loss_exponent

    @path_loss_exponent.setter
    def path_loss_exponent(self, value: float) -> None:
        self._check_unlocked()
        self._set_path_loss_exponent(value)

    @property
    def use_sources_path_loss_exponent_when_available(self) -> bool:
        """Whether a source's own path-loss exponent overrides the default."""
        return self._use_sources_path_loss_exponent

    @use_sources_path_loss_exponent_when_available.setter
    def use_sources_path_loss_exponent_when_available(self, value: bool) -> None:
        self._check_unlocked()
        self._use_sources_path_loss_exponent = bool(value)

    @property
    def use_no_mean_nearest_fingerprint_finder(self) -> bool:
        """Whether nearest fingerprints are ranked by mean-removed distance."""
        return self._use_no_mean_finder

    @use_no_mean_nearest_fingerprint_finder.setter
    def use_no_mean_nearest_fingerprint_finder(self, value: bool) -> None:
        self._check_unlocked()
        self._use_no_mean_finder = bool(value)

    @property
    def means_from_fingerprint_readings_removed(self) -> bool:
        """Whether fingerprint means are removed from readings before solving."""
        return self._remove_means

    @means_from_fingerprint_readings_removed.setter
    def means_from_fingerprint_readings_removed(self, value: bool) -> None:
        self._check_unlocked()
        self._remove_means = bool(value)

    @property
    def finder_mode(self) -> FinderMode:
        """Finder variant selected by use_no_mean_nearest_fingerprint_finder."""
        return FinderMode.MEAN_REMOVED if self._use_no_mean_finder else FinderMode.RAW

    @property
    def listener(self) -> Optional[FingerprintPositionEstimatorListener]:
        """Life cycle listener."""
        return self._listener

    @listener.setter
    def listener(self, value: Optional[FingerprintPositionEstimatorListener]) -> None:
        self._check_unlocked()
        self._listener = value

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    @property
    def estimated_position(self) -> Optional[Position]:
        """Position from the last successful estimate, None otherwise."""
        if self._estimated_position is None:
            return None
        return self._estimated_position.copy()

    @property
    def nearest_fingerprints(self) -> Optional[List[Neighbour]]:
        """Nearest fingerprints used by the last successful estimate."""
        if self._nearest_fingerprints is None:
            return None
        return list(self._nearest_fingerprints)

    def estimate(self) -> Position:
        """
        Estimate the position of the unknown fingerprint.

        Returns:
            Estimated position, shape (d,). Also kept in estimated_position.

        Raises:
            LockedError: If an estimation is already in progress.
            NotReadyError: If required inputs are missing.
            EstimationError: If no position could be solved for any allowed
                number of nearest fingerprints. Previous results are cleared.
        """
        self._check_unlocked()
        if not self.is_ready:
            raise NotReadyError()

        try:
            self._locked = True
            self._reset_results()

            if self._listener is not None:
                self._listener.on_estimate_start(self)

            position, neighbours = self._search_and_solve()
            self._estimated_position = np.asarray(position, dtype=float)
            self._nearest_fingerprints = neighbours

            if self._listener is not None:
                self._listener.on_estimate_end(self)
        finally:
            self._locked = False

        return self.estimated_position

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @abstractmethod
    def _solve(self, neighbours: Sequence[Neighbour]) -> Position:
        """
        Solve for the unknown position using the given nearest fingerprints.

        Raises:
            np.linalg.LinAlgError or FittingError: If no solution exists for
                this set of fingerprints.
        """

    def _reset_results(self) -> None:
        self._estimated_position = None
        self._nearest_fingerprints = None

    def _search_and_solve(self):
        finder = RadioSourceKNearestFinder(self._located_fingerprints, self.finder_mode)
        n_located = len(self._located_fingerprints)
        max_k = (
            n_located
            if self._max_nearest_fingerprints is None
            else min(self._max_nearest_fingerprints, n_located)
        )
        if self._min_nearest_fingerprints > max_k:
            raise EstimationError(
                f"min_nearest_fingerprints ({self._min_nearest_fingerprints}) exceeds "
                f"the {n_located} located fingerprints"
            )

        # Ranked once, every k takes a prefix
        ranked = finder.find_k_nearest_to(self._fingerprint, max_k)
        if not ranked:
            raise EstimationError(
                "No located fingerprint shares a radio source with the fingerprint"
            )

        first_error = None
        last_error = None
        for k in range(self._min_nearest_fingerprints, max_k + 1):
            neighbours = ranked[:k]
            try:
                position = self._solve(neighbours)
            except NUMERICAL_ERRORS as e:
                first_error = first_error or e
                last_error = e
            else:
                self._warn_retries(k, first_error)
                return position, neighbours

            if (
                len(neighbours) < k
                or k == max_k
                or not self._more_fingerprints_may_help(neighbours)
            ):
                break

        self._warn_retries(k, first_error)
        raise EstimationError(f"Position could not be estimated: {last_error}") from last_error

    def _more_fingerprints_may_help(self, neighbours: Sequence[Neighbour]) -> bool:
        """
        Whether a failed solve is worth retrying with one more fingerprint.

        Estimators override this when they can tell that a failure does not
        depend on the number of fingerprints.
        """
        return True

    def _warn_retries(self, last_k: int, first_error: Optional[Exception]) -> None:
        # One warning per estimate, however many k were tried
        if last_k > self._min_nearest_fingerprints:
            warnings.warn(
                f"Position could not be solved with {self._min_nearest_fingerprints} "
                f"nearest fingerprint(s) ({first_error}); retried up to {last_k}",
                RuntimeWarning,
            )

    def _source_path_loss_exponent(self, source: RadioSource) -> float:
        if self._use_sources_path_loss_exponent and source.path_loss_exponent is not None:
            return source.path_loss_exponent
        return self._path_loss_exponent

    def _source_path_loss_exponent_std(self, source: RadioSource) -> Optional[float]:
        if self._use_sources_path_loss_exponent and source.path_loss_exponent is not None:
            return source.path_loss_exponent_std
        return None

    def _build_observations(self, neighbours: Sequence[Neighbour]) -> List[Observation]:
        """
        Pair readings of the nearest fingerprints with readings of the
        unknown fingerprint on the same known source.

        Readings whose source is unknown, or taken exactly at the source
        position (where the propagation model is undefined), are skipped.
        """
        query = self._fingerprint
        query_mean = query.mean_rssi if self._remove_means else 0.0

        observations = []
        for index, neighbour in enumerate(neighbours):
            located = neighbour.fingerprint
            located_mean = located.mean_rssi if self._remove_means else 0.0

            for located_reading in located.readings:
                source = self._sources.get(located_reading.source_id)
                if source is None:
                    continue
                reading = query.reading_for(located_reading.source_id)
                if reading is None:
                    continue
                if np.array_equal(located.position, source.position):
                    continue

                observations.append(
                    Observation(
                        query_rssi=reading.rssi - query_mean,
                        fingerprint_rssi=located_reading.rssi - located_mean,
                        fingerprint_position=located.position,
                        source_position=source.position,
                        path_loss_exponent=self._source_path_loss_exponent(source),
                        query_rssi_std=reading.rssi_std,
                        fingerprint_rssi_std=located_reading.rssi_std,
                        path_loss_exponent_std=self._source_path_loss_exponent_std(source),
                        fingerprint_index=index,
                        source_id=source.identifier,
                    )
                )
        return observations

    def _set_located_fingerprints(self, value: Iterable[LocatedFingerprint]) -> None:
        if value is None:
            raise ConfigurationError("located fingerprints are required")
        fingerprints = list(value)
        dims = common_dimensions(fingerprints)
        if sum(len(f) for f in fingerprints) < dims:
            raise ConfigurationError(
                f"located fingerprints need at least {dims} readings in total"
            )
        self._located_fingerprints = fingerprints
        self._dims = dims

    def _set_fingerprint(self, value: Fingerprint) -> None:
        if not isinstance(value, Fingerprint):
            raise ConfigurationError(
                f"fingerprint must be a Fingerprint, got {type(value).__name__}"
            )
        self._fingerprint = value

    def _set_sources(self, value: Iterable[RadioSource]) -> None:
        if value is None:
            raise ConfigurationError("sources are required")
        sources: Dict[Hashable, RadioSource] = {}
        for source in value:
            if not isinstance(source, RadioSource):
                raise ConfigurationError(
                    f"sources must be RadioSource instances, got {type(source).__name__}"
                )
            if source.identifier in sources:
                raise ConfigurationError(f"duplicate radio source {source.identifier!r}")
            sources[source.identifier] = source
        self._sources = sources

    def _set_min_max_nearest_fingerprints(
        self, min_nearest_fingerprints: int, max_nearest_fingerprints: Optional[int]
    ) -> None:
        if min_nearest_fingerprints < 1:
            raise ConfigurationError(
                f"min_nearest_fingerprints must be >= 1, got {min_nearest_fingerprints}"
            )
        if (
            max_nearest_fingerprints is not None
            and max_nearest_fingerprints < min_nearest_fingerprints
        ):
            raise ConfigurationError(
                f"max_nearest_fingerprints ({max_nearest_fingerprints}) must be >= "
                f"min_nearest_fingerprints ({min_nearest_fingerprints})"
            )
        self._min_nearest_fingerprints = int(min_nearest_fingerprints)
        self._max_nearest_fingerprints = (
            None if max_nearest_fingerprints is None else int(max_nearest_fingerprints)
        )

    def _set_path_loss_exponent(self, value: float) -> None:
        if not value > 0.0:
            raise ConfigurationError(f"path_loss_exponent must be positive, got {value}")
        self._path_loss_exponent = float(value)
