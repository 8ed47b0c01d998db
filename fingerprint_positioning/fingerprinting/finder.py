"""Nearest located fingerprint search by RSSI similarity.

Located fingerprints are ranked by the distance between their RSSI vector
and the RSSI vector of a query fingerprint, restricted to the radio sources
read by both. Two distance variants are available:

    - FinderMode.RAW: Euclidean distance of raw RSSI values.
    - FinderMode.MEAN_REMOVED: each fingerprint subtracts its own mean RSSI
      first, so that a constant receiver bias does not dominate the ranking.
"""

from enum import Enum
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

import numpy as np

from fingerprint_positioning.errors import ConfigurationError
from fingerprint_positioning.fingerprinting.types import (
    Fingerprint,
    LocatedFingerprint,
    no_mean_rssi_distance,
    rssi_distance,
)


class FinderMode(Enum):
    """Distance variant used to rank located fingerprints.

    Attributes:
        RAW: Euclidean distance over common-source RSSI differences.
        MEAN_REMOVED: Same, after removing each fingerprint's mean RSSI.
    """

    RAW = "raw"
    MEAN_REMOVED = "mean_removed"


_DISTANCES: Dict[FinderMode, Callable[[Fingerprint, Fingerprint], float]] = {
    FinderMode.RAW: rssi_distance,
    FinderMode.MEAN_REMOVED: no_mean_rssi_distance,
}


class Neighbour(NamedTuple):
    """A located fingerprint paired with its RSSI distance to a query."""

    fingerprint: LocatedFingerprint
    distance: float


def fingerprint_distance(
    a: Fingerprint, b: Fingerprint, mode: FinderMode = FinderMode.RAW
) -> float:
    """
    Distance between two fingerprints for the given finder mode.

    Returns:
        Distance over common sources, or +inf if no source is shared.
    """
    return _DISTANCES[FinderMode(mode)](a, b)


class RadioSourceKNearestFinder:
    """
    k-nearest located fingerprint search.

    Attributes:
        fingerprints: Located fingerprints to search, in input order.
        mode: Distance variant.

    Example:
        >>> finder = RadioSourceKNearestFinder(located, mode=FinderMode.MEAN_REMOVED)
        >>> neighbours = finder.find_k_nearest_to(query, k=3)
        >>> positions = [n.fingerprint.position for n in neighbours]
    """

    def __init__(
        self,
        fingerprints: Iterable[LocatedFingerprint],
        mode: FinderMode = FinderMode.RAW,
    ):
        """
        Initialize finder.

        Args:
            fingerprints: Non-empty collection of located fingerprints.
            mode: Distance variant.

        Raises:
            ConfigurationError: If the collection is None or empty or the
                mode is unknown.
        """
        if fingerprints is None:
            raise ConfigurationError("fingerprints are required")
        self.fingerprints: List[LocatedFingerprint] = list(fingerprints)
        if not self.fingerprints:
            raise ConfigurationError("fingerprints must not be empty")
        try:
            self.mode = FinderMode(mode)
        except ValueError as e:
            raise ConfigurationError(f"Unknown finder mode: {mode!r}") from e

    def distances_to(self, fingerprint: Fingerprint) -> np.ndarray:
        """Distance from every located fingerprint to the query, in input order."""
        if fingerprint is None:
            raise ConfigurationError("fingerprint is required")
        distance = _DISTANCES[self.mode]
        return np.array([distance(f, fingerprint) for f in self.fingerprints])

    def find_k_nearest_to(self, fingerprint: Fingerprint, k: int) -> List[Neighbour]:
        """
        Find the k located fingerprints closest to a query fingerprint.

        Candidates sharing no source with the query are omitted, so fewer
        than k neighbours are returned when fewer qualify. Equal distances
        keep their input order.

        Args:
            fingerprint: Query fingerprint.
            k: Number of neighbours (>= 1).

        Returns:
            Neighbours sorted by ascending distance.

        Raises:
            ConfigurationError: If k < 1 or fingerprint is None.
        """
        if k < 1:
            raise ConfigurationError(f"k must be >= 1, got k={k}")

        distances = self.distances_to(fingerprint)
        candidates = np.flatnonzero(np.isfinite(distances))
        order = candidates[np.argsort(distances[candidates], kind="stable")]
        return [Neighbour(self.fingerprints[i], float(distances[i])) for i in order[:k]]

    def find_nearest_to(self, fingerprint: Fingerprint) -> Optional[LocatedFingerprint]:
        """Closest located fingerprint, or None if none shares a source."""
        nearest = self.find_k_nearest_to(fingerprint, 1)
        return nearest[0].fingerprint if nearest else None
