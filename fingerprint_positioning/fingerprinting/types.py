"""Type definitions for fingerprint-based position estimation.

This module defines the immutable value objects shared by the nearest
fingerprint finder and the position estimators:

    - RssiReading: RSSI measured from one radio source.
    - Fingerprint: readings to distinct radio sources taken at one place.
    - LocatedFingerprint: a fingerprint whose survey position is known.
    - RadioSource: a radio source (access point, beacon) with known position.

Positions are NumPy arrays of shape (2,) or (3,).
"""

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, Optional, Tuple

import numpy as np

from fingerprint_positioning.errors import ConfigurationError
from fingerprint_positioning.rf.propagation import DEFAULT_FREQUENCY

# Type alias for clarity and documentation
Position = np.ndarray  # Shape (d,), d=2 (x, y) or d=3 (x, y, z)

SUPPORTED_DIMENSIONS = (2, 3)


def as_position(position) -> Position:
    """
    Convert a coordinate sequence to a read-only position array.

    Raises:
        ConfigurationError: If the position is not 2D or 3D or not finite.
    """
    if position is None:
        raise ConfigurationError("position is required")
    arr = np.array(position, dtype=float)
    if arr.ndim != 1 or arr.shape[0] not in SUPPORTED_DIMENSIONS:
        raise ConfigurationError(
            f"position must have shape (2,) or (3,), got {arr.shape}"
        )
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError("position contains non-finite values")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class RadioSource:
    """
    Radio source with known position.

    Sources are identified by `identifier` only: two instances with the same
    identifier are equal and hash alike, regardless of their other fields.

    Attributes:
        identifier: Identity used to match readings (e.g. a BSSID).
        position: Source position, shape (2,) or (3,).
        transmitted_power: Equivalent transmitted power in dBm, if known.
        path_loss_exponent: Source-specific path-loss exponent, if known.
        path_loss_exponent_std: Standard deviation of path_loss_exponent, if
            known (> 0).
        frequency: Carrier frequency in Hz.
    """

    identifier: Hashable
    position: Position = field(compare=False)
    transmitted_power: Optional[float] = field(default=None, compare=False)
    path_loss_exponent: Optional[float] = field(default=None, compare=False)
    path_loss_exponent_std: Optional[float] = field(default=None, compare=False)
    frequency: float = field(default=DEFAULT_FREQUENCY, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", as_position(self.position))
        if self.path_loss_exponent is not None and self.path_loss_exponent <= 0.0:
            raise ConfigurationError(
                f"path_loss_exponent must be positive, got {self.path_loss_exponent}"
            )
        if self.path_loss_exponent_std is not None and not self.path_loss_exponent_std > 0.0:
            raise ConfigurationError(
                f"path_loss_exponent_std must be positive, got {self.path_loss_exponent_std}"
            )
        if self.frequency <= 0.0:
            raise ConfigurationError(f"frequency must be positive, got {self.frequency}")

    @property
    def dims(self) -> int:
        """Dimensionality of the source position."""
        return self.position.shape[0]


@dataclass(frozen=True)
class RssiReading:
    """
    RSSI reading of a single radio source.

    Attributes:
        source_id: Identifier of the radio source that was read.
        rssi: Received signal strength in dBm.
        rssi_std: Standard deviation of the RSSI in dB, if known (> 0).
    """

    source_id: Hashable
    rssi: float
    rssi_std: Optional[float] = None

    def __post_init__(self) -> None:
        if self.source_id is None:
            raise ConfigurationError("source_id is required")
        if self.rssi_std is not None and not self.rssi_std > 0.0:
            raise ConfigurationError(
                f"rssi_std must be strictly positive, got {self.rssi_std}"
            )

    def has_same_source(self, other: "RssiReading") -> bool:
        """True if both readings belong to the same radio source."""
        return self.source_id == other.source_id


@dataclass(frozen=True, eq=False)
class Fingerprint:
    """
    Collection of RSSI readings to distinct radio sources.

    Readings are keyed by source identity; their order is irrelevant.

    Attributes:
        readings: Tuple of RssiReading, at most one per source.

    Examples:
        >>> fp = Fingerprint([RssiReading("ap1", -50.0), RssiReading("ap2", -60.0)])
        >>> fp.mean_rssi
        -55.0
    """

    readings: Tuple[RssiReading, ...] = ()

    def __post_init__(self) -> None:
        if self.readings is None:
            raise ConfigurationError("readings are required")
        readings = tuple(self.readings)
        by_source: Dict[Hashable, RssiReading] = {}
        for reading in readings:
            if not isinstance(reading, RssiReading):
                raise ConfigurationError(
                    f"readings must be RssiReading instances, got {type(reading).__name__}"
                )
            if reading.source_id in by_source:
                raise ConfigurationError(
                    f"duplicate reading for source {reading.source_id!r}"
                )
            by_source[reading.source_id] = reading
        object.__setattr__(self, "readings", readings)
        object.__setattr__(self, "_by_source", by_source)

    def __len__(self) -> int:
        return len(self.readings)

    @property
    def source_ids(self) -> Tuple[Hashable, ...]:
        """Identifiers of the sources read, in reading order."""
        return tuple(r.source_id for r in self.readings)

    @property
    def mean_rssi(self) -> float:
        """Mean RSSI across all readings, NaN for an empty fingerprint."""
        if not self.readings:
            return float("nan")
        return float(np.mean([r.rssi for r in self.readings]))

    def reading_for(self, source_id: Hashable) -> Optional[RssiReading]:
        """Reading of the given source, or None if it was not read."""
        return self._by_source.get(source_id)

    def rssi_by_source(self) -> Dict[Hashable, float]:
        """Mapping from source identifier to RSSI."""
        return {r.source_id: r.rssi for r in self.readings}

    def common_source_ids(self, other: "Fingerprint") -> Tuple[Hashable, ...]:
        """Sources read by both fingerprints, in this fingerprint's order."""
        return tuple(s for s in self.source_ids if other.reading_for(s) is not None)

    def distance_to(self, other: "Fingerprint") -> float:
        """Euclidean RSSI distance over common sources (inf if none)."""
        return rssi_distance(self, other)

    def no_mean_distance_to(self, other: "Fingerprint") -> float:
        """Mean-removed RSSI distance over common sources (inf if none)."""
        return no_mean_rssi_distance(self, other)


@dataclass(frozen=True, eq=False)
class LocatedFingerprint(Fingerprint):
    """
    Fingerprint recorded at a known survey position.

    Attributes:
        readings: Tuple of RssiReading, at most one per source.
        position: Survey position, shape (2,) or (3,). Read-only.

    Examples:
        >>> lf = LocatedFingerprint(
        ...     readings=[RssiReading("ap1", -50.0)], position=[1.0, 2.0]
        ... )
        >>> lf.dims
        2
    """

    position: Position = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "position", as_position(self.position))

    @property
    def dims(self) -> int:
        """Dimensionality of the survey position."""
        return self.position.shape[0]


def _common_rssi(a: Fingerprint, b: Fingerprint) -> Tuple[np.ndarray, np.ndarray]:
    """Aligned RSSI vectors of the sources read by both fingerprints."""
    common = a.common_source_ids(b)
    za = np.array([a.reading_for(s).rssi for s in common], dtype=float)
    zb = np.array([b.reading_for(s).rssi for s in common], dtype=float)
    return za, zb


def rssi_distance(a: Fingerprint, b: Fingerprint) -> float:
    """
    Euclidean distance between RSSI vectors over common sources.

    Sources read by only one of the fingerprints are ignored. If no source
    is shared the distance is +inf.

    Examples:
        >>> a = make_fingerprint({"ap1": -50.0, "ap2": -60.0, "ap3": -70.0})
        >>> b = make_fingerprint({"ap1": -53.0, "ap2": -64.0, "ap4": -40.0})
        >>> rssi_distance(a, b)
        5.0
    """
    za, zb = _common_rssi(a, b)
    if za.size == 0:
        return np.inf
    return float(np.linalg.norm(za - zb))


def no_mean_rssi_distance(a: Fingerprint, b: Fingerprint) -> float:
    """
    Euclidean distance between mean-removed RSSI vectors over common sources.

    Each fingerprint subtracts the mean over all of its own readings before
    comparing, which cancels a constant offset between receivers (e.g.
    differing antenna sensitivity). If no source is shared the distance is
    +inf.
    """
    za, zb = _common_rssi(a, b)
    if za.size == 0:
        return np.inf
    return float(np.linalg.norm((za - a.mean_rssi) - (zb - b.mean_rssi)))


def make_fingerprint(rssi_by_source: Dict[Hashable, float]) -> Fingerprint:
    """Build a Fingerprint from a {source_id: rssi} mapping."""
    return Fingerprint(tuple(RssiReading(s, v) for s, v in rssi_by_source.items()))


def make_located_fingerprint(
    rssi_by_source: Dict[Hashable, float], position
) -> LocatedFingerprint:
    """Build a LocatedFingerprint from a {source_id: rssi} mapping."""
    return LocatedFingerprint(
        readings=tuple(RssiReading(s, v) for s, v in rssi_by_source.items()),
        position=position,
    )


def common_dimensions(fingerprints: Iterable[LocatedFingerprint]) -> int:
    """
    Shared dimensionality of a collection of located fingerprints.

    Raises:
        ConfigurationError: If the collection is empty, contains something
            other than LocatedFingerprint, or mixes 2D and 3D positions.
    """
    dims = set()
    for fp in fingerprints:
        if not isinstance(fp, LocatedFingerprint):
            raise ConfigurationError(
                f"expected LocatedFingerprint, got {type(fp).__name__}"
            )
        dims.add(fp.dims)
    if not dims:
        raise ConfigurationError("located fingerprints must not be empty")
    if len(dims) > 1:
        raise ConfigurationError(
            f"located fingerprints mix dimensionalities {sorted(dims)}"
        )
    return dims.pop()
