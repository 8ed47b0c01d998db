"""Scene generation shared by the estimator tests.

Readings are computed with the log-distance model and no noise, so the
generating positions are known exactly.
"""

from typing import List, NamedTuple

import numpy as np

from fingerprint_positioning.fingerprinting import (
    LocatedFingerprint,
    RadioSource,
    make_fingerprint,
    make_located_fingerprint,
)
from fingerprint_positioning.rf import received_power_dbm

TX_POWER = -60.0  # dBm
EXTENT = 50.0  # m, side of the surveyed square

# Outside the surveyed square, so no fingerprint coincides with a source
SOURCE_POSITIONS_2D = np.array(
    [[-10.0, -10.0], [60.0, -10.0], [60.0, 60.0], [-10.0, 60.0], [25.0, -15.0]]
)


class Scene(NamedTuple):
    sources: List[RadioSource]
    located: List[LocatedFingerprint]


def make_sources(positions=SOURCE_POSITIONS_2D, path_loss_exponent=None):
    return [
        RadioSource(
            f"ap{i}",
            p,
            transmitted_power=TX_POWER,
            path_loss_exponent=path_loss_exponent,
        )
        for i, p in enumerate(positions)
    ]


def rssi_at(position, sources, n=2.0, bias=0.0):
    """RSSI of every source at a position, as {source_id: rssi}."""
    position = np.asarray(position, dtype=float)
    return {
        s.identifier: received_power_dbm(
            s.transmitted_power,
            np.linalg.norm(position - s.position),
            s.path_loss_exponent or n,
        )
        + bias
        for s in sources
    }


def fingerprint_at(position, sources, n=2.0, bias=0.0):
    return make_fingerprint(rssi_at(position, sources, n, bias))


def make_scene(rng, n_located=1000, sources=None, n=2.0, extent=EXTENT):
    """Sources plus located fingerprints at uniformly random positions."""
    if sources is None:
        sources = make_sources()
    dims = sources[0].dims
    positions = rng.uniform(0.0, extent, size=(n_located, dims))
    located = [make_located_fingerprint(rssi_at(p, sources, n), p) for p in positions]
    return Scene(sources, located)


