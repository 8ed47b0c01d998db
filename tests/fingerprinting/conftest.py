import numpy as np
import pytest

from fingerprint_positioning.fingerprinting import make_located_fingerprint
from scenes import SOURCE_POSITIONS_2D, Scene, make_sources, rssi_at


@pytest.fixture
def rng():
    return np.random.default_rng(2024)


@pytest.fixture
def small_scene():
    """Three sources and a 3 x 3 grid of located fingerprints."""
    sources = make_sources(SOURCE_POSITIONS_2D[:3])
    grid = [[x, y] for x in (5.0, 25.0, 45.0) for y in (5.0, 25.0, 45.0)]
    located = [make_located_fingerprint(rssi_at(p, sources), p) for p in grid]
    return Scene(sources, located)
