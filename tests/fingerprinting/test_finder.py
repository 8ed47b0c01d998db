"""Unit tests for fingerprint_positioning.fingerprinting.finder.

Tests k-nearest located fingerprint search in raw and mean-removed modes.
"""

import numpy as np
import pytest

from fingerprint_positioning.errors import ConfigurationError
from fingerprint_positioning.fingerprinting import (
    FinderMode,
    Neighbour,
    RadioSourceKNearestFinder,
    fingerprint_distance,
    make_fingerprint,
    make_located_fingerprint,
)


@pytest.fixture
def located():
    """Four located fingerprints on a 10 m square."""
    return [
        make_located_fingerprint({"ap1": -50.0, "ap2": -60.0, "ap3": -70.0}, [0.0, 0.0]),
        make_located_fingerprint({"ap1": -60.0, "ap2": -50.0, "ap3": -80.0}, [10.0, 0.0]),
        make_located_fingerprint({"ap1": -70.0, "ap2": -80.0, "ap3": -50.0}, [0.0, 10.0]),
        make_located_fingerprint({"ap1": -55.0, "ap2": -55.0, "ap3": -55.0}, [10.0, 10.0]),
    ]


class TestFinderConstruction:
    """Test suite for RadioSourceKNearestFinder construction."""

    def test_none(self):
        with pytest.raises(ConfigurationError):
            RadioSourceKNearestFinder(None)

    def test_empty(self):
        with pytest.raises(ConfigurationError, match="empty"):
            RadioSourceKNearestFinder([])

    def test_unknown_mode(self, located):
        with pytest.raises(ConfigurationError, match="mode"):
            RadioSourceKNearestFinder(located, mode="cosine")

    def test_mode_from_value(self, located):
        finder = RadioSourceKNearestFinder(located, mode="mean_removed")
        assert finder.mode is FinderMode.MEAN_REMOVED


class TestFindKNearest:
    """Test suite for find_k_nearest_to() / find_nearest_to()."""

    def test_exact_match_first(self, located):
        finder = RadioSourceKNearestFinder(located)
        query = make_fingerprint({"ap1": -60.0, "ap2": -50.0, "ap3": -80.0})

        neighbours = finder.find_k_nearest_to(query, 2)

        assert len(neighbours) == 2
        assert isinstance(neighbours[0], Neighbour)
        assert neighbours[0].fingerprint is located[1]
        assert neighbours[0].distance == pytest.approx(0.0)
        assert neighbours[0].distance <= neighbours[1].distance
        assert finder.find_nearest_to(query) is located[1]

    def test_sorted_ascending(self, located):
        finder = RadioSourceKNearestFinder(located)
        query = make_fingerprint({"ap1": -52.0, "ap2": -58.0, "ap3": -68.0})

        neighbours = finder.find_k_nearest_to(query, 4)
        distances = [n.distance for n in neighbours]

        assert distances == sorted(distances)
        np.testing.assert_allclose(distances, np.sort(finder.distances_to(query)))

    def test_k_larger_than_database(self, located):
        finder = RadioSourceKNearestFinder(located)
        query = make_fingerprint({"ap1": -52.0})
        assert len(finder.find_k_nearest_to(query, 10)) == 4

    def test_ties_keep_input_order(self):
        fps = [
            make_located_fingerprint({"ap1": -50.0}, [0.0, 0.0]),
            make_located_fingerprint({"ap1": -60.0}, [1.0, 0.0]),
            make_located_fingerprint({"ap1": -50.0}, [2.0, 0.0]),
        ]
        finder = RadioSourceKNearestFinder(fps)

        neighbours = finder.find_k_nearest_to(make_fingerprint({"ap1": -50.0}), 2)

        assert [n.fingerprint for n in neighbours] == [fps[0], fps[2]]

    @pytest.mark.parametrize("k", [0, -1])
    def test_invalid_k(self, located, k):
        finder = RadioSourceKNearestFinder(located)
        with pytest.raises(ConfigurationError, match="k must be"):
            finder.find_k_nearest_to(make_fingerprint({"ap1": -50.0}), k)

    def test_disjoint_sources_excluded(self):
        """Fingerprints sharing no source are never ranked."""
        fps = [
            make_located_fingerprint({"ap7": -40.0}, [0.0, 0.0]),
            make_located_fingerprint({"ap1": -90.0, "ap8": -40.0}, [5.0, 0.0]),
            make_located_fingerprint({"ap9": -50.0}, [9.0, 0.0]),
        ]
        finder = RadioSourceKNearestFinder(fps)
        query = make_fingerprint({"ap1": -50.0, "ap2": -60.0})

        neighbours = finder.find_k_nearest_to(query, 3)

        assert [n.fingerprint for n in neighbours] == [fps[1]]
        assert finder.find_nearest_to(query) is fps[1]

    def test_nothing_in_common(self, located):
        finder = RadioSourceKNearestFinder(located)
        query = make_fingerprint({"ap42": -50.0})

        assert finder.find_k_nearest_to(query, 3) == []
        assert finder.find_nearest_to(query) is None


class TestFinderModes:
    """Test suite for RAW vs MEAN_REMOVED ranking."""

    def test_mean_removed_ignores_receiver_bias(self, located):
        # Same pattern as the fingerprint at (0, 10) but 12 dB stronger
        query = make_fingerprint({"ap1": -58.0, "ap2": -68.0, "ap3": -38.0})

        raw = RadioSourceKNearestFinder(located, FinderMode.RAW)
        no_mean = RadioSourceKNearestFinder(located, FinderMode.MEAN_REMOVED)

        assert no_mean.find_nearest_to(query) is located[2]
        assert no_mean.find_k_nearest_to(query, 1)[0].distance == pytest.approx(0.0, abs=1e-12)
        assert raw.find_k_nearest_to(query, 1)[0].distance > 1.0

    def test_fingerprint_distance_modes(self):
        a = make_fingerprint({"ap1": -50.0, "ap2": -60.0})
        b = make_fingerprint({"ap1": -45.0, "ap2": -55.0})

        assert fingerprint_distance(a, b) == pytest.approx(np.sqrt(50.0))
        assert fingerprint_distance(a, b, FinderMode.MEAN_REMOVED) == pytest.approx(0.0)
        assert fingerprint_distance(a, make_fingerprint({"ap3": -1.0})) == np.inf
