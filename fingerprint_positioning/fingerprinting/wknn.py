"""Weighted k-nearest-neighbour position solver.

Estimates a position as the inverse-distance weighted average of the
positions of the nearest located fingerprints:

    x_hat = sum_i w_i x_i / sum_i w_i,    w_i = 1 / max(D_i, eps)
"""

from typing import Sequence

import numpy as np

from fingerprint_positioning.errors import ConfigurationError, EstimationError
from fingerprint_positioning.fingerprinting.finder import Neighbour, RadioSourceKNearestFinder
from fingerprint_positioning.fingerprinting.types import Fingerprint, Position

DEFAULT_EPSILON = 1e-7


def weighted_knn_position(
    neighbours: Sequence[Neighbour], epsilon: float = DEFAULT_EPSILON
) -> Position:
    """
    Inverse-distance weighted average of neighbour positions.

    Distances below epsilon are clamped to epsilon, so an exact RSSI match
    dominates without dividing by zero. A single neighbour returns its own
    position.

    Args:
        neighbours: Neighbours as returned by RadioSourceKNearestFinder.
        epsilon: Minimum distance used for weighting (> 0).

    Returns:
        Estimated position, shape (d,).

    Raises:
        ConfigurationError: If neighbours is empty or epsilon <= 0.

    Examples:
        >>> x_hat = weighted_knn_position(finder.find_k_nearest_to(query, 4))
    """
    if epsilon <= 0.0:
        raise ConfigurationError(f"epsilon must be positive, got {epsilon}")
    if not neighbours:
        raise ConfigurationError("at least one neighbour is required")

    positions = np.array([n.fingerprint.position for n in neighbours])
    if len(neighbours) == 1:
        return positions[0].copy()

    distances = np.maximum([n.distance for n in neighbours], epsilon)
    weights = 1.0 / distances
    return np.sum(weights[:, np.newaxis] * positions, axis=0) / np.sum(weights)


def knn_localize(
    fingerprint: Fingerprint,
    finder: RadioSourceKNearestFinder,
    k: int = 3,
    epsilon: float = DEFAULT_EPSILON,
) -> Position:
    """
    Weighted k-NN fingerprinting.

    Args:
        fingerprint: Query fingerprint.
        finder: Finder over the located fingerprints.
        k: Number of neighbours to average.
        epsilon: Minimum distance used for weighting.

    Returns:
        Estimated position, shape (d,).

    Raises:
        EstimationError: If no located fingerprint shares a source with
            the query.
    """
    neighbours = finder.find_k_nearest_to(fingerprint, k)
    if not neighbours:
        raise EstimationError("no located fingerprint shares a source with the query")
    return weighted_knn_position(neighbours, epsilon)
