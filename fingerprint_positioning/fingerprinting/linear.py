"""Linear fingerprint position estimator.

For every radio source read both at a nearby located fingerprint p_f and at
the unknown position p, the log-distance model gives the squared distance
from p to the source position p_a:

    d^2 = |p_f - p_a|^2 * 10^((Pr_f - Pr) / (5 n))

Subtracting the circle equations |p - p_a|^2 = d_a^2 of two distinct
sources cancels |p|^2 and leaves one linear equation per pair:

    2 (p_b - p_a) . p = d_a^2 - d_b^2 - |p_a|^2 + |p_b|^2

Every observation is differenced against one reference observation (see
reference_pairs), so m observations give m - 1 equations.

When fingerprint means are removed, a constant RSSI offset between the
receivers turns into an unknown scale on the squared distances. The offset
enters as 10^(offset / (5 n)), so there is one scale s_g per group g of
observations sharing a fingerprint and a path-loss exponent. Pairs are then
formed within a group only and s_g is solved for along with p:

    2 (p_b - p_a) . p - s_g (e_a - e_b) = |p_b|^2 - |p_a|^2

The stacked system is solved by linear least squares. Noise-free readings
give the exact position in both cases.
"""

from typing import Dict, Hashable, List, Sequence, Tuple

import numpy as np

from fingerprint_positioning.estimators.least_squares import linear_least_squares
from fingerprint_positioning.fingerprinting.base import (
    FingerprintPositionEstimator,
    Observation,
)
from fingerprint_positioning.fingerprinting.finder import Neighbour
from fingerprint_positioning.fingerprinting.types import Position


def squared_distance_estimate(observation: Observation) -> float:
    """
    Squared distance from the unknown position to the observed source.

    Scaled from the known fingerprint-to-source distance by the RSSI
    difference between the fingerprint and the unknown position.
    """
    diff = observation.fingerprint_position - observation.source_position
    exponent = (observation.fingerprint_rssi - observation.query_rssi) / (
        5.0 * observation.path_loss_exponent
    )
    return float(diff @ diff) * 10.0 ** exponent


def reference_pairs(source_ids: Sequence[Hashable]) -> List[Tuple[int, int]]:
    """
    Index pairs (a, b) on distinct sources covering every observation once.

    Observation 0 is the reference. Observations on the reference's own
    source are paired with the first observation on another source instead.

    Args:
        source_ids: Source of each observation.

    Returns:
        len(source_ids) - 1 pairs, or none when all sources are the same.

    Example:
        >>> reference_pairs(["ap1", "ap2", "ap1", "ap3"])
        [(0, 1), (1, 2), (0, 3)]
    """
    if not source_ids:
        return []
    reference = source_ids[0]
    alternate = next((i for i, s in enumerate(source_ids) if s != reference), None)
    if alternate is None:
        return []

    pairs = []
    for i in range(1, len(source_ids)):
        if source_ids[i] != reference:
            pairs.append((0, i))
        else:
            pairs.append((alternate, i))
    return pairs


class LinearFingerprintPositionEstimator(FingerprintPositionEstimator):
    """
    Closed-form fingerprint position estimator.

    Needs readings to at least d + 1 known sources at the unknown position
    (d + 2 when fingerprint means are removed, to also fix the scale of each
    fingerprint).

    Example:
        >>> estimator = LinearFingerprintPositionEstimator(
        ...     located_fingerprints=survey, fingerprint=query, sources=aps
        ... )
        >>> position = estimator.estimate()
    """

    @property
    def min_required_sources(self) -> int:
        dims = self.number_of_dimensions or 2
        return dims + 2 if self.means_from_fingerprint_readings_removed else dims + 1

    def _solve(self, neighbours: Sequence[Neighbour]) -> Position:
        dims = self.number_of_dimensions
        observations = self._build_observations(neighbours)

        if self.means_from_fingerprint_readings_removed:
            groups: Dict[Tuple[int, float], List[Observation]] = {}
            for obs in observations:
                key = (obs.fingerprint_index, obs.path_loss_exponent)
                groups.setdefault(key, []).append(obs)
            groups_list = list(groups.values())
        else:
            groups_list = [observations]

        pair_groups = []
        for group in groups_list:
            pairs = reference_pairs([obs.source_id for obs in group])
            if pairs:
                pair_groups.append((group, pairs))
        if not pair_groups:
            raise np.linalg.LinAlgError("No pair of readings to distinct sources")

        n_scales = len(pair_groups) if self.means_from_fingerprint_readings_removed else 0
        n_rows = sum(len(pairs) for _, pairs in pair_groups)
        A = np.zeros((n_rows, dims + n_scales))
        rhs = np.zeros(n_rows)

        row = 0
        for g, (group, pairs) in enumerate(pair_groups):
            S = np.array([obs.source_position for obs in group])
            e = np.array([squared_distance_estimate(obs) for obs in group])
            norms = np.sum(S**2, axis=1)
            ia = np.array([a for a, _ in pairs])
            ib = np.array([b for _, b in pairs])
            rows = slice(row, row + len(pairs))

            A[rows, :dims] = 2.0 * (S[ib] - S[ia])
            if n_scales:
                A[rows, dims + g] = -(e[ia] - e[ib])
                rhs[rows] = norms[ib] - norms[ia]
            else:
                rhs[rows] = e[ia] - e[ib] - norms[ia] + norms[ib]
            row += len(pairs)

        x_hat, _ = linear_least_squares(A, rhs)
        if n_scales and np.any(x_hat[dims:] <= 0.0):
            raise np.linalg.LinAlgError("Non-positive distance scale")
        return x_hat[:dims]

    def _more_fingerprints_may_help(self, neighbours: Sequence[Neighbour]) -> bool:
        """
        False when adding fingerprints cannot change the rank of the system.

        The position columns only depend on source positions. Sources read
        by the unknown fingerprint that span fewer than d dimensions never
        give a solution. Without mean removal the system is also fixed once
        every such source has been observed.
        """
        known = [s for s in self._fingerprint.source_ids if s in self._sources]
        positions = np.array([self._sources[s].position for s in known])
        if len(positions) < 2:
            return False
        if np.linalg.matrix_rank(positions[1:] - positions[0]) < self.number_of_dimensions:
            return False
        if self.means_from_fingerprint_readings_removed:
            return True

        observed = set()
        for neighbour in neighbours:
            observed.update(neighbour.fingerprint.source_ids)
        return not set(known) <= observed
