"""
Tests for the candidate-restricted minimum-cost assignment and the cost model.
"""

import itertools

import numpy as np
import pytest

from tree_migration.config import FeatureMetric, MatchingConfig
from tree_migration.tracking import (
    build_cost_matrix,
    optimal_assignment,
    signature_distance_matrix,
)

from conftest import make_descriptor, signature


def brute_force_best(cost, max_distance):
    """(cardinality, total cost) of the best candidate matching, by enumeration."""
    n, m = cost.shape
    best = (0, 0.0)
    for k in range(1, min(n, m) + 1):
        for rows in itertools.combinations(range(n), k):
            for cols in itertools.permutations(range(m), k):
                pairs = list(zip(rows, cols))
                if any(cost[i, j] > max_distance for i, j in pairs):
                    continue
                total = sum(cost[i, j] for i, j in pairs)
                if k > best[0] or (k == best[0] and total < best[1] - 1e-12):
                    best = (k, total)
    return best


class TestOptimalAssignment:
    def test_global_optimum_beats_greedy(self):
        # Greedy (cheapest edge first) takes (1, 0) then (0, 1): total 0.31
        # Optimal pairing is (0, 0) + (1, 1): total 0.29
        cost = np.array([[0.09, 0.30], [0.01, 0.20]])
        result = optimal_assignment(cost, max_distance=0.5)
        assert [(i, j) for i, j, _ in result] == [(0, 0), (1, 1)]

    def test_non_candidates_never_matched(self):
        cost = np.array([[0.6, 0.7], [0.8, 0.9]])
        assert optimal_assignment(cost, max_distance=0.5) == []

    def test_prefers_more_matches_over_cheaper_single_match(self):
        # Row 1 can only take column 0; matching both rows needs (0, 1)
        cost = np.array([[0.10, 0.20], [0.15, 0.90]])
        result = optimal_assignment(cost, max_distance=0.5)
        assert [(i, j) for i, j, _ in result] == [(0, 1), (1, 0)]

    def test_contested_descriptor_goes_to_lowest_row(self):
        cost = np.array([[0.2], [0.2], [0.2]])
        result = optimal_assignment(cost, max_distance=0.5)
        assert [(i, j) for i, j, _ in result] == [(0, 0)]

    def test_equal_descriptors_lowest_column(self):
        cost = np.array([[0.2, 0.2, 0.2]])
        result = optimal_assignment(cost, max_distance=0.5)
        assert [(i, j) for i, j, _ in result] == [(0, 0)]

    def test_equal_totals_go_to_lowest_track_id(self):
        # Both pairings total 0.4; track 0 keeps descriptor 0
        cost = np.array([[0.2, 0.1], [0.3, 0.2]])
        result = optimal_assignment(cost, max_distance=1.0)
        assert [(i, j) for i, j, _ in result] == [(0, 0), (1, 1)]

    def test_all_equal_square_gives_identity(self):
        cost = np.full((3, 3), 0.25)
        result = optimal_assignment(cost, max_distance=0.5)
        assert [(i, j) for i, j, _ in result] == [(0, 0), (1, 1), (2, 2)]

    def test_equal_totals_with_unmatched_track(self):
        # Three tracks, two descriptors, every pairing costs the same
        cost = np.array([[0.3, 0.3], [0.3, 0.3], [0.3, 0.3]])
        result = optimal_assignment(cost, max_distance=0.5)
        assert [(i, j) for i, j, _ in result] == [(0, 0), (1, 1)]

    def test_totals_within_one_quantum_tie(self):
        # 0.2 + 4e-8 rounds to the same quantum as 0.2 (max_distance / 1e6)
        cost = np.array([[0.2, 0.1], [0.3, 0.2 + 4e-8]])
        result = optimal_assignment(cost, max_distance=1.0)
        assert [(i, j) for i, j, _ in result] == [(0, 0), (1, 1)]

    def test_totals_beyond_one_quantum_are_ordered(self):
        cost = np.array([[0.2, 0.1], [0.3, 0.2 + 3e-6]])
        result = optimal_assignment(cost, max_distance=1.0)
        assert [(i, j) for i, j, _ in result] == [(0, 1), (1, 0)]

    def test_empty(self):
        assert optimal_assignment(np.zeros((0, 3)), 0.5) == []
        assert optimal_assignment(np.zeros((2, 0)), 0.5) == []

    def test_cost_at_cutoff_is_candidate(self):
        result = optimal_assignment(np.array([[0.5]]), max_distance=0.5)
        assert result == [(0, 0, 0.5)]

    @pytest.mark.parametrize("seed", range(5))
    def test_matches_brute_force(self, seed):
        rng = np.random.default_rng(seed)
        cost = rng.uniform(0.0, 1.0, size=(4, 5))
        result = optimal_assignment(cost, max_distance=0.6)

        assert len({i for i, _, _ in result}) == len(result)
        assert len({j for _, j, _ in result}) == len(result)
        assert all(c <= 0.6 for _, _, c in result)

        cardinality, total = brute_force_best(cost, 0.6)
        assert len(result) == cardinality
        assert sum(c for _, _, c in result) == pytest.approx(total, abs=1e-5)


class TestCostModel:
    def test_identical_descriptor_costs_zero(self):
        a = make_descriptor(0, 0, 100, 100, sig=3)
        b = make_descriptor(1, 0, 100, 100, sig=3)
        cost = build_cost_matrix([a], [b], (640, 480), MatchingConfig())
        assert cost[0, 0] == pytest.approx(0.0)

    def test_weighted_sum(self):
        config = MatchingConfig(match_weight_position=0.25, match_weight_feature=0.75)
        a = make_descriptor(0, 0, 0, 0, sig=0)
        b = make_descriptor(1, 0, 640, 480, sig=1)  # full diagonal, orthogonal signature
        cost = build_cost_matrix([a], [b], (640, 480), config)
        assert cost[0, 0] == pytest.approx(0.25 * 1.0 + 0.75 * 1.0)

    def test_metrics(self):
        a = np.array([signature(0)])
        b = np.array([signature(0), signature(1), np.zeros(96)])
        cosine = signature_distance_matrix(a, b, FeatureMetric.COSINE)
        euclidean = signature_distance_matrix(a, b, FeatureMetric.EUCLIDEAN)
        np.testing.assert_allclose(cosine, [[0.0, 1.0, 1.0]])
        np.testing.assert_allclose(euclidean, [[0.0, np.sqrt(2) / 2, 1.0]])
