"""
Minimum-cost bipartite assignment restricted to candidate edges.

Uses scipy.optimize.linear_sum_assignment (Hungarian algorithm) on the
sub-matrix of rows/columns that take part in at least one candidate edge.
Non-candidate cells get a prohibitive cost and are dropped after solving, so
the result is a maximum-cardinality matching over candidate edges with
minimum total cost among those.

Determinism:
- Costs are quantized to max_distance / QUANTIZATION_STEPS before solving,
  so mathematically equal costs tie exactly. Totals that differ by less than
  about one quantum also compare equal and are settled by the tie-break below
- Among optimal matchings the lexicographically smallest one is returned:
  rows are visited in ascending track id order and each row keeps the lowest
  column that still admits an optimal matching. A contested descriptor goes
  to the lowest track id and a track choosing between equal descriptors takes
  the lowest local id
- All arithmetic stays within exactly representable float64 integers for up
  to a few thousand rows
"""

import logging
from typing import Optional

import numpy as np
from scipy.optimize import linear_sum_assignment

logger = logging.getLogger(__name__)

# Quantization steps per unit of cutoff distance
QUANTIZATION_STEPS = 1_000_000


def _solve(solve_cost: np.ndarray) -> tuple[float, dict[int, int]]:
    """Return (total cost, {row: col}) of one optimal assignment."""
    row_ind, col_ind = linear_sum_assignment(solve_cost)
    total = float(solve_cost[row_ind, col_ind].sum())
    return total, {int(i): int(j) for i, j in zip(row_ind, col_ind)}


def _pinned(solve_cost: np.ndarray, row: int, col: int, forbidden: float) -> np.ndarray:
    """Copy of ``solve_cost`` in which ``row`` may only take ``col``."""
    pinned = solve_cost.copy()
    value = pinned[row, col]
    pinned[row, :] = forbidden
    pinned[:, col] = forbidden
    pinned[row, col] = value
    return pinned


def optimal_assignment(
    cost_matrix: np.ndarray, max_distance: float
) -> list[tuple[int, int, float]]:
    """
    Solve the assignment over candidate edges (cost <= max_distance).

    Args:
        cost_matrix: (n, m) cost matrix; rows in ascending track id order,
            columns in ascending descriptor local id order
        max_distance: Candidacy cutoff; pairs above it are never matched

    Returns:
        List of (row, col, cost) sorted by row
    """
    candidates = cost_matrix <= max_distance
    if cost_matrix.size == 0 or not candidates.any():
        return []

    # Restrict to rows/columns with at least one candidate edge
    rows = np.flatnonzero(candidates.any(axis=1))
    cols = np.flatnonzero(candidates.any(axis=0))
    sub_cost = cost_matrix[np.ix_(rows, cols)]
    sub_candidates = candidates[np.ix_(rows, cols)]
    k = min(sub_cost.shape)

    resolution = max(float(max_distance), 1e-12) / QUANTIZATION_STEPS
    quantized = np.rint(np.clip(sub_cost, 0.0, max_distance) / resolution)

    # Any candidate matching is cheaper than a single non-candidate cell,
    # and any matching of allowed cells is cheaper than a single forbidden one
    prohibitive = (float(quantized[sub_candidates].max()) + 1.0) * (k + 1)
    forbidden = prohibitive * (k + 1)
    solve_cost = np.where(sub_candidates, quantized, prohibitive)

    best, assigned = _solve(solve_cost)

    # Lexicographic refinement over the optimal matchings
    taken: set[int] = set()
    for sub_i in range(sub_cost.shape[0]):
        current: Optional[int] = assigned.get(sub_i)
        if current is not None and not sub_candidates[sub_i, current]:
            current = None
        for sub_j in np.flatnonzero(sub_candidates[sub_i]):
            sub_j = int(sub_j)
            if current is not None and sub_j >= current:
                break
            if sub_j in taken:
                continue
            trial = _pinned(solve_cost, sub_i, sub_j, forbidden)
            total, trial_assigned = _solve(trial)
            if total == best:
                solve_cost, assigned, current = trial, trial_assigned, sub_j
                break
        if current is not None:
            solve_cost = _pinned(solve_cost, sub_i, current, forbidden)
            taken.add(current)

    result = []
    for sub_i, sub_j in assigned.items():
        if not sub_candidates[sub_i, sub_j]:
            continue
        i, j = int(rows[sub_i]), int(cols[sub_j])
        result.append((i, j, float(cost_matrix[i, j])))

    result.sort()
    logger.debug(
        "Assignment: %d match(es) from %d candidate edge(s) (%dx%d)",
        len(result),
        int(candidates.sum()),
        cost_matrix.shape[0],
        cost_matrix.shape[1],
    )
    return result
