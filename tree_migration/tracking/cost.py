"""
Track-to-descriptor matching cost.

cost = w_pos * centroid_distance / frame_diagonal
     + w_feat * signature_distance

Both terms lie in [0, 1] for points inside the frame, so ``match_max_distance``
is on the same scale as the weights. Pairs whose cost exceeds the cutoff are
not candidates at all.
"""

import logging

import numpy as np

from tree_migration.config.settings import FeatureMetric, MatchingConfig
from tree_migration.extraction.models import ObjectDescriptor

logger = logging.getLogger(__name__)


def _unit_rows(vectors: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    norms = np.linalg.norm(vectors, axis=1)
    valid = norms > 1e-12
    unit = np.zeros_like(vectors)
    unit[valid] = vectors[valid] / norms[valid, None]
    return unit, valid


def signature_distance_matrix(
    a: np.ndarray, b: np.ndarray, metric: FeatureMetric = FeatureMetric.COSINE
) -> np.ndarray:
    """
    Pairwise signature distance in [0, 1].

    Args:
        a: (n, d) signatures
        b: (m, d) signatures
        metric: cosine (1 - clipped cosine similarity) or euclidean (distance
            between L2-normalized vectors, halved)

    Returns:
        (n, m) distance matrix. Rows/columns for zero vectors are 1.0.
    """
    unit_a, valid_a = _unit_rows(a.astype(np.float64))
    unit_b, valid_b = _unit_rows(b.astype(np.float64))

    if metric is FeatureMetric.COSINE:
        similarity = unit_a @ unit_b.T
        distance = 1.0 - np.clip(similarity, 0.0, 1.0)
    else:
        diff = unit_a[:, None, :] - unit_b[None, :, :]
        distance = np.clip(np.linalg.norm(diff, axis=2) / 2.0, 0.0, 1.0)

    distance[~valid_a, :] = 1.0
    distance[:, ~valid_b] = 1.0
    return distance


def position_distance_matrix(
    a: np.ndarray, b: np.ndarray, frame_size: tuple[int, int]
) -> np.ndarray:
    """Pairwise centroid distance normalized by the frame diagonal."""
    width, height = frame_size
    diagonal = max(float(np.hypot(width, height)), 1.0)
    diff = a[:, None, :] - b[None, :, :]
    return np.linalg.norm(diff, axis=2) / diagonal


def build_cost_matrix(
    previous: list[ObjectDescriptor],
    current: list[ObjectDescriptor],
    frame_size: tuple[int, int],
    config: MatchingConfig,
) -> np.ndarray:
    """
    Weighted cost between each track's last observation and each new descriptor.

    Args:
        previous: Last observation of each active track (rows)
        current: Descriptors of the new frame (columns)
        frame_size: (width, height) used to normalize centroid distance
        config: MatchingConfig with weights and metric

    Returns:
        (n, m) float64 cost matrix
    """
    n, m = len(previous), len(current)
    if n == 0 or m == 0:
        return np.zeros((n, m), dtype=np.float64)

    centers_prev = np.array([d.centroid for d in previous], dtype=np.float64)
    centers_curr = np.array([d.centroid for d in current], dtype=np.float64)
    sig_prev = np.vstack([d.signature for d in previous])
    sig_curr = np.vstack([d.signature for d in current])

    position = position_distance_matrix(centers_prev, centers_curr, frame_size)
    feature = signature_distance_matrix(sig_prev, sig_curr, config.feature_metric)

    return config.match_weight_position * position + config.match_weight_feature * feature

