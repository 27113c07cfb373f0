"""
Tracking Stage

Correspondence resolver: links per-frame descriptors into persistent tree
identities.

Components:
- models: Data structures (TrackStatus, Track, TrackTable)
- cost: Weighted position + signature cost between tracks and descriptors
- assignment: Minimum-cost matching over candidate edges (Hungarian)
- resolver: Frame-by-frame CorrespondenceResolver

Usage:
    from tree_migration.tracking import CorrespondenceResolver

    resolver = CorrespondenceResolver(config.matching, config.extraction.signature_length)
    for descriptor_set in descriptor_sets:
        resolver.step(descriptor_set)
    table = resolver.finalize()
"""

from tree_migration.tracking.models import Track, TrackStatus, TrackTable
from tree_migration.tracking.cost import (
    build_cost_matrix,
    position_distance_matrix,
    signature_distance_matrix,
)
from tree_migration.tracking.assignment import optimal_assignment
from tree_migration.tracking.resolver import CorrespondenceResolver, StepResult

__all__ = [
    # Models
    "Track",
    "TrackStatus",
    "TrackTable",
    # Cost
    "build_cost_matrix",
    "position_distance_matrix",
    "signature_distance_matrix",
    # Assignment
    "optimal_assignment",
    # Resolver
    "CorrespondenceResolver",
    "StepResult",
]
