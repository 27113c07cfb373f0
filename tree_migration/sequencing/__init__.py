"""
Sequencing Stage

Renders the TrackTable over the frame series into ordered CompositeFrames.

Components:
- models: Data structures (Placement, CompositeFrame)
- gap_fill: Interior-only hold / interpolate gap filling
- renderer: Track colours, overlays, dashed outlines, square crops
- sequencer: Composite and per-track frame streams, sink writer
"""

from tree_migration.sequencing.models import CompositeFrame, Placement
from tree_migration.sequencing.gap_fill import fill_track, fill_tracks
from tree_migration.sequencing.renderer import (
    crop_square,
    render_composite,
    render_track_crop,
    track_color,
)
from tree_migration.sequencing.sequencer import Sequencer

__all__ = [
    "CompositeFrame",
    "Placement",
    "fill_track",
    "fill_tracks",
    "crop_square",
    "render_composite",
    "render_track_crop",
    "track_color",
    "Sequencer",
]
