"""
Gap filling for track positions.

A track is drawn only over its [birth, last observed] span. Interior frames
without an observation are synthesized:
- hold: repeat the last observed extent
- interpolate: linear interpolation between the observations on either side

Positions are never extrapolated before birth or after the last observation.
"""

import logging

from tree_migration.config.settings import GapFillPolicy
from tree_migration.sequencing.models import Placement
from tree_migration.tracking.models import Track

logger = logging.getLogger(__name__)


def fill_track(track: Track, policy: GapFillPolicy) -> dict[int, Placement]:
    """
    Placements for every frame index in the track's span.

    Args:
        track: Track from the final table
        policy: GapFillPolicy.HOLD or GapFillPolicy.INTERPOLATE

    Returns:
        frame index -> Placement, covering birth..last observed inclusive
    """
    observed = track.observed_frames
    if not observed:
        return {}

    placements: dict[int, Placement] = {}
    for prev_index, next_index in zip(observed, observed[1:] + [None]):
        prev_bbox = track.bbox_at(prev_index)
        placements[prev_index] = Placement(track.track_id, prev_index, prev_bbox)
        if next_index is None:
            break

        next_bbox = track.bbox_at(next_index)
        gap = next_index - prev_index
        for frame_index in range(prev_index + 1, next_index):
            if policy is GapFillPolicy.INTERPOLATE:
                bbox = prev_bbox.lerp(next_bbox, (frame_index - prev_index) / gap)
            else:
                bbox = prev_bbox
            placements[frame_index] = Placement(track.track_id, frame_index, bbox, filled=True)

    return placements


def fill_tracks(tracks, policy: GapFillPolicy) -> dict[int, dict[int, Placement]]:
    """track id -> (frame index -> Placement) for every track."""
    filled = {track.track_id: fill_track(track, policy) for track in tracks}
    num_filled = sum(1 for p in filled.values() for placement in p.values() if placement.filled)
    logger.debug("Gap-fill (%s): %d synthesized placement(s)", policy.value, num_filled)
    return filled
