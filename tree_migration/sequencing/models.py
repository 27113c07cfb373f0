"""
Sequencing Stage Data Models

Key Types:
- Placement: Where a track is drawn in one frame (observed or gap-filled)
- CompositeFrame: One rendered output frame, handed once to the video sink
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from tree_migration.extraction.models import BoundingBox
from tree_migration.ingestion.models import OrderKey


@dataclass(frozen=True)
class Placement:
    """
    Attributes:
        track_id: Track drawn
        frame_index: Frame the placement belongs to
        bbox: Observed or synthesized extent
        filled: True when the position was synthesized by gap-fill
    """

    track_id: int
    frame_index: int
    bbox: BoundingBox
    filled: bool = False

    @property
    def center(self) -> tuple[float, float]:
        return self.bbox.center


@dataclass(frozen=True)
class CompositeFrame:
    """
    One output frame.

    Attributes:
        presentation_index: Position in the output video (0, 1, 2, ...)
        frame_index: Source frame the pixels come from
        order_key: Capture order key of the source frame
        image: BGR uint8 pixels (read-only)
        track_ids: Tracks drawn in this frame
        track_id: Set in per-track mode: the track this crop follows
    """

    presentation_index: int
    frame_index: int
    order_key: OrderKey
    image: np.ndarray
    track_ids: tuple[int, ...] = field(default_factory=tuple)
    track_id: Optional[int] = None

    def __post_init__(self):
        assert self.presentation_index >= 0, "presentation_index must be >= 0"
        if self.image.flags.writeable:
            self.image.setflags(write=False)

    @property
    def size(self) -> tuple[int, int]:
        """(width, height)"""
        return (self.image.shape[1], self.image.shape[0])

    def __repr__(self) -> str:
        mode = f"track={self.track_id}" if self.track_id is not None else f"tracks={len(self.track_ids)}"
        return (
            f"CompositeFrame(pts={self.presentation_index}, frame={self.frame_index}, "
            f"{mode}, size={self.size[0]}x{self.size[1]})"
        )
