"""
Extraction Stage Data Models

Key Types:
- BoundingBox: 2D axis-aligned box in image coordinates
- ObjectDescriptor: One candidate tree in one frame (position, extent, signature)
- DescriptorSet: All descriptors extracted from one frame
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class BoundingBox:
    x1: float
    y1: float
    x2: float
    y2: float

    def __post_init__(self):
        assert self.x2 >= self.x1, f"Invalid bbox: x2={self.x2} < x1={self.x1}"
        assert self.y2 >= self.y1, f"Invalid bbox: y2={self.y2} < y1={self.y1}"

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def center(self) -> tuple[float, float]:
        cx = (self.x1 + self.x2) / 2.0
        cy = (self.y1 + self.y2) / 2.0
        return (cx, cy)

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_xyxy(cls, coords: np.ndarray) -> "BoundingBox":
        return cls(x1=float(coords[0]), y1=float(coords[1]), x2=float(coords[2]), y2=float(coords[3]))

    @classmethod
    def from_center(cls, cx: float, cy: float, width: float, height: float) -> "BoundingBox":
        half_w = max(width, 0.0) / 2.0
        half_h = max(height, 0.0) / 2.0
        return cls(x1=cx - half_w, y1=cy - half_h, x2=cx + half_w, y2=cy + half_h)

    def clip(self, width: int, height: int) -> "BoundingBox":
        """
        Clip box to image boundaries.

        Args:
            width: Image width in pixels
            height: Image height in pixels

        Returns:
            New BoundingBox clipped to [0, width) x [0, height)
        """
        x1_clipped = max(0, min(self.x1, width))
        y1_clipped = max(0, min(self.y1, height))
        x2_clipped = max(0, min(self.x2, width))
        y2_clipped = max(0, min(self.y2, height))

        return BoundingBox(x1=x1_clipped, y1=y1_clipped, x2=x2_clipped, y2=y2_clipped)

    def lerp(self, other: "BoundingBox", t: float) -> "BoundingBox":
        """Linear interpolation towards ``other`` (t=0 -> self, t=1 -> other)."""
        return BoundingBox(
            x1=self.x1 + (other.x1 - self.x1) * t,
            y1=self.y1 + (other.y1 - self.y1) * t,
            x2=self.x2 + (other.x2 - self.x2) * t,
            y2=self.y2 + (other.y2 - self.y2) * t,
        )

    def to_list(self) -> list[float]:
        return [self.x1, self.y1, self.x2, self.y2]


@dataclass(frozen=True, eq=False)
class ObjectDescriptor:
    """
    One candidate tree in one frame.

    Attributes:
        frame_index: Frame this descriptor belongs to
        local_id: Descriptor ID within the frame (assigned by the extractor)
        bbox: Bounding extent in image coordinates
        signature: Fixed-size appearance vector (L2-normalized HSV histogram)
        confidence: Extraction confidence in [0, 1]
        area: Object area in pixels (segment area, or bbox area for box detectors)
    """

    frame_index: int
    local_id: int
    bbox: BoundingBox
    signature: np.ndarray
    confidence: float
    area: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.signature, np.ndarray) and self.signature.flags.writeable:
            self.signature.setflags(write=False)

    @property
    def centroid(self) -> tuple[float, float]:
        return self.bbox.center

    @property
    def key(self) -> tuple[int, int]:
        """(frame_index, local_id) - unique across the series."""
        return (self.frame_index, self.local_id)

    def __repr__(self) -> str:
        cx, cy = self.centroid
        return (
            f"ObjectDescriptor(frame={self.frame_index}, id={self.local_id}, "
            f"conf={self.confidence:.2f}, center=({cx:.0f}, {cy:.0f}), "
            f"size={self.bbox.width:.0f}x{self.bbox.height:.0f})"
        )


@dataclass
class DescriptorSet:
    """
    All descriptors extracted from one frame.

    Attributes:
        frame_index: Frame sequence index
        frame_size: (width, height) of the source frame
        descriptors: ObjectDescriptor list, ordered by local_id
        extraction_time: How long extraction took (seconds)
    """

    frame_index: int
    frame_size: tuple[int, int]
    descriptors: list[ObjectDescriptor] = field(default_factory=list)
    extraction_time: float = 0.0

    @property
    def num_descriptors(self) -> int:
        return len(self.descriptors)

    @property
    def is_empty(self) -> bool:
        return len(self.descriptors) == 0

    def __repr__(self) -> str:
        return (
            f"DescriptorSet(frame={self.frame_index}, "
            f"descriptors={self.num_descriptors}, time={self.extraction_time:.3f}s)"
        )
