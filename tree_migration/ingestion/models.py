"""
Ingestion Stage Data Models

Key Types:
- FrameEntry: One image file with its position in the series (not yet decoded)
- Frame: A decoded image with its sequence index and capture order key
"""

import datetime as dt
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np


# (capture time, file name) - sortable, ties broken by name
OrderKey = tuple[dt.datetime, str]


@dataclass(frozen=True)
class FrameEntry:
    """
    A source image before decoding.

    Indices are assigned after the series is ordered and before anything is
    decoded, so a frame that later fails to decode still owns its index.

    Attributes:
        index: Sequence index (0..N-1, ascending with order_key)
        order_key: Capture order key
        path: Image file
    """

    index: int
    order_key: OrderKey
    path: Path

    @property
    def captured_at(self) -> dt.datetime:
        return self.order_key[0]


@dataclass(frozen=True)
class Frame:
    """
    A decoded still image from the series.

    Attributes:
        index: Sequence index, monotonically increasing with order_key
        order_key: Capture order key
        image: BGR image as numpy array, shape (H, W, 3), dtype uint8
        path: Source file, if loaded from disk
    """

    index: int
    order_key: OrderKey
    image: np.ndarray
    path: Optional[Path] = None

    def __post_init__(self):
        assert self.index >= 0, f"index must be >= 0, got {self.index}"
        # Pixel buffers are shared read-only between stages
        if self.image.flags.writeable:
            self.image.setflags(write=False)

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def size(self) -> tuple[int, int]:
        """(width, height) in pixels."""
        return (self.width, self.height)

    @property
    def captured_at(self) -> dt.datetime:
        return self.order_key[0]

    def __repr__(self) -> str:
        return (
            f"Frame(index={self.index}, size={self.width}x{self.height}, "
            f"captured_at={self.captured_at.isoformat()})"
        )
