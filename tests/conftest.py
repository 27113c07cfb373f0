"""
Pytest configuration and shared fixtures for tree_migration tests.
"""

from pathlib import Path
from typing import Optional

import cv2
import numpy as np
import pytest

from tree_migration.config.settings import PipelineConfig
from tree_migration.encoding.sink import VideoSink
from tree_migration.extraction.models import BoundingBox, DescriptorSet, ObjectDescriptor

SIGNATURE_LENGTH = PipelineConfig().extraction.signature_length
FRAME_SIZE = (640, 480)

BACKGROUND_BGR = (60, 90, 120)  # brown soil, ExG = 0
TREE_COLOURS = [(30, 160, 40), (90, 200, 120), (20, 120, 30)]


# =============================================================================
# DESCRIPTORS
# =============================================================================


def signature(k: int, length: int = SIGNATURE_LENGTH) -> np.ndarray:
    """Unit vector along axis k: identical for equal k, orthogonal otherwise."""
    vector = np.zeros(length, dtype=np.float64)
    vector[k % length] = 1.0
    return vector


def make_descriptor(
    frame_index: int,
    local_id: int,
    cx: float,
    cy: float,
    sig: int = 0,
    size: float = 40.0,
    confidence: float = 0.9,
    signature_vector: Optional[np.ndarray] = None,
) -> ObjectDescriptor:
    return ObjectDescriptor(
        frame_index=frame_index,
        local_id=local_id,
        bbox=BoundingBox.from_center(cx, cy, size, size),
        signature=signature(sig) if signature_vector is None else signature_vector,
        confidence=confidence,
    )


def make_set(frame_index: int, objects: list, frame_size=FRAME_SIZE) -> DescriptorSet:
    """
    Build a DescriptorSet from (cx, cy) or (cx, cy, sig) tuples; local ids
    follow list order.
    """
    descriptors = [
        make_descriptor(frame_index, local_id, *obj) for local_id, obj in enumerate(objects)
    ]
    return DescriptorSet(frame_index=frame_index, frame_size=frame_size, descriptors=descriptors)


# =============================================================================
# IMAGES
# =============================================================================


def forest_image(trees, size=(320, 240)) -> np.ndarray:
    """
    Synthetic frame: green discs on brown soil.

    Args:
        trees: (cx, cy, radius, colour_index) tuples
        size: (width, height)
    """
    width, height = size
    image = np.full((height, width, 3), BACKGROUND_BGR, dtype=np.uint8)
    for cx, cy, radius, colour in trees:
        cv2.circle(image, (int(cx), int(cy)), int(radius), TREE_COLOURS[colour], -1)
    return image


def write_series(directory: Path, images, start_day: int = 1) -> list[Path]:
    """Write images as PNGs named by capture date, one day apart."""
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for i, image in enumerate(images):
        path = directory / f"plot_2021-05-{start_day + i:02d}_12-00.png"
        assert cv2.imwrite(str(path), image)
        paths.append(path)
    return paths


def drifting_forest(num_frames: int = 4) -> list[np.ndarray]:
    """Two trees drifting slightly right, as if the camera moved a little."""
    return [
        forest_image([(80 + 2 * i, 120, 30, 0), (220 + 2 * i, 120 + i, 28, 1)])
        for i in range(num_frames)
    ]


@pytest.fixture
def image_dir(tmp_path) -> Path:
    """Directory with a 4-frame, 2-tree series."""
    directory = tmp_path / "images"
    write_series(directory, drifting_forest(4))
    return directory


@pytest.fixture
def quiet_config() -> PipelineConfig:
    """Default config without progress bars."""
    return PipelineConfig(show_progress=False)


# =============================================================================
# SINKS
# =============================================================================


class RecordingSink(VideoSink):
    """VideoSink that keeps every accepted frame in memory."""

    def __init__(self, output_path: Path, config=None):
        super().__init__(output_path, config or PipelineConfig().encoder)
        self.frames = []
        self.indices = []
        self.aborted = False

    def accept(self, frame, presentation_index):
        super().accept(frame, presentation_index)
        self.frames.append(frame)
        self.indices.append(presentation_index)

    def abort(self):
        if not self.is_finished:
            self.aborted = True
        super().abort()

    def _open(self, size):
        self.temp_path.write_bytes(b"")

    def _write(self, image):
        with open(self.temp_path, "ab") as f:
            f.write(b"frame\n")

    def _close(self):
        pass

    def _kill(self):
        pass


@pytest.fixture
def recording_sinks():
    """Sink factory that remembers every sink it built."""
    sinks = []

    def factory(path):
        sink = RecordingSink(path)
        sinks.append(sink)
        return sink

    factory.sinks = sinks
    return factory
