import logging
import time
from abc import ABC, abstractmethod

import numpy as np

from tree_migration.config.settings import ExtractionConfig
from tree_migration.exceptions import MalformedDescriptor
from tree_migration.extraction.models import DescriptorSet, ObjectDescriptor
from tree_migration.extraction.signature import SignatureExtractor
from tree_migration.ingestion.frame_loader import validate_image
from tree_migration.ingestion.models import Frame

logger = logging.getLogger(__name__)


class ObjectExtractor(ABC):
    """
    Frame -> DescriptorSet.

    Subclasses implement ``_find_objects``; this class validates the pixel
    buffer and times the call. ``extract`` is called from
    worker threads and must not mutate shared state.
    """

    def __init__(self, config: ExtractionConfig):
        self.config = config
        self.signatures = SignatureExtractor(config)

    def extract(self, frame: Frame) -> DescriptorSet:
        """
        Extract candidate objects from one frame.

        Raises:
            DecodeError: If the frame's pixel buffer is malformed
        """
        image = validate_image(frame.image, frame.path, frame.index)
        start_time = time.perf_counter()

        descriptors = self._find_objects(image, frame.index)

        elapsed = time.perf_counter() - start_time
        logger.debug(
            "Frame %d: %d object(s) in %.1fms", frame.index, len(descriptors), elapsed * 1000
        )
        return DescriptorSet(
            frame_index=frame.index,
            frame_size=(image.shape[1], image.shape[0]),
            descriptors=descriptors,
            extraction_time=elapsed,
        )

    @abstractmethod
    def _find_objects(self, image: np.ndarray, frame_index: int) -> list[ObjectDescriptor]:
        """Return descriptors with local ids 0..K-1 in a deterministic order."""


def validate_descriptor(descriptor: ObjectDescriptor, signature_length: int) -> None:
    """
    Check a descriptor before it enters matching.

    Raises:
        MalformedDescriptor: Wrong signature length, non-finite values, or
            confidence outside [0, 1]
    """
    signature = descriptor.signature
    if not isinstance(signature, np.ndarray) or signature.ndim != 1:
        raise MalformedDescriptor(
            f"Descriptor {descriptor.key}: signature must be a 1-D array"
        )
    if signature.shape[0] != signature_length:
        raise MalformedDescriptor(
            f"Descriptor {descriptor.key}: signature length {signature.shape[0]}, "
            f"expected {signature_length}"
        )
    if not np.all(np.isfinite(signature)):
        raise MalformedDescriptor(f"Descriptor {descriptor.key}: non-finite signature values")

    confidence = descriptor.confidence
    if not (isinstance(confidence, (int, float)) and 0.0 <= confidence <= 1.0):
        raise MalformedDescriptor(
            f"Descriptor {descriptor.key}: confidence {confidence!r} outside [0, 1]"
        )

    bbox = descriptor.bbox
    if not all(np.isfinite(v) for v in bbox.to_list()):
        raise MalformedDescriptor(f"Descriptor {descriptor.key}: non-finite bounding box")
