"""
Extraction Stage

Derives candidate tree descriptors (position, extent, appearance signature,
confidence) from each frame.

Components:
- models: Data structures (BoundingBox, ObjectDescriptor, DescriptorSet)
- signature: Crown/trunk HSV colour signature
- canopy_extractor: Excess-green vegetation segmenter (default backend)
- yolo_extractor: ultralytics YOLO backend for user-supplied weights

Usage:
    from tree_migration.extraction import create_extractor

    extractor = create_extractor(config)
    descriptor_set = extractor.extract(frame)
"""

from tree_migration.config.settings import ExtractorBackend, PipelineConfig
from tree_migration.extraction.models import BoundingBox, DescriptorSet, ObjectDescriptor
from tree_migration.extraction.signature import SignatureExtractor, crop_bounds
from tree_migration.extraction.base import ObjectExtractor, validate_descriptor
from tree_migration.extraction.canopy_extractor import CanopyExtractor, excess_green


def create_extractor(config: PipelineConfig) -> ObjectExtractor:
    """Build the extractor selected by ``config.extraction.backend``."""
    if config.extraction.backend is ExtractorBackend.YOLO:
        # ultralytics pulls in torch; only import it when the backend is used
        from tree_migration.extraction.yolo_extractor import YOLOExtractor

        return YOLOExtractor(config.extraction, config.weights_path)
    return CanopyExtractor(config.extraction)


__all__ = [
    # Models
    "BoundingBox",
    "DescriptorSet",
    "ObjectDescriptor",
    # Signature
    "SignatureExtractor",
    "crop_bounds",
    # Extractors
    "ObjectExtractor",
    "CanopyExtractor",
    "excess_green",
    "validate_descriptor",
    "create_extractor",
]
