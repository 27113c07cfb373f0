"""
Canopy Extractor

Deterministic vegetation segmenter: finds tree-sized blobs of green in a frame
without any learned model.

Algorithm:
1. Chromaticity coordinates r, g, b = channel / (R + G + B)
2. Excess-green index ExG = 2g - r - b, thresholded at exg_threshold
3. Morphological open (remove speckle) then close (fill foliage holes)
4. 8-connected components, dropping those smaller than min_area
5. Confidence = mean of fill ratio (area / bbox area) and vegetation
   strength (mean ExG / exg_saturation, clipped to 1)
6. Keep candidates above min_confidence, at most max_objects of them
7. Local ids follow reading order (top-to-bottom, left-to-right)
"""

import logging

import cv2
import numpy as np

from tree_migration.config.settings import ExtractionConfig
from tree_migration.extraction.base import ObjectExtractor
from tree_migration.extraction.models import BoundingBox, ObjectDescriptor

logger = logging.getLogger(__name__)


def excess_green(image: np.ndarray) -> np.ndarray:
    """
    Excess-green index of a BGR image.

    Returns:
        float32 array (H, W) in [-1, 2]
    """
    pixels = image.astype(np.float32)
    total = pixels.sum(axis=2)
    total[total == 0] = 1.0
    b = pixels[:, :, 0] / total
    g = pixels[:, :, 1] / total
    r = pixels[:, :, 2] / total
    return 2.0 * g - r - b


class CanopyExtractor(ObjectExtractor):

    def __init__(self, config: ExtractionConfig):
        super().__init__(config)
        self.kernel = cv2.getStructuringElement(
            cv2.MORPH_ELLIPSE, (config.morph_kernel_size, config.morph_kernel_size)
        )
        logger.info(
            "CanopyExtractor initialized: exg>%.2f, min_area=%d, min_conf=%.2f, max_objects=%d",
            config.exg_threshold,
            config.min_area,
            config.min_confidence,
            config.max_objects,
        )

    def segment(self, image: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Vegetation mask of a frame.

        Returns:
            (mask, exg): uint8 mask (0/255) after morphology, and the raw ExG map
        """
        exg = excess_green(image)
        mask = (exg > self.config.exg_threshold).astype(np.uint8) * 255
        mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, self.kernel)
        mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, self.kernel)
        return mask, exg

    def _find_objects(self, image: np.ndarray, frame_index: int) -> list[ObjectDescriptor]:
        mask, exg = self.segment(image)
        num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)

        candidates = []
        for label in range(1, num_labels):
            x, y, w, h, area = (int(v) for v in stats[label])
            if area < self.config.min_area:
                continue

            component = labels[y : y + h, x : x + w] == label
            fill_ratio = area / float(w * h)
            mean_exg = float(exg[y : y + h, x : x + w][component].mean())
            strength = float(np.clip(mean_exg / self.config.exg_saturation, 0.0, 1.0))
            confidence = float(np.clip(0.5 * fill_ratio + 0.5 * strength, 0.0, 1.0))

            if confidence < self.config.min_confidence:
                continue
            candidates.append((confidence, (x, y, w, h), area, component))

        if len(candidates) > self.config.max_objects:
            # Highest confidence first, position as tie-break
            candidates.sort(key=lambda c: (-c[0], c[1][1], c[1][0]))
            dropped = len(candidates) - self.config.max_objects
            candidates = candidates[: self.config.max_objects]
            logger.debug("Frame %d: dropped %d low-confidence candidates", frame_index, dropped)

        candidates.sort(key=lambda c: (c[1][1], c[1][0], c[1][3], c[1][2]))

        descriptors = []
        for local_id, (confidence, (x, y, w, h), area, component) in enumerate(candidates):
            bbox = BoundingBox(x1=float(x), y1=float(y), x2=float(x + w), y2=float(y + h))
            signature = self.signatures.compute(image, bbox, component.astype(np.uint8))
            descriptors.append(
                ObjectDescriptor(
                    frame_index=frame_index,
                    local_id=local_id,
                    bbox=bbox,
                    signature=signature,
                    confidence=confidence,
                    area=float(area),
                )
            )
        return descriptors
