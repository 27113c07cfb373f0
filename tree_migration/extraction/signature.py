"""
Crown/Trunk Appearance Signature

Fixed-length HSV colour descriptor for one tree crop, used by the
correspondence resolver to tell neighbouring trees apart.
"""

import logging
from typing import Optional

import cv2
import numpy as np

from tree_migration.config.settings import ExtractionConfig
from tree_migration.extraction.models import BoundingBox

logger = logging.getLogger(__name__)


def crop_bounds(bbox: BoundingBox, width: int, height: int) -> tuple[int, int, int, int]:
    """Integer pixel bounds (x1, y1, x2, y2) of a bbox clipped to the image."""
    clipped = bbox.clip(width, height)
    return (
        int(np.floor(clipped.x1)),
        int(np.floor(clipped.y1)),
        int(np.ceil(clipped.x2)),
        int(np.ceil(clipped.y2)),
    )


class SignatureExtractor:
    """
    Weighted colour histogram over the crown and trunk halves of a crop.

    Algorithm:
    1. Crop the object region from the frame using its bounding box
    2. Resize to fixed dimensions for consistent processing
    3. Convert to HSV colour space (robust to seasonal lighting changes)
    4. Split vertically into crown (upper) and trunk (lower) regions
    5. Compute H, S, V histograms per region, restricted to the object mask
    6. Weight regions (crown 60%, trunk 40% by default) and concatenate
    7. L2-normalize

    Output: bins_per_channel x 3 channels x 2 regions (96 with 16 bins)
    """

    def __init__(self, config: ExtractionConfig):
        self.config = config
        self.length = config.signature_length

    def compute(
        self, image: np.ndarray, bbox: BoundingBox, mask: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Compute the signature for one object.

        Args:
            image: BGR frame (H, W, 3)
            bbox: Object extent in frame coordinates
            mask: Optional uint8 mask of the crop given by ``crop_bounds``;
                only non-zero pixels are counted

        Returns:
            L2-normalized float64 vector of length ``self.length``. A crop with
            no usable pixels yields the zero vector.
        """
        x1, y1, x2, y2 = crop_bounds(bbox, image.shape[1], image.shape[0])
        if x2 - x1 < 1 or y2 - y1 < 1:
            return np.zeros(self.length, dtype=np.float64)

        size = (self.config.crop_resize_width, self.config.crop_resize_height)
        crop = cv2.resize(image[y1:y2, x1:x2], size, interpolation=cv2.INTER_LINEAR)
        hsv = cv2.cvtColor(crop, cv2.COLOR_BGR2HSV)

        crop_mask = None
        if mask is not None:
            if mask.shape[:2] != (y2 - y1, x2 - x1):
                raise ValueError(
                    f"Mask shape {mask.shape[:2]} does not match crop {(y2 - y1, x2 - x1)}"
                )
            crop_mask = cv2.resize(
                mask.astype(np.uint8), size, interpolation=cv2.INTER_NEAREST
            ) > 0
            if not crop_mask.any():
                crop_mask = None

        mid = self.config.crop_resize_height // 2
        crown = self._region_histogram(hsv[:mid], None if crop_mask is None else crop_mask[:mid])
        trunk = self._region_histogram(hsv[mid:], None if crop_mask is None else crop_mask[mid:])

        signature = np.concatenate(
            [crown * self.config.crown_weight, trunk * self.config.trunk_weight]
        )

        norm = np.linalg.norm(signature)
        if norm > 1e-10:
            signature = signature / norm
        else:
            signature = np.zeros_like(signature)

        return signature.astype(np.float64)

    def _region_histogram(self, region: np.ndarray, mask: Optional[np.ndarray]) -> np.ndarray:
        """
        Concatenated H-S-V histograms for a region: [H | S | V].
        """
        if mask is not None:
            pixels = region[mask]
        else:
            pixels = region.reshape(-1, 3)

        bins = self.config.bins_per_channel
        # H channel: range [0, 180) in OpenCV
        h_hist = np.histogram(pixels[:, 0], bins=bins, range=(0, 180))[0]
        s_hist = np.histogram(pixels[:, 1], bins=bins, range=(0, 256))[0]
        v_hist = np.histogram(pixels[:, 2], bins=bins, range=(0, 256))[0]

        return np.concatenate([h_hist, s_hist, v_hist]).astype(np.float64)

