import logging
import threading
from pathlib import Path

import numpy as np
from ultralytics import YOLO

from tree_migration.config.settings import ExtractionConfig
from tree_migration.extraction.base import ObjectExtractor
from tree_migration.extraction.models import BoundingBox, ObjectDescriptor

logger = logging.getLogger(__name__)


class YOLOExtractor(ObjectExtractor):
    """
    Object extractor backed by a user-trained ultralytics model.

    The model is shared by all worker threads; inference is serialized with a
    lock since ultralytics predictors are not thread-safe.
    """

    def __init__(self, config: ExtractionConfig, weights_path: Path):
        super().__init__(config)
        self.weights_path = Path(weights_path)

        if not self.weights_path.exists():
            raise FileNotFoundError(f"Weights not found: {self.weights_path}")

        logger.info("Loading YOLO model from %s", self.weights_path)
        self.model = YOLO(str(self.weights_path))
        self.model.to(config.device)
        self._lock = threading.Lock()

        logger.info(
            "YOLO extractor ready (device=%s, conf=%.2f, iou=%.2f, imgsz=%d)",
            config.device,
            config.conf_threshold,
            config.iou_threshold,
            config.imgsz,
        )

    def _find_objects(self, image: np.ndarray, frame_index: int) -> list[ObjectDescriptor]:
        with self._lock:
            results = self.model.predict(
                image,
                conf=self.config.conf_threshold,
                iou=self.config.iou_threshold,
                classes=list(self.config.class_ids) if self.config.class_ids else None,
                # verbose=False keeps ultralytics from logging every frame
                verbose=False,
                imgsz=self.config.imgsz,
                device=self.config.device,
            )
        return self._parse_results(results[0], image, frame_index)

    def _parse_results(self, results, image: np.ndarray, frame_index: int) -> list[ObjectDescriptor]:
        if results.boxes is None or len(results.boxes) == 0:
            return []

        boxes_xyxy = results.boxes.xyxy.cpu().numpy()  # (N, 4)
        confidences = results.boxes.conf.cpu().numpy()  # (N,)

        candidates = []
        for box, conf in zip(boxes_xyxy, confidences):
            conf = float(np.clip(conf, 0.0, 1.0))
            if conf < self.config.min_confidence:
                continue
            bbox = BoundingBox.from_xyxy(box).clip(image.shape[1], image.shape[0])
            if bbox.area <= 0:
                continue
            candidates.append((conf, bbox))

        if len(candidates) > self.config.max_objects:
            candidates.sort(key=lambda c: (-c[0], c[1].y1, c[1].x1))
            candidates = candidates[: self.config.max_objects]

        candidates.sort(key=lambda c: (c[1].y1, c[1].x1, c[1].y2, c[1].x2))

        return [
            ObjectDescriptor(
                frame_index=frame_index,
                local_id=local_id,
                bbox=bbox,
                signature=self.signatures.compute(image, bbox),
                confidence=conf,
                area=bbox.area,
            )
            for local_id, (conf, bbox) in enumerate(candidates)
        ]
