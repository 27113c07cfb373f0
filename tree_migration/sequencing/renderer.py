"""
Overlay and crop rendering for output frames.

- Composite mode: every placed track gets a box, an id label and a trail of
  its recent centroids on the full frame
- Per-track mode: a square crop centred on the track, padded with black where
  it leaves the frame
- Gap-filled placements are drawn with a dashed outline
"""

import colorsys
from typing import Sequence

import cv2
import numpy as np

from tree_migration.sequencing.models import Placement

Point = tuple[int, int]

_FONT = cv2.FONT_HERSHEY_SIMPLEX
_GOLDEN_RATIO = 0.618033988749895


def track_color(track_id: int) -> tuple[int, int, int]:
    """Deterministic, well-spread BGR colour for a track id."""
    hue = (track_id * _GOLDEN_RATIO) % 1.0
    r, g, b = colorsys.hsv_to_rgb(hue, 0.85, 1.0)
    return (int(b * 255), int(g * 255), int(r * 255))


def draw_dashed_rectangle(
    image: np.ndarray, p1: Point, p2: Point, color, thickness: int = 2, dash: int = 10
) -> None:
    x1, y1 = p1
    x2, y2 = p2
    edges = [((x1, y1), (x2, y1)), ((x2, y1), (x2, y2)), ((x2, y2), (x1, y2)), ((x1, y2), (x1, y1))]
    for (sx, sy), (ex, ey) in edges:
        length = int(np.hypot(ex - sx, ey - sy))
        for start in range(0, max(length, 1), dash * 2):
            end = min(start + dash, length)
            t0 = start / length if length else 0.0
            t1 = end / length if length else 0.0
            a = (int(round(sx + (ex - sx) * t0)), int(round(sy + (ey - sy) * t0)))
            b = (int(round(sx + (ex - sx) * t1)), int(round(sy + (ey - sy) * t1)))
            cv2.line(image, a, b, color, thickness)


def _thickness(image: np.ndarray) -> int:
    return max(1, int(round(max(image.shape[:2]) / 400)))


def draw_placement(image: np.ndarray, placement: Placement) -> None:
    """Box and label for one track, in place."""
    color = track_color(placement.track_id)
    thickness = _thickness(image)
    bbox = placement.bbox
    p1 = (int(round(bbox.x1)), int(round(bbox.y1)))
    p2 = (int(round(bbox.x2)), int(round(bbox.y2)))

    if placement.filled:
        draw_dashed_rectangle(image, p1, p2, color, thickness, dash=6 * thickness)
    else:
        cv2.rectangle(image, p1, p2, color, thickness)

    scale = 0.5 * thickness
    cv2.putText(
        image,
        f"T{placement.track_id}",
        (p1[0], max(int(20 * scale), p1[1] - 5 * thickness)),
        _FONT,
        scale,
        color,
        thickness,
        cv2.LINE_AA,
    )


def draw_trail(image: np.ndarray, track_id: int, centers: Sequence[tuple[float, float]]) -> None:
    """Polyline through a track's recent centroids, oldest first."""
    if len(centers) == 0:
        return
    color = track_color(track_id)
    thickness = _thickness(image)
    points = np.array([[int(round(x)), int(round(y))] for x, y in centers], dtype=np.int32)
    if len(points) > 1:
        cv2.polylines(image, [points], False, color, thickness, cv2.LINE_AA)
    cv2.circle(image, tuple(int(v) for v in points[-1]), 2 * thickness, color, -1)


def render_composite(
    image: np.ndarray,
    placements: Sequence[Placement],
    trails: dict[int, list[tuple[float, float]]],
) -> np.ndarray:
    """Full frame with every placed track drawn on a copy of ``image``."""
    out = image.copy()
    for placement in placements:
        draw_trail(out, placement.track_id, trails.get(placement.track_id, []))
    for placement in placements:
        draw_placement(out, placement)
    return out


def crop_square(image: np.ndarray, center: tuple[float, float], side: float, size: int) -> np.ndarray:
    """
    Square crop of edge ``side`` centred on ``center``, resized to size x size.

    Regions outside the frame are black.
    """
    side = max(int(round(side)), 1)
    cx, cy = center
    x1 = int(round(cx - side / 2.0))
    y1 = int(round(cy - side / 2.0))
    x2, y2 = x1 + side, y1 + side

    height, width = image.shape[:2]
    canvas = np.zeros((side, side, 3), dtype=np.uint8)
    sx1, sy1 = max(x1, 0), max(y1, 0)
    sx2, sy2 = min(x2, width), min(y2, height)
    if sx2 > sx1 and sy2 > sy1:
        canvas[sy1 - y1 : sy2 - y1, sx1 - x1 : sx2 - x1] = image[sy1:sy2, sx1:sx2]

    interpolation = cv2.INTER_AREA if side > size else cv2.INTER_LINEAR
    return cv2.resize(canvas, (size, size), interpolation=interpolation)


def render_track_crop(
    image: np.ndarray, placement: Placement, side: float, size: int
) -> np.ndarray:
    """Per-track output frame: crop around the placement with its outline and label."""
    crop = crop_square(image, placement.center, side, size)

    # Box in crop coordinates
    scale = size / max(int(round(side)), 1)
    cx, cy = placement.center
    half = max(int(round(side)), 1) / 2.0
    bbox = placement.bbox
    p1 = (int(round((bbox.x1 - cx + half) * scale)), int(round((bbox.y1 - cy + half) * scale)))
    p2 = (int(round((bbox.x2 - cx + half) * scale)), int(round((bbox.y2 - cy + half) * scale)))

    color = track_color(placement.track_id)
    if placement.filled:
        draw_dashed_rectangle(crop, p1, p2, color, 2, dash=6)
    else:
        cv2.rectangle(crop, p1, p2, color, 2)
    cv2.putText(crop, f"T{placement.track_id}", (6, 20), _FONT, 0.6, color, 2, cv2.LINE_AA)
    return crop
