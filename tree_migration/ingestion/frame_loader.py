"""
Frame Loader

Turns a directory (or an explicit list of image files) into an ordered series
of FrameEntry objects, and decodes entries into Frames.

Ordering:
- Capture time is parsed from the file name (2021-05-03_12-00.jpg,
  20210503.png, cam2_2021_05_03.jpg, ...), falling back to the file
  modification time when the name carries no valid date
- Ties are broken by file name
- Indices 0..N-1 are assigned after ordering and before decoding
"""

import datetime as dt
import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import cv2
import numpy as np

from tree_migration.config.settings import IngestionConfig, OrderBy
from tree_migration.exceptions import DecodeError
from tree_migration.ingestion.models import Frame, FrameEntry, OrderKey

logger = logging.getLogger(__name__)

# YYYY[-_]MM[-_]DD, optionally followed by HH[-_:.]MM[[-_:.]SS]
_FILENAME_DATE = re.compile(
    r"(?<!\d)(\d{4})[-_]?(\d{2})[-_]?(\d{2})"
    r"(?:[T_ -]?(\d{2})[-_:.]?(\d{2})(?:[-_:.]?(\d{2}))?)?(?!\d)"
)

_UNKNOWN_TIME = dt.datetime.min


def parse_capture_time(path: Path) -> Optional[dt.datetime]:
    """
    Parse the capture date/time embedded in a file name.

    Args:
        path: Image file path (only the stem is inspected)

    Returns:
        Capture datetime, or None if the name holds no valid date
    """
    for match in _FILENAME_DATE.finditer(Path(path).stem):
        year, month, day, hour, minute, second = match.groups()
        try:
            return dt.datetime(
                int(year),
                int(month),
                int(day),
                int(hour or 0),
                int(minute or 0),
                int(second or 0),
            )
        except ValueError:
            # Digits that look like a date but are not one (e.g. a counter)
            continue
    return None


def _modification_time(path: Path) -> dt.datetime:
    try:
        return dt.datetime.fromtimestamp(path.stat().st_mtime)
    except OSError:
        return _UNKNOWN_TIME


def order_key_for(path: Path, order_by: OrderBy = OrderBy.FILENAME) -> OrderKey:
    """Build the capture order key for one image file."""
    path = Path(path)
    captured = None
    if order_by is OrderBy.FILENAME:
        captured = parse_capture_time(path)
    if captured is None:
        captured = _modification_time(path)
    return (captured, path.name)


def list_images(directory: Path, extensions: Iterable[str]) -> list[Path]:
    """List image files directly inside ``directory`` (non-recursive)."""
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Image directory not found: {directory}")
    extensions = {e.lower() for e in extensions}
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in extensions
    )


def discover_frames(
    source: Union[Path, str, Sequence[Path]],
    config: IngestionConfig,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    preserve_order: bool = False,
) -> list[FrameEntry]:
    """
    Build the ordered frame series.

    Args:
        source: Image directory, or an explicit list of image paths
        config: IngestionConfig (extensions, order_by)
        start_date: Drop frames captured before this date (inclusive bound)
        end_date: Drop frames captured after this date (inclusive bound)
        preserve_order: For an explicit list, keep the caller's order instead
            of sorting by order key

    Returns:
        FrameEntry list with indices 0..N-1
    """
    if isinstance(source, (str, Path)):
        paths = list_images(Path(source), config.extensions)
        preserve_order = False
    else:
        paths = [Path(p) for p in source]

    keyed = [(order_key_for(p, config.order_by), p) for p in paths]
    if not preserve_order:
        keyed.sort(key=lambda item: item[0])

    selected = []
    for key, path in keyed:
        captured = key[0].date()
        if start_date is not None and captured < start_date:
            continue
        if end_date is not None and captured > end_date:
            continue
        selected.append((key, path))

    if len(selected) < len(keyed):
        logger.info(
            "Date filter kept %d/%d images (%s .. %s)",
            len(selected),
            len(keyed),
            start_date or "-",
            end_date or "-",
        )

    entries = [
        FrameEntry(index=i, order_key=key, path=path)
        for i, (key, path) in enumerate(selected)
    ]
    logger.info("Discovered %d frames", len(entries))
    return entries


def validate_image(
    image: object, path: Optional[Path] = None, frame_index: Optional[int] = None
) -> np.ndarray:
    """
    Check that a pixel buffer is a usable BGR image.

    Raises:
        DecodeError: Zero dimensions, wrong layout or inconsistent strides
    """

    def fail(reason: str) -> DecodeError:
        return DecodeError(
            f"Malformed pixel buffer for frame {frame_index}: {reason}",
            path=path,
            frame_index=frame_index,
        )

    if not isinstance(image, np.ndarray):
        raise fail(f"expected numpy array, got {type(image).__name__}")
    if image.ndim != 3 or image.shape[2] != 3:
        raise fail(f"expected shape (H, W, 3), got {image.shape}")
    if image.dtype != np.uint8:
        raise fail(f"expected uint8 pixels, got {image.dtype}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise fail(f"zero dimensions {image.shape[1]}x{image.shape[0]}")

    # Row/pixel/channel strides must not overlap
    row_stride, pixel_stride, channel_stride = image.strides
    if (
        channel_stride != image.itemsize
        or pixel_stride < channel_stride * image.shape[2]
        or row_stride < pixel_stride * image.shape[1]
    ):
        raise fail(f"inconsistent strides {image.strides} for shape {image.shape}")

    return image


def load_frame(entry: FrameEntry) -> Frame:
    """
    Decode one image file.

    Args:
        entry: FrameEntry to decode

    Returns:
        Frame with a BGR uint8 image

    Raises:
        DecodeError: If the file is unreadable or not a supported image
    """
    try:
        # np.fromfile + imdecode also copes with non-ASCII paths
        raw = np.fromfile(str(entry.path), dtype=np.uint8)
    except OSError as e:
        raise DecodeError(
            f"Cannot read image {entry.path}: {e}", path=entry.path, frame_index=entry.index
        ) from e

    image = cv2.imdecode(raw, cv2.IMREAD_COLOR) if raw.size > 0 else None
    if image is None:
        raise DecodeError(
            f"Cannot decode image {entry.path}", path=entry.path, frame_index=entry.index
        )

    validate_image(image, entry.path, entry.index)

    logger.debug(
        "Loaded frame %d: %s (%dx%d)", entry.index, entry.path.name, image.shape[1], image.shape[0]
    )
    return Frame(index=entry.index, order_key=entry.order_key, image=image, path=entry.path)
