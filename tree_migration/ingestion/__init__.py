"""
Ingestion Stage

Discovers, orders and decodes the image series.

Components:
- models: Data structures (FrameEntry, Frame)
- frame_loader: Directory traversal, capture ordering, decoding
- frame_store: Index -> Frame access for the sequencer
- ordering: Re-sequencing of out-of-order extraction results

Usage:
    from tree_migration.ingestion import discover_frames, load_frame

    entries = discover_frames(image_dir, config.ingestion)
    frame = load_frame(entries[0])
"""

from tree_migration.ingestion.models import Frame, FrameEntry, OrderKey
from tree_migration.ingestion.frame_loader import (
    discover_frames,
    list_images,
    load_frame,
    order_key_for,
    parse_capture_time,
    validate_image,
)
from tree_migration.ingestion.frame_store import FrameStore
from tree_migration.ingestion.ordering import OrderingBuffer

__all__ = [
    "Frame",
    "FrameEntry",
    "OrderKey",
    "discover_frames",
    "list_images",
    "load_frame",
    "order_key_for",
    "parse_capture_time",
    "validate_image",
    "FrameStore",
    "OrderingBuffer",
]
