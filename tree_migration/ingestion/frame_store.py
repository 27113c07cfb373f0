"""
Frame Store

Gives the sequencer pixel access by frame index after extraction.

Frames are either retained in memory as they are loaded (retain=True) or
released after extraction and decoded again from disk on request. Frames that
failed to decode are remembered and return None.
"""

import logging
import threading
from collections import OrderedDict
from typing import Optional, Sequence

from tree_migration.exceptions import DecodeError
from tree_migration.ingestion.frame_loader import load_frame
from tree_migration.ingestion.models import Frame, FrameEntry

logger = logging.getLogger(__name__)


class FrameStore:
    """
    Index -> Frame lookup over one frame series.

    Args:
        entries: Ordered frame series
        retain: Keep frames passed to ``add`` in memory
        cache_size: Reloaded frames kept in a small LRU cache (reload mode)
    """

    def __init__(self, entries: Sequence[FrameEntry], retain: bool = False, cache_size: int = 4):
        self._entries = {entry.index: entry for entry in entries}
        self._order = [entry.index for entry in entries]
        self.retain = retain
        self.cache_size = cache_size

        self._retained: dict[int, Frame] = {}
        self._cache: "OrderedDict[int, Frame]" = OrderedDict()
        self._failed: set[int] = set()
        self._lock = threading.Lock()

    @property
    def indices(self) -> list[int]:
        """All frame indices in ascending order."""
        return list(self._order)

    @property
    def failed_indices(self) -> list[int]:
        return sorted(self._failed)

    def __len__(self) -> int:
        return len(self._order)

    def entry(self, index: int) -> FrameEntry:
        return self._entries[index]

    def add(self, frame: Frame) -> None:
        """Offer a freshly loaded frame; kept only in retain mode."""
        if self.retain:
            with self._lock:
                self._retained[frame.index] = frame

    def mark_failed(self, index: int) -> None:
        with self._lock:
            self._failed.add(index)
            self._retained.pop(index, None)

    def get(self, index: int) -> Optional[Frame]:
        """
        Return the frame at ``index``, or None if it cannot be decoded.
        """
        with self._lock:
            if index in self._failed:
                return None
            if index in self._retained:
                return self._retained[index]
            if index in self._cache:
                self._cache.move_to_end(index)
                return self._cache[index]

        try:
            frame = load_frame(self._entries[index])
        except DecodeError as e:
            logger.warning("Frame %d no longer decodes: %s", index, e)
            self.mark_failed(index)
            return None

        with self._lock:
            self._cache[index] = frame
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return frame
