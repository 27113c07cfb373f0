"""
Ordering Buffer

Re-sequences extraction results that complete out of order.

Problem:
- Frames are loaded and extracted concurrently, so results finish in any order
- The correspondence resolver must see frames in exactly ascending index order

Solution:
- Buffer results by frame index
- Release a result only when every lower index has been released
"""

import logging
import threading
from typing import Generic, TypeVar

from tree_migration.exceptions import InvariantViolation

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderingBuffer(Generic[T]):
    """
    Releases items strictly by consecutive index, starting at ``first_index``.

    Every index must be pushed exactly once (failed frames included), otherwise
    the buffer stalls at the missing index.
    """

    def __init__(self, first_index: int = 0):
        self._next_index = first_index
        self._pending: dict[int, T] = {}
        self._lock = threading.Lock()

        # Statistics
        self.items_pushed = 0
        self.max_pending = 0

    @property
    def next_index(self) -> int:
        """Index the buffer is waiting for."""
        return self._next_index

    @property
    def num_pending(self) -> int:
        return len(self._pending)

    def push(self, index: int, item: T) -> None:
        with self._lock:
            if index < self._next_index:
                logger.warning("Late result for frame %d (already released) - dropping", index)
                return
            if index in self._pending:
                logger.warning("Duplicate result for frame %d (ignoring)", index)
                return

            self._pending[index] = item
            self.items_pushed += 1
            self.max_pending = max(self.max_pending, len(self._pending))

            if index != self._next_index:
                logger.debug(
                    "Buffered frame %d out of order (waiting for %d, %d pending)",
                    index,
                    self._next_index,
                    len(self._pending),
                )

    def pop_ready(self) -> list[T]:
        """Remove and return every item that is next in sequence."""
        ready = []
        with self._lock:
            while self._next_index in self._pending:
                ready.append(self._pending.pop(self._next_index))
                self._next_index += 1
        return ready

    def close(self) -> None:
        """
        Check that nothing is left behind once all results are in.

        Raises:
            InvariantViolation: If items are stuck behind a missing index
        """
        with self._lock:
            if self._pending:
                stuck = sorted(self._pending)
                raise InvariantViolation(
                    f"Ordering buffer stalled at frame {self._next_index} "
                    f"with {len(stuck)} frame(s) pending: {stuck[:10]}"
                )
