"""
Diagnostics channel for recoverable per-frame problems.

Decode failures, malformed descriptors and empty frames are recorded here
(and logged at WARNING/INFO) instead of aborting the run.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tree_migration.exceptions import (
    DecodeError,
    MalformedDescriptor,
    MigrationError,
    NoObjectsFound,
)

logger = logging.getLogger(__name__)


class DiagnosticKind(str, Enum):
    DECODE_ERROR = "decode-error"
    MALFORMED_DESCRIPTOR = "malformed-descriptor"
    NO_OBJECTS = "no-objects"


_KIND_BY_ERROR = (
    (DecodeError, DiagnosticKind.DECODE_ERROR),
    (MalformedDescriptor, DiagnosticKind.MALFORMED_DESCRIPTOR),
    (NoObjectsFound, DiagnosticKind.NO_OBJECTS),
)


@dataclass(frozen=True)
class DiagnosticEvent:
    frame_index: int
    kind: DiagnosticKind
    message: str

    def __str__(self) -> str:
        return f"frame {self.frame_index}: {self.kind.value}: {self.message}"


class Diagnostics:
    """Thread-safe collector of DiagnosticEvents."""

    def __init__(self):
        self._events: list[DiagnosticEvent] = []
        self._lock = threading.Lock()

    def report(self, frame_index: int, error: MigrationError) -> DiagnosticEvent:
        """Record a recoverable error for one frame."""
        kind = next((k for cls, k in _KIND_BY_ERROR if isinstance(error, cls)), None)
        if kind is None:
            raise TypeError(f"{type(error).__name__} is not a recoverable per-frame error")

        event = DiagnosticEvent(frame_index=frame_index, kind=kind, message=str(error))
        with self._lock:
            self._events.append(event)

        if kind is DiagnosticKind.NO_OBJECTS:
            logger.info("Frame %d: %s", frame_index, error)
        else:
            logger.warning("Frame %d: %s", frame_index, error)
        if error.log_message:
            logger.debug("Frame %d detail: %s", frame_index, error.log_message)
        return event

    @property
    def events(self) -> list[DiagnosticEvent]:
        with self._lock:
            return sorted(self._events, key=lambda e: e.frame_index)

    def of_kind(self, kind: DiagnosticKind) -> list[DiagnosticEvent]:
        return [e for e in self.events if e.kind is kind]

    def frames_with(self, kind: DiagnosticKind) -> list[int]:
        return sorted({e.frame_index for e in self.of_kind(kind)})

    def count(self, kind: Optional[DiagnosticKind] = None) -> int:
        if kind is None:
            return len(self._events)
        return len(self.of_kind(kind))

    def __len__(self) -> int:
        return len(self._events)

    def summary(self) -> dict[str, int]:
        return {kind.value: self.count(kind) for kind in DiagnosticKind}
