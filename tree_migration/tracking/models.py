"""
Tracking Stage Data Models

Key Types:
- TrackStatus: active / closed
- Track: One persistent tree identity with its per-frame observations
- TrackTable: Arena of Tracks indexed by track id, owned by the resolver
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

from tree_migration.exceptions import InvariantViolation
from tree_migration.extraction.models import BoundingBox, ObjectDescriptor


class TrackStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class Track:
    """
    One tree identity across the frame series.

    Attributes:
        track_id: Unique id, assigned in creation order starting at 0
        birth_frame: Frame index of the first observation
        observations: frame index -> ObjectDescriptor, or None for an
            explicit "absent" marker. Keys are strictly increasing.
        status: ACTIVE until the miss counter exceeds the timeout
        death_frame: Last frame with an observation once closed, else None
        misses: Consecutive frames without a match
    """

    track_id: int
    birth_frame: int
    observations: dict[int, Optional[ObjectDescriptor]] = field(default_factory=dict)
    status: TrackStatus = TrackStatus.ACTIVE
    death_frame: Optional[int] = None
    misses: int = 0

    @property
    def is_active(self) -> bool:
        return self.status is TrackStatus.ACTIVE

    @property
    def last_frame(self) -> Optional[int]:
        """Last frame index recorded (observation or absent marker)."""
        if not self.observations:
            return None
        return next(reversed(self.observations))

    @property
    def last_observed_frame(self) -> int:
        """Last frame index with a present observation."""
        for frame_index in reversed(self.observations):
            if self.observations[frame_index] is not None:
                return frame_index
        return self.birth_frame

    @property
    def last_observation(self) -> ObjectDescriptor:
        """Most recent present observation (the one matched against)."""
        return self.observations[self.last_observed_frame]

    @property
    def observed_frames(self) -> list[int]:
        """Frame indices with a present observation, ascending."""
        return [i for i, d in self.observations.items() if d is not None]

    @property
    def absent_frames(self) -> list[int]:
        return [i for i, d in self.observations.items() if d is None]

    @property
    def num_observations(self) -> int:
        return sum(1 for d in self.observations.values() if d is not None)

    @property
    def span(self) -> tuple[int, int]:
        """[birth, last observed] - the only frames the track is rendered in."""
        return (self.birth_frame, self.last_observed_frame)

    def _check_order(self, frame_index: int) -> None:
        last = self.last_frame
        if last is not None and frame_index <= last:
            raise InvariantViolation(
                f"Track {self.track_id}: frame {frame_index} is not after frame {last}"
            )
        if not self.is_active:
            raise InvariantViolation(f"Track {self.track_id} is closed")

    def observe(self, descriptor: ObjectDescriptor) -> None:
        """Append a matched observation and reset the miss counter."""
        self._check_order(descriptor.frame_index)
        self.observations[descriptor.frame_index] = descriptor
        self.misses = 0

    def mark_absent(self, frame_index: int) -> None:
        """Record an explicit "absent" marker and count one miss."""
        self._check_order(frame_index)
        self.observations[frame_index] = None
        self.misses += 1

    def close(self) -> None:
        """Close the track: death = last observed frame, trailing absent markers dropped."""
        death = self.last_observed_frame
        for frame_index in [i for i in self.observations if i > death]:
            del self.observations[frame_index]
        self.death_frame = death
        self.status = TrackStatus.CLOSED

    def bbox_at(self, frame_index: int) -> Optional[BoundingBox]:
        descriptor = self.observations.get(frame_index)
        return descriptor.bbox if descriptor is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "status": self.status.value,
            "birth_frame": self.birth_frame,
            "death_frame": self.death_frame,
            "observations": [
                {"frame_index": frame_index, "absent": True}
                if descriptor is None
                else {
                    "frame_index": frame_index,
                    "absent": False,
                    "local_id": descriptor.local_id,
                    "bbox": descriptor.bbox.to_list(),
                    "centroid": list(descriptor.centroid),
                    "confidence": descriptor.confidence,
                }
                for frame_index, descriptor in self.observations.items()
            ],
        }

    def __repr__(self) -> str:
        return (
            f"Track(id={self.track_id}, status={self.status.value}, "
            f"birth={self.birth_frame}, death={self.death_frame}, "
            f"observations={self.num_observations}, absent={len(self.absent_frames)})"
        )


class TrackTable:
    """
    Arena of Track records indexed by track id.

    Mutated only by the CorrespondenceResolver; every other stage reads it.
    Also enforces that each ObjectDescriptor is referenced by at most one Track.

    Active tracks live in their own id-ordered map and descriptor ownership is
    only remembered for the frame being resolved, so per-frame work follows
    the live tracks rather than the length of the series.
    """

    def __init__(self):
        self._tracks: dict[int, Track] = {}
        self._active: dict[int, Track] = {}
        self._owners: dict[int, int] = {}  # local_id -> track_id, current frame only
        self._owner_frame: Optional[int] = None
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(self._tracks.values())

    def __getitem__(self, track_id: int) -> Track:
        return self._tracks[track_id]

    def __contains__(self, track_id: int) -> bool:
        return track_id in self._tracks

    @property
    def track_ids(self) -> list[int]:
        return list(self._tracks)

    def active(self) -> list[Track]:
        """Active tracks in ascending track id order."""
        return list(self._active.values())

    def closed(self) -> list[Track]:
        return [t for t in self._tracks.values() if not t.is_active]

    def spawn(self, descriptor: ObjectDescriptor) -> Track:
        """Create a new active track born at the descriptor's frame."""
        track = Track(track_id=self._next_id, birth_frame=descriptor.frame_index)
        self._next_id += 1
        self._tracks[track.track_id] = track
        self._active[track.track_id] = track
        self.attach(track, descriptor)
        return track

    def attach(self, track: Track, descriptor: ObjectDescriptor) -> None:
        """Append ``descriptor`` to ``track``, enforcing single ownership."""
        frame_index = descriptor.frame_index
        if self._owner_frame is None or frame_index > self._owner_frame:
            self._owners.clear()
            self._owner_frame = frame_index
        elif frame_index < self._owner_frame:
            raise InvariantViolation(
                f"Descriptor {descriptor.key} arrived after frame {self._owner_frame}"
            )

        owner = self._owners.get(descriptor.local_id)
        if owner is not None:
            raise InvariantViolation(
                f"Descriptor {descriptor.key} already belongs to track {owner}"
            )
        track.observe(descriptor)
        self._owners[descriptor.local_id] = track.track_id

    def close(self, track: Track) -> None:
        """Close ``track`` and drop it from the active set."""
        track.close()
        self._active.pop(track.track_id, None)

    def tracks_at(self, frame_index: int) -> list[Track]:
        """Tracks whose [birth, last observed] span covers ``frame_index``."""
        return [
            t for t in self._tracks.values() if t.span[0] <= frame_index <= t.span[1]
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "num_tracks": len(self._tracks),
            "tracks": [track.to_dict() for track in self._tracks.values()],
        }

    def __repr__(self) -> str:
        return f"TrackTable(tracks={len(self)}, active={len(self.active())})"
