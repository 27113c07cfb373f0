"""
Correspondence Resolver

Turns the time-ordered stream of per-frame DescriptorSets into a TrackTable:
one persistent identity per physically recurring tree.

Per-frame step:
1. Validate incoming descriptors (malformed ones are reported and dropped)
2. Cost between each active track's last observation and each descriptor
3. Minimum-cost assignment restricted to candidate edges (cost <= cutoff)
4. Matched tracks get the observation and their miss counter reset
5. Unmatched tracks get an "absent" marker; misses > timeout closes the track
6. Unmatched descriptors spawn new tracks

Single-pass: only active tracks are ever considered, so memory is bounded by
the number of concurrently active tracks. Frames must arrive in strictly
increasing index order.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from tree_migration.config.settings import MatchingConfig
from tree_migration.diagnostics import Diagnostics
from tree_migration.exceptions import InvariantViolation, MalformedDescriptor
from tree_migration.extraction.base import validate_descriptor
from tree_migration.extraction.models import DescriptorSet, ObjectDescriptor
from tree_migration.tracking.assignment import optimal_assignment
from tree_migration.tracking.cost import build_cost_matrix
from tree_migration.tracking.models import Track, TrackTable

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """What one resolver step did (track ids throughout)."""

    frame_index: int
    matched: list[tuple[int, int]] = field(default_factory=list)  # (track_id, local_id)
    spawned: list[int] = field(default_factory=list)
    missed: list[int] = field(default_factory=list)
    closed: list[int] = field(default_factory=list)
    rejected: int = 0

    @property
    def is_noop(self) -> bool:
        return not (self.matched or self.spawned or self.missed or self.closed)


class CorrespondenceResolver:
    """
    Sequential, order-preserving consumer of DescriptorSets.

    Owns the TrackTable; nothing else mutates it.

    Args:
        config: MatchingConfig (cutoff, weights, timeout, metric)
        signature_length: Expected signature length; descriptors with any
            other length are rejected as malformed
        diagnostics: Collector for recoverable problems (optional)
    """

    def __init__(
        self,
        config: MatchingConfig,
        signature_length: int,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.config = config
        self.signature_length = signature_length
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.table = TrackTable()
        self._last_frame: Optional[int] = None

        # Statistics
        self.frames_processed = 0
        self.frames_skipped = 0
        self.descriptors_rejected = 0

        logger.info(
            "CorrespondenceResolver initialized: max_distance=%.3f, w_pos=%.2f, w_feat=%.2f, "
            "timeout=%d, metric=%s",
            config.match_max_distance,
            config.match_weight_position,
            config.match_weight_feature,
            config.track_timeout_frames,
            config.feature_metric.value,
        )

    @property
    def last_frame(self) -> Optional[int]:
        return self._last_frame

    def _advance(self, frame_index: int) -> None:
        if self._last_frame is not None and frame_index <= self._last_frame:
            raise InvariantViolation(
                f"Resolver received frame {frame_index} after frame {self._last_frame}"
            )
        self._last_frame = frame_index

    def _admit(self, descriptor_set: DescriptorSet) -> tuple[list[ObjectDescriptor], int]:
        """Validate descriptors; malformed ones are reported and dropped."""
        admitted = []
        seen_ids = set()
        rejected = 0
        for descriptor in descriptor_set.descriptors:
            try:
                if descriptor.frame_index != descriptor_set.frame_index:
                    raise MalformedDescriptor(
                        f"Descriptor {descriptor.key} delivered with frame "
                        f"{descriptor_set.frame_index}"
                    )
                if descriptor.local_id in seen_ids:
                    raise MalformedDescriptor(f"Duplicate descriptor id {descriptor.key}")
                validate_descriptor(descriptor, self.signature_length)
            except MalformedDescriptor as e:
                self.diagnostics.report(descriptor_set.frame_index, e)
                rejected += 1
                continue
            seen_ids.add(descriptor.local_id)
            admitted.append(descriptor)

        admitted.sort(key=lambda d: d.local_id)
        return admitted, rejected

    def _miss(self, track: Track, frame_index: int, result: StepResult) -> None:
        track.mark_absent(frame_index)
        result.missed.append(track.track_id)
        if track.misses > self.config.track_timeout_frames:
            self.table.close(track)
            result.closed.append(track.track_id)
            logger.debug(
                "Track %d closed at frame %d (death=%d, %d misses)",
                track.track_id,
                frame_index,
                track.death_frame,
                track.misses,
            )

    def step(self, descriptor_set: DescriptorSet) -> StepResult:
        """
        Process the next frame.

        Args:
            descriptor_set: Descriptors of a frame with a higher index than
                every frame seen before

        Returns:
            StepResult describing matches, births, misses and closures

        Raises:
            InvariantViolation: Frame out of order, or a track invariant broke
        """
        frame_index = descriptor_set.frame_index
        self._advance(frame_index)
        self.frames_processed += 1
        result = StepResult(frame_index=frame_index)

        descriptors, result.rejected = self._admit(descriptor_set)
        self.descriptors_rejected += result.rejected
        active = self.table.active()

        if not active and not descriptors:
            return result

        matched_rows: set[int] = set()
        matched_cols: set[int] = set()
        if active and descriptors:
            cost = build_cost_matrix(
                [track.last_observation for track in active],
                descriptors,
                descriptor_set.frame_size,
                self.config,
            )
            for row, col, _ in optimal_assignment(cost, self.config.match_max_distance):
                track, descriptor = active[row], descriptors[col]
                self.table.attach(track, descriptor)
                matched_rows.add(row)
                matched_cols.add(col)
                result.matched.append((track.track_id, descriptor.local_id))

        for row, track in enumerate(active):
            if row not in matched_rows:
                self._miss(track, frame_index, result)

        for col, descriptor in enumerate(descriptors):
            if col not in matched_cols:
                track = self.table.spawn(descriptor)
                result.spawned.append(track.track_id)

        logger.debug(
            "Frame %d: %d matched, %d new, %d missed, %d closed, %d rejected",
            frame_index,
            len(result.matched),
            len(result.spawned),
            len(result.missed),
            len(result.closed),
            result.rejected,
        )
        return result

    def skip(self, frame_index: int) -> StepResult:
        """
        Record a frame that could not be decoded.

        Every active track gets an "absent" marker and counts a miss.
        """
        self._advance(frame_index)
        self.frames_skipped += 1
        result = StepResult(frame_index=frame_index)
        for track in self.table.active():
            self._miss(track, frame_index, result)
        logger.debug(
            "Frame %d skipped: %d track(s) missed, %d closed",
            frame_index,
            len(result.missed),
            len(result.closed),
        )
        return result

    def resolve(self, descriptor_sets: Iterable[Optional[DescriptorSet]]) -> TrackTable:
        """
        Run every frame through ``step`` and return the final table.

        ``None`` entries are treated as undecodable frames following the
        previous one.
        """
        for descriptor_set in descriptor_sets:
            if descriptor_set is None:
                next_index = 0 if self._last_frame is None else self._last_frame + 1
                self.skip(next_index)
            else:
                self.step(descriptor_set)
        return self.finalize()

    def finalize(self) -> TrackTable:
        """
        Finish the run. Tracks still active stay open (death_frame None).
        """
        logger.info(
            "Resolved %d track(s) over %d frame(s) (%d active, %d closed, "
            "%d skipped frame(s), %d rejected descriptor(s))",
            len(self.table),
            self.frames_processed + self.frames_skipped,
            len(self.table.active()),
            len(self.table.closed()),
            self.frames_skipped,
            self.descriptors_rejected,
        )
        return self.table
