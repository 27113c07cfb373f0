"""
Sequencer

Turns the final TrackTable plus the frame series into the ordered stream of
CompositeFrames the video sink consumes.

Render modes:
- composite: one output frame per decodable input frame, all tracks whose
  span covers that frame drawn on it
- per-track: for each track (ascending id) one sub-sequence of square crops
  following the track over its span; sub-sequences are concatenated

Presentation indices start at 0 and increase by one per emitted frame.
Frames that cannot be decoded are left out of the output.
"""

import logging
from typing import Callable, Iterator, Optional

import cv2
from tqdm import tqdm

from tree_migration.config.settings import RenderMode, SequencingConfig
from tree_migration.encoding.sink import VideoSink
from tree_migration.ingestion.frame_store import FrameStore
from tree_migration.sequencing.gap_fill import fill_tracks
from tree_migration.sequencing.models import CompositeFrame, Placement
from tree_migration.sequencing.renderer import render_composite, render_track_crop
from tree_migration.tracking.models import Track, TrackTable

logger = logging.getLogger(__name__)


class Sequencer:

    def __init__(self, config: SequencingConfig, show_progress: bool = False):
        self.config = config
        self.show_progress = show_progress
        logger.info(
            "Sequencer initialized: mode=%s, gap_fill=%s",
            config.render_mode.value,
            config.gap_fill_policy.value,
        )

    def iter_frames(self, table: TrackTable, store: FrameStore) -> Iterator[CompositeFrame]:
        """Yield CompositeFrames in presentation order."""
        tracks = sorted(table, key=lambda t: t.track_id)
        placements = fill_tracks(tracks, self.config.gap_fill_policy)

        if self.config.render_mode is RenderMode.PER_TRACK:
            yield from self._iter_per_track(tracks, placements, store)
        else:
            yield from self._iter_composite(tracks, placements, store)

    def _iter_composite(
        self,
        tracks: list[Track],
        placements: dict[int, dict[int, Placement]],
        store: FrameStore,
    ) -> Iterator[CompositeFrame]:
        output_size = self.config.output_size
        presentation_index = 0

        for frame_index in store.indices:
            frame = store.get(frame_index)
            if frame is None:
                logger.debug("Frame %d not decodable, left out of the video", frame_index)
                continue

            placed = [
                placements[track.track_id][frame_index]
                for track in tracks
                if frame_index in placements[track.track_id]
            ]
            trails = {
                placement.track_id: self._trail(placements[placement.track_id], frame_index)
                for placement in placed
            }
            image = render_composite(frame.image, placed, trails)

            if output_size is None:
                output_size = frame.size
            if frame.size != output_size:
                image = cv2.resize(image, output_size, interpolation=cv2.INTER_AREA)

            yield CompositeFrame(
                presentation_index=presentation_index,
                frame_index=frame_index,
                order_key=frame.order_key,
                image=image,
                track_ids=tuple(p.track_id for p in placed),
            )
            presentation_index += 1

    def _trail(self, track_placements: dict[int, Placement], frame_index: int) -> list:
        if self.config.trail_length == 0:
            return []
        first = frame_index - self.config.trail_length
        return [
            track_placements[i].center
            for i in range(first, frame_index + 1)
            if i in track_placements
        ]

    def crop_side(self, track: Track) -> float:
        """Edge of the square crop window: largest extent plus padding."""
        extents = [
            max(descriptor.bbox.width, descriptor.bbox.height)
            for descriptor in track.observations.values()
            if descriptor is not None
        ]
        return max(max(extents, default=1.0), 1.0) * (1.0 + self.config.crop_padding)

    def _iter_per_track(
        self,
        tracks: list[Track],
        placements: dict[int, dict[int, Placement]],
        store: FrameStore,
    ) -> Iterator[CompositeFrame]:
        presentation_index = 0

        for track in tracks:
            side = self.crop_side(track)
            for frame_index, placement in sorted(placements[track.track_id].items()):
                frame = store.get(frame_index)
                if frame is None:
                    logger.debug(
                        "Track %d: frame %d not decodable, skipped", track.track_id, frame_index
                    )
                    continue
                image = render_track_crop(frame.image, placement, side, self.config.crop_size)
                yield CompositeFrame(
                    presentation_index=presentation_index,
                    frame_index=frame_index,
                    order_key=frame.order_key,
                    image=image,
                    track_ids=(track.track_id,),
                    track_id=track.track_id,
                )
                presentation_index += 1

    def expected_frames(self, table: TrackTable, store: FrameStore) -> int:
        """Upper bound on emitted frames (before dropping undecodable ones)."""
        if self.config.render_mode is RenderMode.PER_TRACK:
            return sum(t.span[1] - t.span[0] + 1 for t in table if t.observed_frames)
        return len(store)

    def write(
        self,
        table: TrackTable,
        store: FrameStore,
        sink: VideoSink,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Push every CompositeFrame into ``sink`` in presentation order.

        Args:
            table: Final TrackTable
            store: Frame access by index
            sink: Single-writer video sink; only this method calls accept()
            should_stop: Polled between frames; True stops early

        Returns:
            Number of frames accepted by the sink
        """
        written = 0
        frames = self.iter_frames(table, store)
        progress = tqdm(
            frames,
            total=self.expected_frames(table, store),
            desc="Rendering",
            unit="frame",
            disable=not self.show_progress,
        )
        try:
            for composite in progress:
                if should_stop is not None and should_stop():
                    logger.info("Rendering stopped after %d frame(s)", written)
                    break
                sink.accept(composite, composite.presentation_index)
                written += 1
        finally:
            progress.close()

        logger.info("Rendered %d frame(s) (%s mode)", written, self.config.render_mode.value)
        return written
