"""
Migration Pipeline

Frame Loader -> Object Extractor -> Correspondence Resolver -> Sequencer -> Video Sink

Scheduling:
- Loading + extraction run on a thread pool, at most ``max_in_flight`` frames
  between submission and admission to the resolver
- Results pass through an OrderingBuffer so the resolver (single consumer,
  main thread) sees frames in exactly ascending index order
- Cancellation is checked between frames: the frame being matched finishes,
  the track table stays consistent, and no video file is written
"""

import json
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from tqdm import tqdm

from tree_migration.config.settings import PipelineConfig
from tree_migration.diagnostics import DiagnosticKind, Diagnostics
from tree_migration.encoding.sink import VideoSink, create_sink
from tree_migration.exceptions import DecodeError, NoObjectsFound
from tree_migration.extraction import ObjectExtractor, create_extractor
from tree_migration.extraction.models import DescriptorSet
from tree_migration.ingestion.frame_loader import discover_frames, load_frame
from tree_migration.ingestion.frame_store import FrameStore
from tree_migration.ingestion.models import FrameEntry
from tree_migration.ingestion.ordering import OrderingBuffer
from tree_migration.sequencing.sequencer import Sequencer
from tree_migration.tracking.models import TrackTable
from tree_migration.tracking.resolver import CorrespondenceResolver

logger = logging.getLogger(__name__)

SinkFactory = Callable[[Path], VideoSink]
ExtractionOutcome = Union[DescriptorSet, DecodeError]


@dataclass
class RunResult:
    """
    Outcome of one pipeline run.

    Attributes:
        table: Final (or, when cancelled, partial) track table
        diagnostics: Recoverable per-frame problems
        frames_total: Frames in the ordered series
        frames_resolved: Frames that went through the resolver
        output_path: Committed video, None when cancelled or not encoding
        frames_written: Frames accepted by the sink
        cancelled: Run stopped by cancel()
        elapsed: Wall-clock seconds
    """

    table: TrackTable
    diagnostics: Diagnostics
    frames_total: int
    frames_resolved: int = 0
    output_path: Optional[Path] = None
    frames_written: int = 0
    cancelled: bool = False
    elapsed: float = 0.0
    entries: list[FrameEntry] = field(default_factory=list, repr=False)

    @property
    def skipped_frames(self) -> list[int]:
        """Frames that could not be decoded."""
        return self.diagnostics.frames_with(DiagnosticKind.DECODE_ERROR)

    @property
    def completed(self) -> bool:
        return not self.cancelled


class MigrationPipeline:
    """
    One configured pipeline; ``run``/``process`` may be called repeatedly.

    Args:
        config: PipelineConfig for every stage
        extractor: Object extractor (default: built from config.extraction)
        sink_factory: output path -> VideoSink (default: create_sink)
    """

    def __init__(
        self,
        config: PipelineConfig,
        extractor: Optional[ObjectExtractor] = None,
        sink_factory: Optional[SinkFactory] = None,
    ):
        self.config = config
        self.extractor = extractor if extractor is not None else create_extractor(config)
        self.sink_factory = sink_factory or (lambda path: create_sink(config.encoder, path))
        self.sequencer = Sequencer(config.sequencing, show_progress=config.show_progress)
        self._cancel = threading.Event()

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """Request a cooperative stop; safe to call from any thread or a signal handler."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(
        self,
        source: Union[Path, str, Sequence[Path]],
        output_path: Optional[Path],
        preserve_order: bool = False,
    ) -> RunResult:
        """
        Discover frames in ``source`` and run the whole pipeline.

        Args:
            source: Image directory or explicit list of image paths
            output_path: Video file to produce; None skips encoding
            preserve_order: Keep an explicit list in the caller's order
        """
        entries = discover_frames(source, self.config.ingestion, preserve_order=preserve_order)
        return self.process(entries, output_path)

    def process(self, entries: Sequence[FrameEntry], output_path: Optional[Path]) -> RunResult:
        """
        Run extraction, resolution and encoding over an ordered frame series.

        Raises:
            EncodeError: The sink failed; no video file is left behind
            InvariantViolation: Internal ordering/ownership invariant broken
        """
        start_time = time.perf_counter()
        entries = list(entries)
        diagnostics = Diagnostics()
        store = FrameStore(entries, retain=self.config.ingestion.retain_frames)
        resolver = CorrespondenceResolver(
            self.config.matching, self.config.extraction.signature_length, diagnostics
        )
        result = RunResult(
            table=resolver.table,
            diagnostics=diagnostics,
            frames_total=len(entries),
            entries=entries,
        )

        logger.info("Processing %d frame(s)", len(entries))
        result.frames_resolved = self._resolve(entries, store, resolver, diagnostics)
        resolver.finalize()

        if self.cancelled:
            result.cancelled = True
        elif output_path is not None:
            self._encode(result, store, Path(output_path))

        result.elapsed = time.perf_counter() - start_time
        self._log_summary(result)
        return result

    # -------------------------------------------------------------------------
    # Extraction + resolution
    # -------------------------------------------------------------------------

    def _extract(self, entry: FrameEntry, store: FrameStore) -> tuple[int, ExtractionOutcome]:
        """Worker: load and extract one frame. DecodeError is returned, not raised."""
        try:
            frame = load_frame(entry)
            store.add(frame)
            return entry.index, self.extractor.extract(frame)
        except DecodeError as e:
            return entry.index, e

    def _admit(
        self,
        index: int,
        outcome: ExtractionOutcome,
        store: FrameStore,
        resolver: CorrespondenceResolver,
        diagnostics: Diagnostics,
    ) -> None:
        if isinstance(outcome, DecodeError):
            diagnostics.report(index, outcome)
            store.mark_failed(index)
            resolver.skip(index)
            return

        if outcome.is_empty:
            diagnostics.report(
                index,
                NoObjectsFound(
                    f"No candidate cleared confidence {self.config.extraction.min_confidence:.2f}"
                ),
            )
        resolver.step(outcome)

    def _resolve(
        self,
        entries: list[FrameEntry],
        store: FrameStore,
        resolver: CorrespondenceResolver,
        diagnostics: Diagnostics,
    ) -> int:
        """Feed every frame through the resolver in index order. Returns frames resolved."""
        if not entries:
            return 0

        ingestion = self.config.ingestion
        buffer: OrderingBuffer[ExtractionOutcome] = OrderingBuffer(first_index=entries[0].index)
        pending_entries = iter(entries)
        in_flight: set[Future] = set()
        resolved = 0

        progress = tqdm(
            total=len(entries),
            desc="Matching",
            unit="frame",
            disable=not self.config.show_progress,
        )

        def submit_more(executor: ThreadPoolExecutor) -> None:
            while len(in_flight) + buffer.num_pending < ingestion.max_in_flight:
                if self.cancelled:
                    return
                entry = next(pending_entries, None)
                if entry is None:
                    return
                in_flight.add(executor.submit(self._extract, entry, store))

        try:
            with ThreadPoolExecutor(
                max_workers=ingestion.workers, thread_name_prefix="extract"
            ) as executor:
                submit_more(executor)
                while in_flight:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    for future in done:
                        in_flight.discard(future)
                        index, outcome = future.result()
                        buffer.push(index, outcome)

                    ready = buffer.pop_ready()
                    for offset, outcome in enumerate(ready):
                        index = buffer.next_index - len(ready) + offset
                        self._admit(index, outcome, store, resolver, diagnostics)
                        resolved += 1
                        progress.update(1)
                        if self.cancelled:
                            break

                    if self.cancelled:
                        for future in in_flight:
                            future.cancel()
                        logger.warning(
                            "Cancelled after frame %d (%d/%d resolved)",
                            resolver.last_frame,
                            resolved,
                            len(entries),
                        )
                        break

                    submit_more(executor)
        finally:
            progress.close()

        if not self.cancelled:
            buffer.close()
        return resolved

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def _encode(self, result: RunResult, store: FrameStore, output_path: Path) -> None:
        sink = self.sink_factory(output_path)
        try:
            result.frames_written = self.sequencer.write(
                result.table, store, sink, should_stop=self._cancel.is_set
            )
            if self.cancelled:
                sink.abort()
                result.cancelled = True
                return
            result.output_path = sink.finalize()
        except BaseException:
            # EncodeError, InvariantViolation, KeyboardInterrupt: never leave a partial file
            sink.abort()
            raise

    def _log_summary(self, result: RunResult) -> None:
        table = result.table
        logger.info("=" * 60)
        logger.info("Run %s in %.1fs", "cancelled" if result.cancelled else "complete", result.elapsed)
        logger.info("  Frames: %d resolved / %d total", result.frames_resolved, result.frames_total)
        logger.info("  Tracks: %d (%d active, %d closed)", len(table), len(table.active()), len(table.closed()))
        if result.skipped_frames:
            logger.info("  Skipped frames: %s", result.skipped_frames)
        for kind, count in result.diagnostics.summary().items():
            if count:
                logger.info("  %s: %d", kind, count)
        if result.output_path is not None:
            logger.info("  Video: %s (%d frames)", result.output_path, result.frames_written)
        logger.info("=" * 60)


def export_tracks(table: TrackTable, path: Path) -> Path:
    """Write the track table as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(table.to_dict(), f, indent=2)
    logger.info("Wrote track table to %s", path)
    return path
