"""
Tree Migration Runner

Usage:
    tree-migration --input <image_dir> --output <video.mov>
    tree-migration --job site-a.yaml --job site-b.yaml
    python -m tree_migration.run_pipeline --input <image_dir> --output out.avi --codec mjpg

Pipeline stages:
1. Ingestion: Discover and order the image series, decode frames
2. Extraction: Candidate trees per frame (canopy segmenter or YOLO)
3. Tracking: Minimum-cost correspondence into persistent tracks
4. Sequencing: Composite or per-track frames with gap-fill
5. Encoding: OpenCV or ffmpeg video sink

Ctrl-C stops after the current frame without leaving a partial video.
"""

import argparse
import logging
import os
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from tree_migration.batch import BatchRunner, JobStatus
from tree_migration.config.settings import (
    Codec,
    EncoderBackend,
    GapFillPolicy,
    PipelineConfig,
    RenderMode,
    load_config,
)
from tree_migration.exceptions import ConfigError, MigrationError
from tree_migration.pipeline import MigrationPipeline, export_tracks

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tree-migration",
        description="Track trees across a time-ordered image series and render a time-lapse video.",
    )

    source = parser.add_argument_group("input / output")
    source.add_argument("--input", type=Path, help="Directory with the image series")
    source.add_argument("--output", type=Path, help="Video file to write")
    source.add_argument(
        "--job",
        type=Path,
        action="append",
        default=[],
        help="Job YAML file (repeatable); runs a batch instead of --input/--output",
    )
    source.add_argument("--tracks-json", type=Path, help="Also write the track table as JSON")

    options = parser.add_argument_group("pipeline options (override --config)")
    options.add_argument("--config", type=Path, help="PipelineConfig YAML file")
    options.add_argument("--render-mode", choices=[m.value for m in RenderMode])
    options.add_argument("--gap-fill", choices=[p.value for p in GapFillPolicy])
    options.add_argument("--fps", type=float, help="Output frame rate")
    options.add_argument("--codec", choices=[c.value for c in Codec])
    options.add_argument("--encoder", choices=[b.value for b in EncoderBackend])
    options.add_argument("--workers", type=int, help="Extraction threads")
    options.add_argument("--no-progress", action="store_true", help="Disable progress bars")
    options.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def setup_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.getenv("TREE_MIGRATION_LOG_LEVEL", "INFO")
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def resolve_config(args: argparse.Namespace) -> PipelineConfig:
    """Config file (or defaults) with command-line overrides applied."""
    config = load_config(args.config)

    overrides = {}
    if args.render_mode is not None:
        overrides["sequencing.render_mode"] = args.render_mode
    if args.gap_fill is not None:
        overrides["sequencing.gap_fill_policy"] = args.gap_fill
    if args.fps is not None:
        overrides["encoder.output_frame_rate"] = args.fps
    if args.encoder is not None:
        overrides["encoder.backend"] = args.encoder
    if args.codec is not None:
        overrides["encoder.codec"] = args.codec
    if args.workers is not None:
        overrides["ingestion.workers"] = args.workers
    if args.no_progress:
        overrides["show_progress"] = False

    return config.with_overrides(overrides) if overrides else config


@contextmanager
def cancel_on_interrupt(target):
    """
    First Ctrl-C requests cooperative cancellation of ``target``; a second one
    interrupts immediately.
    """

    def handler(signum, frame):
        logger.warning("Interrupt received, stopping after the current frame (Ctrl-C again to force)")
        signal.signal(signal.SIGINT, signal.default_int_handler)
        target.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def run_single(args: argparse.Namespace, config: PipelineConfig) -> int:
    pipeline = MigrationPipeline(config)
    with cancel_on_interrupt(pipeline):
        result = pipeline.run(args.input, args.output)

    if args.tracks_json is not None:
        export_tracks(result.table, args.tracks_json)

    if result.cancelled:
        logger.warning("Cancelled: no video written")
        return EXIT_CANCELLED
    return EXIT_OK


def run_batch(args: argparse.Namespace, config: PipelineConfig) -> int:
    runner = BatchRunner(config)
    records = runner.load(args.job)
    with cancel_on_interrupt(runner):
        runner.run(records)

    if any(r.status is JobStatus.CANCELLED for r in records):
        return EXIT_CANCELLED
    if all(r.status is JobStatus.DONE for r in records):
        return EXIT_OK
    return EXIT_FAILED


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.job:
        if args.input is not None or args.output is not None or args.tracks_json is not None:
            parser.error("--job cannot be combined with --input, --output or --tracks-json")
    elif args.input is None or args.output is None:
        parser.error("either --input and --output, or at least one --job, is required")

    setup_logging(args.verbose)

    try:
        config = resolve_config(args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_FAILED

    try:
        if args.job:
            return run_batch(args, config)
        return run_single(args, config)
    except MigrationError as e:
        logger.error("%s: %s", type(e).__name__, e)
        if e.log_message:
            logger.debug(e.log_message)
        return EXIT_FAILED
    except FileNotFoundError as e:
        logger.error("%s", e)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
