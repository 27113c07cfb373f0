"""
Batch Runner

Runs several jobs (one image series -> one video each) in sequence and keeps
a per-job status table:

    valid           job file parsed, not run yet
    invalid-config  job file rejected (ConfigError); never run
    done            video written
    error           run failed (missing input, no images, encoder failure)
    cancelled       batch cancelled before or during this job

A failing job does not stop the batch.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from tree_migration.config.job import JobConfig
from tree_migration.config.settings import PipelineConfig
from tree_migration.exceptions import ConfigError, MigrationError
from tree_migration.ingestion.frame_loader import discover_frames
from tree_migration.pipeline import MigrationPipeline, RunResult, SinkFactory

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    VALID = "valid"
    INVALID_CONFIG = "invalid-config"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class JobRecord:
    """One row of the batch status table."""

    source: str
    job: Optional[JobConfig] = None
    status: JobStatus = JobStatus.VALID
    message: str = ""
    result: Optional[RunResult] = None

    @property
    def name(self) -> str:
        if self.job is not None:
            return f"{self.job.location}-{self.job.camera}"
        return self.source

    @property
    def output_path(self) -> Optional[Path]:
        return self.result.output_path if self.result is not None else None


class BatchRunner:
    """
    Args:
        base_config: PipelineConfig each job's ``pipeline:`` section overrides
        sink_factory: Passed to every MigrationPipeline (tests use a recording sink)
    """

    def __init__(
        self,
        base_config: Optional[PipelineConfig] = None,
        sink_factory: Optional[SinkFactory] = None,
    ):
        self.base_config = base_config or PipelineConfig()
        self.sink_factory = sink_factory
        self._cancel = threading.Event()
        self._current: Optional[MigrationPipeline] = None

    def cancel(self) -> None:
        self._cancel.set()
        if self._current is not None:
            self._current.cancel()

    def load(self, paths: Iterable[Path]) -> list[JobRecord]:
        """Parse job files; invalid ones are recorded, not raised."""
        records = []
        for path in paths:
            path = Path(path)
            try:
                job = JobConfig.from_yaml(path, base_config=self.base_config)
            except ConfigError as e:
                logger.error("Invalid job file %s: %s", path, e)
                records.append(JobRecord(str(path), status=JobStatus.INVALID_CONFIG, message=str(e)))
                continue
            records.append(JobRecord(str(path), job=job))
        return records

    def run_job(self, record: JobRecord) -> JobRecord:
        job = record.job
        logger.info("Job %s: %s -> %s", record.name, job.input_path, job.output_path)
        try:
            entries = discover_frames(
                job.input_path,
                job.pipeline.ingestion,
                start_date=job.start_date,
                end_date=job.end_date,
            )
            if not entries:
                raise FileNotFoundError(f"No images found in {job.input_path} for the date range")

            output_path = job.video_path(
                entries[0].captured_at.date(), entries[-1].captured_at.date()
            )
            self._current = MigrationPipeline(job.pipeline, sink_factory=self.sink_factory)
            if self._cancel.is_set():
                self._current.cancel()
            record.result = self._current.process(entries, output_path)
        except (MigrationError, OSError) as e:
            logger.error("Job %s failed: %s", record.name, e)
            record.status = JobStatus.ERROR
            record.message = str(e)
            return record
        finally:
            self._current = None

        if record.result.cancelled:
            record.status = JobStatus.CANCELLED
            record.message = "cancelled"
        else:
            record.status = JobStatus.DONE
            record.message = str(record.result.output_path)
        return record

    def run(self, records: list[JobRecord]) -> list[JobRecord]:
        """Run every valid job in order. Returns the same records, updated."""
        for record in records:
            if record.status is not JobStatus.VALID:
                continue
            if self._cancel.is_set():
                record.status = JobStatus.CANCELLED
                record.message = "cancelled"
                continue
            self.run_job(record)

        self.log_table(records)
        return records

    @staticmethod
    def log_table(records: list[JobRecord]) -> None:
        logger.info("%-32s %-15s %s", "job", "status", "detail")
        for record in records:
            logger.info("%-32s %-15s %s", record.name, record.status.value, record.message)
