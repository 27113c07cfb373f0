"""
Job configuration

One job = one image series (one camera at one location) rendered to one video.

Job file (YAML):

    location: north-ridge
    camera: cam02
    input_path: /data/north-ridge/cam02
    output_path: /data/videos          # directory or .mov/.mp4/.avi file
    start_date: 2021-03-01             # optional, inclusive
    end_date: 2021-10-31               # optional, inclusive
    pipeline:                          # optional PipelineConfig overrides
      matching:
        track_timeout_frames: 3
"""

import datetime as dt
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import ConfigDict, Field, field_validator, model_validator

from tree_migration.config.settings import FrozenConfig, PipelineConfig
from tree_migration.exceptions import ConfigError

logger = logging.getLogger(__name__)

VIDEO_SUFFIXES = (".mov", ".mp4", ".avi", ".mkv")
DEFAULT_VIDEO_SUFFIX = ".mov"


class JobConfig(FrozenConfig):
    """
    A single processing job.

    Attributes:
        location: Site name, used in the output file name
        camera: Camera name, used in the output file name
        input_path: Directory holding the image series
        output_path: Output directory or explicit video file path
        start_date: First capture date to include (inclusive)
        end_date: Last capture date to include (inclusive)
        pipeline: Pipeline configuration for this job
        source_path: Job file this config was read from, if any
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    location: str = Field(..., min_length=1)
    camera: str = Field(..., min_length=1)
    input_path: Path
    output_path: Path
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    source_path: Optional[Path] = None

    @field_validator("input_path", "output_path", mode="before")
    @classmethod
    def require_path(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            raise ValueError("must be a non-empty path")
        return value

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        # PyYAML already turns unquoted ISO dates into date objects
        if value is None or isinstance(value, dt.date):
            return value.date() if isinstance(value, dt.datetime) else value
        if isinstance(value, str):
            try:
                return dt.date.fromisoformat(value.strip())
            except ValueError:
                pass
        raise ValueError(f"must be an ISO date (YYYY-MM-DD), got {value!r}")

    @model_validator(mode="after")
    def check_date_range(self) -> "JobConfig":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError(f"start_date {self.start_date} is after end_date {self.end_date}")
        return self

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        base_config: Optional[PipelineConfig] = None,
        source_path: Optional[Path] = None,
    ) -> "JobConfig":
        """
        Build a job from a (YAML-shaped) mapping.

        Relative paths are resolved against the job file's directory, and the
        optional ``pipeline`` section is applied on top of ``base_config``.

        Raises:
            ConfigError: On missing or unknown keys or invalid values
        """
        if not isinstance(data, Mapping):
            raise ConfigError("Job config must be a mapping")

        base_dir = source_path.parent if source_path is not None else Path.cwd()
        values = dict(data)
        for name in ("input_path", "output_path"):
            value = values.get(name)
            if isinstance(value, str) and value.strip():
                path = Path(value.strip()).expanduser()
                values[name] = path if path.is_absolute() else base_dir / path

        pipeline = base_config or PipelineConfig()
        if values.get("pipeline") is not None:
            pipeline = pipeline.with_overrides(values["pipeline"])
        values["pipeline"] = pipeline
        values["source_path"] = source_path

        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Path, base_config: Optional[PipelineConfig] = None) -> "JobConfig":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read job file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Job file {path} is not valid YAML: {e}") from e

        job = cls.from_dict(data, base_config=base_config, source_path=path)
        logger.debug("Loaded job %s-%s from %s", job.location, job.camera, path)
        return job

    def video_path(
        self,
        first_date: Optional[dt.date] = None,
        last_date: Optional[dt.date] = None,
    ) -> Path:
        """
        Resolve the output video path.

        An explicit video file path is used as-is. For a directory the file is
        named ``<location>-<camera>-<start>-<end>.mov``; dates missing from the
        job are taken from the first/last frame of the series.
        """
        if self.output_path.suffix.lower() in VIDEO_SUFFIXES:
            return self.output_path

        start = self.start_date or first_date
        end = self.end_date or last_date
        parts = [self.location, self.camera]
        parts.append(start.isoformat() if start else "start")
        parts.append(end.isoformat() if end else "end")
        return self.output_path / ("-".join(parts) + DEFAULT_VIDEO_SUFFIX)
