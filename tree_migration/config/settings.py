import logging
import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from tree_migration.exceptions import ConfigError

# Pick up FFMPEG_PATH / TREE_MIGRATION_LOG_LEVEL from a local .env file
load_dotenv()

logger = logging.getLogger(__name__)


class OrderBy(str, Enum):
    FILENAME = "filename"  # Capture date/time parsed from the file name
    MTIME = "mtime"  # File modification time


class ExtractorBackend(str, Enum):
    CANOPY = "canopy"
    YOLO = "yolo"


class FeatureMetric(str, Enum):
    COSINE = "cosine"
    EUCLIDEAN = "euclidean"


class RenderMode(str, Enum):
    PER_TRACK = "per-track"
    COMPOSITE = "composite"


class GapFillPolicy(str, Enum):
    HOLD = "hold"
    INTERPOLATE = "interpolate"


class EncoderBackend(str, Enum):
    OPENCV = "opencv"
    FFMPEG = "ffmpeg"


class Codec(str, Enum):
    MP4V = "mp4v"
    MJPG = "mjpg"
    H264 = "h264"
    PRORES = "prores"


# =============================================================================
# BASE MODEL
# =============================================================================


def describe_validation_error(error: ValidationError) -> str:
    """One-line summary of a pydantic ValidationError."""
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "value"
        problems.append(f"{location}: {item['msg']}")
    return f"Invalid {error.title}: " + "; ".join(problems)


class FrozenConfig(BaseModel):
    """
    Read-only, strictly keyed config model.

    Construction errors surface as ConfigError so callers only ever handle
    the pipeline's own error type.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigError(describe_validation_error(e)) from e


Count = Annotated[int, Field(strict=True, ge=0)]
Flag = Annotated[bool, Field(strict=True)]


# =============================================================================
# STAGE CONFIGS
# =============================================================================


class IngestionConfig(FrozenConfig):
    """Frame loading and extraction scheduling."""

    extensions: tuple[Annotated[str, Field(min_length=2)], ...] = Field(
        default=(".jpg", ".jpeg", ".png"), min_length=1
    )
    order_by: OrderBy = OrderBy.FILENAME
    workers: Count = Field(default=4, ge=1, description="Threads loading + extracting frames")
    max_in_flight: Count = Field(
        default=16, ge=1, description="Frames submitted but not yet handed to the resolver"
    )
    retain_frames: Flag = Field(
        default=False, description="Keep decoded pixels for composition instead of reloading"
    )

    @field_validator("extensions", mode="before")
    @classmethod
    def normalize_extensions(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return value
        return tuple(
            (e if e.startswith(".") else f".{e}").lower() if isinstance(e, str) and e else e
            for e in value
        )


class ExtractionConfig(FrozenConfig):
    """Object extraction and appearance signature configuration."""

    backend: ExtractorBackend = ExtractorBackend.CANOPY

    # Canopy segmentation (excess-green index on chromaticity coordinates)
    exg_threshold: float = Field(
        default=0.08, ge=-1.0, le=2.0, allow_inf_nan=False,
        description="Minimum ExG = 2g - r - b for a vegetation pixel",
    )
    exg_saturation: float = Field(
        default=0.4, gt=0.0, allow_inf_nan=False,
        description="ExG at which vegetation strength reaches 1.0",
    )
    morph_kernel_size: Count = Field(default=7, ge=1, description="Open/close kernel (pixels)")
    min_area: Count = Field(default=400, ge=1, description="Minimum component area in pixels")
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    max_objects: Count = Field(default=64, ge=1, description="Candidates kept per frame")

    # Appearance signature (16 bins x 3 channels x 2 regions = 96 dims)
    bins_per_channel: Count = Field(default=16, ge=2)
    crown_weight: float = Field(default=0.6, ge=0.0, allow_inf_nan=False)  # Upper half: foliage
    trunk_weight: float = Field(default=0.4, ge=0.0, allow_inf_nan=False)  # Lower half: trunk, ground
    crop_resize_width: Count = Field(default=64, ge=2)
    crop_resize_height: Count = Field(default=128, ge=2)

    # YOLO backend
    weights_file: str = Field(
        default="trees.pt", min_length=1, description="Filename in weights/ or an absolute path"
    )
    conf_threshold: float = Field(default=0.35, ge=0.0, le=1.0)
    iou_threshold: float = Field(default=0.45, ge=0.0, le=1.0)
    imgsz: Count = Field(default=640, ge=32)
    device: str = "cpu"  # "cuda" or "cpu"
    class_ids: Optional[tuple[Count, ...]] = None  # None keeps every class

    @model_validator(mode="after")
    def check_region_weights(self) -> "ExtractionConfig":
        if self.crown_weight + self.trunk_weight <= 0:
            raise ValueError("crown_weight and trunk_weight must not both be 0")
        return self

    @property
    def signature_length(self) -> int:
        """Length of the appearance signature produced by the extractors."""
        return self.bins_per_channel * 3 * 2


class MatchingConfig(FrozenConfig):
    """Correspondence resolver configuration."""

    match_max_distance: float = Field(
        default=0.5, gt=0.0, allow_inf_nan=False, description="Candidacy cutoff on the weighted cost"
    )
    match_weight_position: float = Field(
        default=0.5, ge=0.0, allow_inf_nan=False, description="Weight of normalized centroid distance"
    )
    match_weight_feature: float = Field(
        default=0.5, ge=0.0, allow_inf_nan=False, description="Weight of signature distance"
    )
    track_timeout_frames: Count = Field(
        default=2, description="Consecutive misses tolerated before closing"
    )
    feature_metric: FeatureMetric = FeatureMetric.COSINE

    @model_validator(mode="after")
    def check_weights(self) -> "MatchingConfig":
        if self.match_weight_position + self.match_weight_feature <= 0:
            raise ValueError("match_weight_position and match_weight_feature must not both be 0")
        return self


class SequencingConfig(FrozenConfig):
    """Sequencer and overlay rendering configuration."""

    render_mode: RenderMode = RenderMode.COMPOSITE
    gap_fill_policy: GapFillPolicy = GapFillPolicy.HOLD
    crop_size: Count = Field(default=256, ge=16, description="Per-track frames are crop_size squared")
    crop_padding: float = Field(
        default=0.25, ge=0.0, allow_inf_nan=False, description="Margin around the largest extent"
    )
    trail_length: Count = Field(default=8, description="Past centroids drawn per track")
    output_width: Optional[Annotated[int, Field(strict=True, ge=2)]] = None
    output_height: Optional[Annotated[int, Field(strict=True, ge=2)]] = None

    @model_validator(mode="after")
    def check_output_size(self) -> "SequencingConfig":
        if (self.output_width is None) != (self.output_height is None):
            raise ValueError("output_width and output_height must be set together")
        return self

    @property
    def output_size(self) -> Optional[tuple[int, int]]:
        """Fixed (width, height) of composite output frames, if configured."""
        if self.output_width is None:
            return None
        return (self.output_width, self.output_height)


class EncoderConfig(FrozenConfig):
    """Video sink configuration."""

    output_frame_rate: float = Field(default=4.0, gt=0.0, allow_inf_nan=False)
    backend: EncoderBackend = EncoderBackend.OPENCV
    codec: Codec = Codec.MP4V
    ffmpeg_path: str = Field(
        default_factory=lambda: os.getenv("FFMPEG_PATH", "ffmpeg"), min_length=1
    )

    @model_validator(mode="after")
    def check_codec(self) -> "EncoderConfig":
        if self.backend is EncoderBackend.OPENCV and self.codec is Codec.PRORES:
            raise ValueError("prores requires the ffmpeg encoder backend")
        return self


# =============================================================================
# ROOT CONFIG
# =============================================================================

_SECTIONS: dict[str, type[FrozenConfig]] = {
    "ingestion": IngestionConfig,
    "extraction": ExtractionConfig,
    "matching": MatchingConfig,
    "sequencing": SequencingConfig,
    "encoder": EncoderConfig,
}

# Top-level camelCase option names -> (section, field)
OPTION_ALIASES: dict[str, tuple[str, str]] = {
    "matchMaxDistance": ("matching", "match_max_distance"),
    "matchWeightPosition": ("matching", "match_weight_position"),
    "matchWeightFeature": ("matching", "match_weight_feature"),
    "trackTimeoutFrames": ("matching", "track_timeout_frames"),
    "gapFillPolicy": ("sequencing", "gap_fill_policy"),
    "outputFrameRate": ("encoder", "output_frame_rate"),
    "renderMode": ("sequencing", "render_mode"),
}


class PipelineConfig(FrozenConfig):
    """
    Root configuration for one run.

    Sub-configurations:
    - ingestion: Frame discovery and extraction scheduling
    - extraction: Object extractor backend and signature parameters
    - matching: Correspondence resolver thresholds
    - sequencing: Render mode, gap-fill policy, crop geometry
    - encoder: Frame rate, encoder backend and codec

    Frozen: every stage receives the same read-only instance.
    """

    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    sequencing: SequencingConfig = Field(default_factory=SequencingConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    show_progress: Flag = True

    @property
    def base_dir(self) -> Path:
        """Repository root (parent of the tree_migration package)."""
        return Path(__file__).parent.parent.parent

    @property
    def weights_dir(self) -> Path:
        return self.base_dir / "weights"

    @property
    def weights_path(self) -> Path:
        """Full path to the YOLO weights file."""
        weights = Path(self.extraction.weights_file)
        if weights.is_absolute():
            return weights
        return self.weights_dir / weights

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PipelineConfig":
        """
        Build a config from a (YAML-shaped) mapping.

        Accepts nested sections (``matching: {track_timeout_frames: 3}``) and
        the camelCase top-level aliases in OPTION_ALIASES.

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        if data is None:
            return cls()
        return cls().with_overrides(data)

    @classmethod
    def from_yaml(cls, path: Path) -> "PipelineConfig":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e

        config = cls.from_dict(data)
        logger.info("Loaded pipeline config from %s", path)
        return config

    def with_overrides(self, data: Mapping[str, Any]) -> "PipelineConfig":
        """
        Return a new validated config with ``data`` applied on top of this one.

        Keys may be section names mapping to dicts, camelCase aliases, dotted
        ``section.field`` names, or ``show_progress``.
        """
        if not isinstance(data, Mapping):
            raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")

        section_values: dict[str, dict[str, Any]] = {name: {} for name in _SECTIONS}
        show_progress = self.show_progress

        for key, value in data.items():
            if key in OPTION_ALIASES:
                section, name = OPTION_ALIASES[key]
                section_values[section][name] = value
            elif key in _SECTIONS:
                if value is None:
                    continue
                if not isinstance(value, Mapping):
                    raise ConfigError(f"Section '{key}' must be a mapping")
                section_values[key].update(value)
            elif isinstance(key, str) and "." in key:
                section, name = key.split(".", 1)
                if section not in _SECTIONS:
                    raise ConfigError(f"Unknown config section '{section}'")
                section_values[section][name] = value
            elif key == "show_progress":
                show_progress = value
            else:
                raise ConfigError(f"Unknown config option '{key}'")

        sections = {}
        for name, values in section_values.items():
            current = getattr(self, name)
            if values:
                current = _SECTIONS[name](**{**current.model_dump(), **values})
            sections[name] = current
        return PipelineConfig(**sections, show_progress=show_progress)

    def to_dict(self) -> dict[str, Any]:
        """Plain (YAML-serializable) representation."""
        return self.model_dump(mode="json")


def load_config(path: Optional[Path] = None) -> PipelineConfig:
    """Load a PipelineConfig from YAML, or the defaults when no path is given."""
    if path is None:
        return PipelineConfig()
    return PipelineConfig.from_yaml(path)


if __name__ == "__main__":
    """Print the resolved config: python -m tree_migration.config.settings [config.yaml]"""
    import sys

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s | %(levelname)-7s | %(message)s"
    )

    config = load_config(Path(sys.argv[1]) if len(sys.argv) > 1 else None)
    logger.info("=" * 60)
    logger.info("Pipeline Configuration")
    logger.info("=" * 60)
    for line in yaml.safe_dump(config.to_dict(), sort_keys=False).splitlines():
        logger.info("  %s", line)
    logger.info("Weights path: %s (exists: %s)", config.weights_path, config.weights_path.exists())
