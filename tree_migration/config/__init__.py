"""
Configuration Module

Centralizes all configurable parameters.
"""

from tree_migration.config.settings import (
    OPTION_ALIASES,
    Codec,
    EncoderBackend,
    EncoderConfig,
    ExtractionConfig,
    ExtractorBackend,
    FeatureMetric,
    GapFillPolicy,
    IngestionConfig,
    MatchingConfig,
    OrderBy,
    PipelineConfig,
    RenderMode,
    SequencingConfig,
    load_config,
)
from tree_migration.config.job import JobConfig

__all__ = [
    "OPTION_ALIASES",
    "Codec",
    "EncoderBackend",
    "EncoderConfig",
    "ExtractionConfig",
    "ExtractorBackend",
    "FeatureMetric",
    "GapFillPolicy",
    "IngestionConfig",
    "JobConfig",
    "MatchingConfig",
    "OrderBy",
    "PipelineConfig",
    "RenderMode",
    "SequencingConfig",
    "load_config",
]
