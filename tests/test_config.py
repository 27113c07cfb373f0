"""
Tests for PipelineConfig loading and validation.
"""

import pytest
from pydantic import ValidationError

from tree_migration.config import (
    Codec,
    EncoderBackend,
    FeatureMetric,
    GapFillPolicy,
    MatchingConfig,
    PipelineConfig,
    RenderMode,
    load_config,
)
from tree_migration.exceptions import ConfigError


class TestDefaults:
    def test_default_values(self):
        config = PipelineConfig()
        assert config.matching.track_timeout_frames == 2
        assert config.matching.feature_metric is FeatureMetric.COSINE
        assert config.sequencing.gap_fill_policy is GapFillPolicy.HOLD
        assert config.sequencing.render_mode is RenderMode.COMPOSITE
        assert config.encoder.output_frame_rate == 4.0
        assert config.extraction.signature_length == 96

    def test_config_is_read_only(self):
        config = PipelineConfig()
        with pytest.raises(ValidationError):
            config.matching.track_timeout_frames = 5

    def test_load_config_without_path_gives_defaults(self):
        assert load_config(None) == PipelineConfig()


class TestFromDict:
    def test_camel_case_aliases(self):
        config = PipelineConfig.from_dict(
            {
                "matchMaxDistance": 0.3,
                "matchWeightPosition": 0.7,
                "matchWeightFeature": 0.3,
                "trackTimeoutFrames": 4,
                "gapFillPolicy": "interpolate",
                "outputFrameRate": 12,
                "renderMode": "per-track",
            }
        )
        assert config.matching.match_max_distance == 0.3
        assert config.matching.match_weight_position == 0.7
        assert config.matching.track_timeout_frames == 4
        assert config.sequencing.gap_fill_policy is GapFillPolicy.INTERPOLATE
        assert config.encoder.output_frame_rate == 12
        assert config.sequencing.render_mode is RenderMode.PER_TRACK

    def test_nested_sections(self):
        config = PipelineConfig.from_dict(
            {
                "ingestion": {"extensions": ["JPG", ".tif"], "workers": 2},
                "encoder": {"backend": "ffmpeg", "codec": "prores"},
            }
        )
        assert config.ingestion.extensions == (".jpg", ".tif")
        assert config.ingestion.workers == 2
        assert config.encoder.backend is EncoderBackend.FFMPEG
        assert config.encoder.codec is Codec.PRORES

    def test_none_gives_defaults(self):
        assert PipelineConfig.from_dict(None) == PipelineConfig()

    @pytest.mark.parametrize(
        "data",
        [
            {"trackTimeoutFrames": -1},
            {"trackTimeoutFrames": 1.5},
            {"trackTimeoutFrames": True},
            {"matchMaxDistance": 0},
            {"matchMaxDistance": float("nan")},
            {"outputFrameRate": 0},
            {"gapFillPolicy": "extrapolate"},
            {"renderMode": "mosaic"},
            {"matchWeightPosition": 0, "matchWeightFeature": 0},
            {"encoder": {"codec": "prores"}},  # opencv backend cannot write ProRes
            {"sequencing": {"output_width": 640}},
            {"unknownOption": 1},
            {"matching": {"no_such_field": 1}},
            {"matching": 3},
            {"ingestion": {"workers": "4"}},
            {"ingestion": {"extensions": ".jpg"}},
            {"ingestion": {"extensions": []}},
            {"extraction": {"class_ids": [0, -1]}},
            {"show_progress": "yes"},
        ],
    )
    def test_invalid_values_raise_config_error(self, data):
        with pytest.raises(ConfigError):
            PipelineConfig.from_dict(data)

    def test_direct_construction_validates(self):
        with pytest.raises(ConfigError):
            MatchingConfig(track_timeout_frames=-3)

    def test_error_names_the_field_and_keeps_the_cause(self):
        with pytest.raises(ConfigError) as excinfo:
            PipelineConfig.from_dict({"matching": {"track_timeout_frames": -1}})
        assert "track_timeout_frames" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, ValidationError)


class TestOverrides:
    def test_dotted_overrides(self):
        base = PipelineConfig()
        config = base.with_overrides({"matching.track_timeout_frames": 0, "show_progress": False})
        assert config.matching.track_timeout_frames == 0
        assert config.show_progress is False
        # Original untouched
        assert base.matching.track_timeout_frames == 2

    def test_override_keeps_other_fields(self):
        base = PipelineConfig.from_dict({"matching": {"match_max_distance": 0.2}})
        config = base.with_overrides({"trackTimeoutFrames": 5})
        assert config.matching.match_max_distance == 0.2
        assert config.matching.track_timeout_frames == 5

    def test_unknown_section(self):
        with pytest.raises(ConfigError):
            PipelineConfig().with_overrides({"render.mode": "composite"})


class TestYaml:
    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "trackTimeoutFrames: 3\n"
            "sequencing:\n"
            "  gap_fill_policy: interpolate\n"
            "  crop_size: 128\n"
        )
        config = load_config(path)
        assert config.matching.track_timeout_frames == 3
        assert config.sequencing.crop_size == 128

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            PipelineConfig.from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("matching: [unclosed\n")
        with pytest.raises(ConfigError):
            PipelineConfig.from_yaml(path)

    def test_to_dict_reloads_to_same_config(self):
        config = PipelineConfig.from_dict({"renderMode": "per-track", "ingestion": {"workers": 3}})
        assert PipelineConfig.from_dict(config.to_dict()) == config
