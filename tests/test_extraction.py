"""
Tests for the canopy extractor and appearance signatures.
"""

import datetime as dt

import numpy as np
import pytest

from tree_migration.config import ExtractionConfig, PipelineConfig
from tree_migration.exceptions import DecodeError, MalformedDescriptor
from tree_migration.extraction import (
    BoundingBox,
    CanopyExtractor,
    SignatureExtractor,
    create_extractor,
    excess_green,
    validate_descriptor,
)
from tree_migration.ingestion.models import Frame

from conftest import forest_image, make_descriptor

KEY = (dt.datetime(2021, 5, 1), "frame.png")


def frame_of(image, index=0):
    return Frame(index=index, order_key=KEY, image=image)


class TestExcessGreen:
    def test_green_pixels_score_high(self):
        image = forest_image([(50, 50, 30, 0)], size=(100, 100))
        exg = excess_green(image)
        assert exg[50, 50] > 0.5
        assert abs(exg[0, 0]) < 1e-6  # soil background

    def test_black_pixels_do_not_divide_by_zero(self):
        exg = excess_green(np.zeros((3, 3, 3), dtype=np.uint8))
        assert np.all(exg == 0)


class TestCanopyExtractor:
    def test_finds_trees_in_reading_order(self):
        image = forest_image([(220, 120, 28, 1), (80, 60, 30, 0), (80, 180, 25, 2)])
        result = CanopyExtractor(ExtractionConfig()).extract(frame_of(image, index=3))

        assert result.frame_index == 3
        assert result.frame_size == (320, 240)
        assert result.num_descriptors == 3
        assert [d.local_id for d in result.descriptors] == [0, 1, 2]

        centres = [d.centroid for d in result.descriptors]
        assert centres[0] == pytest.approx((80.5, 60.5), abs=2)
        assert centres[1] == pytest.approx((220.5, 120.5), abs=2)
        assert centres[2] == pytest.approx((80.5, 180.5), abs=2)

        for descriptor in result.descriptors:
            assert descriptor.frame_index == 3
            assert 0.0 <= descriptor.confidence <= 1.0
            assert descriptor.signature.shape == (96,)
            assert np.linalg.norm(descriptor.signature) == pytest.approx(1.0)
            assert not descriptor.signature.flags.writeable

    def test_deterministic(self):
        image = forest_image([(80, 120, 30, 0), (220, 120, 28, 1)])
        extractor = CanopyExtractor(ExtractionConfig())
        first = extractor.extract(frame_of(image))
        second = extractor.extract(frame_of(image.copy()))
        assert [d.bbox for d in first.descriptors] == [d.bbox for d in second.descriptors]
        assert [d.confidence for d in first.descriptors] == [d.confidence for d in second.descriptors]
        for a, b in zip(first.descriptors, second.descriptors):
            np.testing.assert_array_equal(a.signature, b.signature)

    def test_empty_frame_gives_empty_set(self):
        result = CanopyExtractor(ExtractionConfig()).extract(frame_of(forest_image([])))
        assert result.is_empty

    def test_small_blobs_are_ignored(self):
        image = forest_image([(80, 120, 5, 0), (220, 120, 28, 1)])
        result = CanopyExtractor(ExtractionConfig()).extract(frame_of(image))
        assert result.num_descriptors == 1

    def test_confidence_floor(self):
        image = forest_image([(80, 120, 30, 0)])
        result = CanopyExtractor(ExtractionConfig(min_confidence=1.0)).extract(frame_of(image))
        assert result.is_empty

    def test_max_objects_keeps_most_confident(self):
        image = forest_image([(60, 120, 30, 0), (160, 120, 30, 0), (260, 120, 30, 0)])
        result = CanopyExtractor(ExtractionConfig(max_objects=2)).extract(frame_of(image))
        assert result.num_descriptors == 2
        assert [d.local_id for d in result.descriptors] == [0, 1]

    def test_malformed_pixel_buffer(self):
        extractor = CanopyExtractor(ExtractionConfig())
        with pytest.raises(DecodeError):
            extractor.extract(frame_of(np.zeros((0, 10, 3), dtype=np.uint8)))

    def test_factory_builds_canopy_by_default(self):
        assert isinstance(create_extractor(PipelineConfig()), CanopyExtractor)


class TestSignature:
    def test_distinguishes_colours(self):
        extractor = SignatureExtractor(ExtractionConfig())
        bbox = BoundingBox(50, 50, 110, 110)
        dark = extractor.compute(forest_image([(80, 80, 30, 2)]), bbox)
        light = extractor.compute(forest_image([(80, 80, 30, 1)]), bbox)
        same = extractor.compute(forest_image([(80, 80, 30, 2)]), bbox)
        assert float(dark @ same) == pytest.approx(1.0)
        assert float(dark @ light) < 0.95

    def test_length_follows_bins(self):
        extractor = SignatureExtractor(ExtractionConfig(bins_per_channel=8))
        vector = extractor.compute(forest_image([(80, 80, 30, 0)]), BoundingBox(50, 50, 110, 110))
        assert vector.shape == (48,)

    def test_box_outside_image_gives_zero_vector(self):
        extractor = SignatureExtractor(ExtractionConfig())
        vector = extractor.compute(forest_image([]), BoundingBox(400, 300, 450, 350))
        assert not vector.any()


class TestValidateDescriptor:
    def test_valid(self):
        validate_descriptor(make_descriptor(0, 0, 10, 10), 96)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"signature_vector": np.ones(10)},
            {"signature_vector": np.full(96, np.nan)},
            {"confidence": 1.5},
            {"confidence": -0.1},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(MalformedDescriptor):
            validate_descriptor(make_descriptor(0, 0, 10, 10, **kwargs), 96)
