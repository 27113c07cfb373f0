"""
End-to-end tests: pipeline, batch runner and command-line entry point.
"""

import json

import cv2
import pytest

from tree_migration.batch import BatchRunner, JobStatus
from tree_migration.config import PipelineConfig
from tree_migration.diagnostics import DiagnosticKind
from tree_migration.extraction import CanopyExtractor
from tree_migration.pipeline import MigrationPipeline, export_tracks
from tree_migration.run_pipeline import EXIT_FAILED, EXIT_OK, main

from conftest import RecordingSink, drifting_forest, forest_image, write_series


def count_video_frames(path):
    capture = cv2.VideoCapture(str(path))
    frames = 0
    while capture.read()[0]:
        frames += 1
    capture.release()
    return frames


class CancellingExtractor(CanopyExtractor):
    """Canopy extractor that cancels its pipeline while extracting one frame."""

    def __init__(self, config, cancel_at):
        super().__init__(config)
        self.cancel_at = cancel_at
        self.pipeline = None

    def extract(self, frame):
        result = super().extract(frame)
        if frame.index == self.cancel_at:
            self.pipeline.cancel()
        return result


class TestMigrationPipeline:
    def test_two_trees_two_tracks(self, image_dir, quiet_config, recording_sinks, tmp_path):
        output = tmp_path / "out.mp4"
        pipeline = MigrationPipeline(quiet_config, sink_factory=recording_sinks)
        result = pipeline.run(image_dir, output)

        assert result.completed
        assert result.frames_total == 4
        assert result.frames_resolved == 4
        assert len(result.table) == 2
        for track in result.table:
            assert track.observed_frames == [0, 1, 2, 3]
        # Reading order: the left tree is found first and becomes track 0
        assert result.table[0].observations[0].centroid[0] < 150

        (sink,) = recording_sinks.sinks
        assert sink.indices == [0, 1, 2, 3]
        assert result.frames_written == 4
        assert result.output_path == output
        assert output.exists()
        assert not sink.temp_path.exists()

    def test_corrupt_frame_is_skipped(self, image_dir, quiet_config, recording_sinks, tmp_path):
        paths = sorted(image_dir.iterdir())
        paths[1].write_bytes(b"\x89PNG truncated")

        result = MigrationPipeline(quiet_config, sink_factory=recording_sinks).run(
            image_dir, tmp_path / "out.mp4"
        )

        assert result.skipped_frames == [1]
        assert len(result.table) == 2
        for track in result.table:
            assert track.absent_frames == [1]
            assert track.observed_frames == [0, 2, 3]
        (sink,) = recording_sinks.sinks
        assert sink.indices == [0, 1, 2]

    def test_empty_frame_is_reported(self, tmp_path, quiet_config, recording_sinks):
        images = drifting_forest(4)
        images[2] = forest_image([])
        write_series(tmp_path / "images", images)

        result = MigrationPipeline(quiet_config, sink_factory=recording_sinks).run(
            tmp_path / "images", tmp_path / "out.mp4"
        )
        assert result.diagnostics.frames_with(DiagnosticKind.NO_OBJECTS) == [2]
        assert len(result.table) == 2
        assert result.frames_written == 4

    def test_parallel_extraction_matches_sequential(self, image_dir, quiet_config):
        sequential = quiet_config.with_overrides(
            {"ingestion.workers": 1, "ingestion.max_in_flight": 1}
        )
        parallel = quiet_config.with_overrides(
            {"ingestion.workers": 4, "ingestion.max_in_flight": 2}
        )
        first = MigrationPipeline(sequential).run(image_dir, None)
        second = MigrationPipeline(parallel).run(image_dir, None)
        assert first.table.to_dict() == second.table.to_dict()
        assert first.output_path is None

    def test_cancel_during_extraction(self, image_dir, recording_sinks, tmp_path):
        config = PipelineConfig(show_progress=False).with_overrides(
            {"ingestion.workers": 1, "ingestion.max_in_flight": 1}
        )
        extractor = CancellingExtractor(config.extraction, cancel_at=1)
        pipeline = MigrationPipeline(config, extractor=extractor, sink_factory=recording_sinks)
        extractor.pipeline = pipeline

        output = tmp_path / "out.mp4"
        result = pipeline.run(image_dir, output)

        assert result.cancelled
        assert result.frames_resolved == 2
        assert len(result.table) == 2  # consistent up to the last resolved frame
        assert result.output_path is None
        assert recording_sinks.sinks == []
        assert not output.exists()

    def test_cancel_during_encoding(self, image_dir, quiet_config, tmp_path):
        sinks = []

        def factory(path):
            sink = RecordingSink(path)
            original_accept = sink.accept

            def accept(frame, index):
                original_accept(frame, index)
                pipeline.cancel()

            sink.accept = accept
            sinks.append(sink)
            return sink

        pipeline = MigrationPipeline(quiet_config, sink_factory=factory)
        output = tmp_path / "out.mp4"
        result = pipeline.run(image_dir, output)

        assert result.cancelled
        assert result.frames_written == 1
        assert sinks[0].aborted
        assert not output.exists()
        assert not sinks[0].temp_path.exists()

    def test_writes_real_video(self, image_dir, quiet_config, tmp_path):
        config = quiet_config.with_overrides({"encoder.codec": "mjpg"})
        output = tmp_path / "videos" / "migration.avi"
        result = MigrationPipeline(config).run(image_dir, output)
        assert result.output_path == output
        assert count_video_frames(output) == 4

    def test_per_track_mode(self, image_dir, quiet_config, recording_sinks, tmp_path):
        config = quiet_config.with_overrides({"renderMode": "per-track", "sequencing.crop_size": 64})
        MigrationPipeline(config, sink_factory=recording_sinks).run(image_dir, tmp_path / "out.mp4")
        (sink,) = recording_sinks.sinks
        assert [f.track_id for f in sink.frames] == [0] * 4 + [1] * 4
        assert sink.frame_size == (64, 64)

    def test_export_tracks(self, image_dir, quiet_config, tmp_path):
        result = MigrationPipeline(quiet_config).run(image_dir, None)
        path = export_tracks(result.table, tmp_path / "out" / "tracks.json")
        data = json.loads(path.read_text())
        assert data["num_tracks"] == 2
        assert [t["track_id"] for t in data["tracks"]] == [0, 1]


class TestBatchRunner:
    def write_job(self, path, text):
        path.write_text(text)
        return path

    def test_statuses(self, image_dir, quiet_config, recording_sinks, tmp_path):
        (tmp_path / "empty").mkdir()
        jobs = [
            self.write_job(
                tmp_path / "good.yaml",
                "location: north-ridge\ncamera: cam02\ninput_path: images\noutput_path: videos\n",
            ),
            self.write_job(tmp_path / "bad.yaml", "location: x\n"),
            self.write_job(
                tmp_path / "empty.yaml",
                "location: east\ncamera: cam01\ninput_path: empty\noutput_path: videos\n",
            ),
        ]

        runner = BatchRunner(quiet_config, sink_factory=recording_sinks)
        records = runner.run(runner.load(jobs))

        assert [r.status for r in records] == [
            JobStatus.DONE,
            JobStatus.INVALID_CONFIG,
            JobStatus.ERROR,
        ]
        expected = tmp_path / "videos" / "north-ridge-cam02-2021-05-01-2021-05-04.mov"
        assert records[0].output_path == expected
        assert expected.exists()

    def test_job_date_range(self, image_dir, quiet_config, recording_sinks, tmp_path):
        job = self.write_job(
            tmp_path / "job.yaml",
            "location: a\ncamera: b\ninput_path: images\noutput_path: videos\n"
            "start_date: 2021-05-02\nend_date: 2021-05-03\n",
        )
        runner = BatchRunner(quiet_config, sink_factory=recording_sinks)
        (record,) = runner.run(runner.load([job]))
        assert record.status is JobStatus.DONE
        assert record.result.frames_total == 2
        assert record.output_path.name == "a-b-2021-05-02-2021-05-03.mov"

    def test_cancelled_batch_runs_nothing(self, image_dir, quiet_config, recording_sinks, tmp_path):
        job = self.write_job(
            tmp_path / "job.yaml",
            "location: a\ncamera: b\ninput_path: images\noutput_path: videos\n",
        )
        runner = BatchRunner(quiet_config, sink_factory=recording_sinks)
        records = runner.load([job])
        runner.cancel()
        runner.run(records)
        assert records[0].status is JobStatus.CANCELLED
        assert recording_sinks.sinks == []


class TestCommandLine:
    def test_single_run(self, image_dir, tmp_path):
        output = tmp_path / "out.avi"
        tracks = tmp_path / "tracks.json"
        code = main(
            [
                "--input", str(image_dir),
                "--output", str(output),
                "--codec", "mjpg",
                "--tracks-json", str(tracks),
                "--no-progress",
            ]
        )
        assert code == EXIT_OK
        assert output.exists()
        assert json.loads(tracks.read_text())["num_tracks"] == 2

    def test_missing_input(self, tmp_path):
        code = main(["--input", str(tmp_path / "nope"), "--output", str(tmp_path / "o.avi"), "--no-progress"])
        assert code == EXIT_FAILED

    def test_invalid_option_value(self, image_dir, tmp_path):
        code = main(["--input", str(image_dir), "--output", str(tmp_path / "o.mov"), "--codec", "prores"])
        assert code == EXIT_FAILED

    def test_job_and_input_are_exclusive(self, image_dir, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            main(["--job", str(tmp_path / "job.yaml"), "--input", str(image_dir)])
        assert excinfo.value.code == 2

    def test_batch_with_invalid_job_fails(self, tmp_path):
        job = tmp_path / "job.yaml"
        job.write_text("camera: only\n")
        assert main(["--job", str(job), "--no-progress"]) == EXIT_FAILED
