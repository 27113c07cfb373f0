"""
Video Sinks

Consume CompositeFrames in strictly increasing presentation order and produce
one video file.

Backends:
- OpenCVVideoSink: cv2.VideoWriter (mp4v, MJPG, avc1 where the build has it)
- FFmpegVideoSink: raw BGR frames piped into an ffmpeg process (H.264,
  ProRes, MJPEG, MPEG-4)

Commit protocol:
- Frames are written to a hidden temporary file beside the target
- finalize() closes the encoder and atomically renames it onto the target
- abort() (or any failure) deletes the temporary file, so a failed or
  cancelled run never leaves a partial video behind
"""

import logging
import os
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import cv2
import numpy as np

from tree_migration.config.settings import Codec, EncoderBackend, EncoderConfig
from tree_migration.exceptions import EncodeError, InvariantViolation

if TYPE_CHECKING:
    from tree_migration.sequencing.models import CompositeFrame

logger = logging.getLogger(__name__)


class VideoSink(ABC):
    """
    Single-writer video sink.

    Subclasses implement ``_open``, ``_write``, ``_close`` and ``_kill``;
    this class enforces ordering and the commit/abort protocol.
    """

    def __init__(self, output_path: Path, config: EncoderConfig):
        self.output_path = Path(output_path)
        self.config = config
        self.temp_path = self.output_path.with_name(
            f".{self.output_path.stem}.partial{self.output_path.suffix}"
        )
        self.frame_size: Optional[tuple[int, int]] = None
        self.frames_written = 0
        self._last_index: Optional[int] = None
        self._opened = False
        self._finished = False

    @property
    def is_finished(self) -> bool:
        return self._finished

    def accept(self, frame: "CompositeFrame", presentation_index: int) -> None:
        """
        Encode one frame.

        Raises:
            InvariantViolation: Index not increasing, or sink already finished
            EncodeError: The encoder rejected the frame (the sink is aborted)
        """
        if self._finished:
            raise InvariantViolation("Frame submitted after the sink was finalized or aborted")
        if self._last_index is not None and presentation_index <= self._last_index:
            raise InvariantViolation(
                f"Presentation index {presentation_index} after {self._last_index}"
            )

        image = frame.image
        size = (image.shape[1], image.shape[0])
        try:
            if not self._opened:
                self.output_path.parent.mkdir(parents=True, exist_ok=True)
                self.frame_size = size
                self._open(size)
                self._opened = True
                logger.info(
                    "Encoding %s (%dx%d @ %.2f fps, %s/%s)",
                    self.output_path,
                    size[0],
                    size[1],
                    self.config.output_frame_rate,
                    self.config.backend.value,
                    self.config.codec.value,
                )
            if size != self.frame_size:
                raise EncodeError(
                    f"Frame {presentation_index} is {size[0]}x{size[1]}, "
                    f"video is {self.frame_size[0]}x{self.frame_size[1]}"
                )
            self._write(np.ascontiguousarray(image))
        except EncodeError:
            self.abort()
            raise
        except OSError as e:
            self.abort()
            raise EncodeError(f"Cannot write frame {presentation_index}: {e}") from e

        self._last_index = presentation_index
        self.frames_written += 1

    def finalize(self) -> Path:
        """
        Close the encoder and commit the video to ``output_path``.

        Raises:
            EncodeError: No frames, or the encoder failed (the sink is aborted)
        """
        if self._finished:
            raise InvariantViolation("Sink already finalized or aborted")
        if self.frames_written == 0:
            self.abort()
            raise EncodeError(f"No frames to encode into {self.output_path}")

        try:
            self._close()
            if not self.temp_path.exists() or self.temp_path.stat().st_size == 0:
                raise EncodeError(f"Encoder produced no output for {self.output_path}")
            os.replace(self.temp_path, self.output_path)
        except EncodeError:
            self.abort()
            raise
        except OSError as e:
            self.abort()
            raise EncodeError(f"Cannot finalize {self.output_path}: {e}") from e

        self._finished = True
        logger.info("Wrote %s (%d frames)", self.output_path, self.frames_written)
        return self.output_path

    def abort(self) -> None:
        """Stop encoding and delete any partial output. Safe to call twice."""
        if self._finished:
            return
        self._finished = True
        if self._opened:
            self._kill()
        try:
            self.temp_path.unlink()
        except FileNotFoundError:
            pass
        logger.info("Aborted %s, no video written", self.output_path)

    @abstractmethod
    def _open(self, size: tuple[int, int]) -> None:
        pass

    @abstractmethod
    def _write(self, image: np.ndarray) -> None:
        pass

    @abstractmethod
    def _close(self) -> None:
        pass

    @abstractmethod
    def _kill(self) -> None:
        pass


class OpenCVVideoSink(VideoSink):

    FOURCC = {
        Codec.MP4V: "mp4v",
        Codec.MJPG: "MJPG",
        Codec.H264: "avc1",
    }

    def __init__(self, output_path: Path, config: EncoderConfig):
        super().__init__(output_path, config)
        if config.codec not in self.FOURCC:
            raise EncodeError(f"OpenCV backend cannot encode {config.codec.value}")
        self.writer: Optional[cv2.VideoWriter] = None

    def _open(self, size: tuple[int, int]) -> None:
        fourcc = cv2.VideoWriter_fourcc(*self.FOURCC[self.config.codec])
        self.writer = cv2.VideoWriter(
            str(self.temp_path), fourcc, float(self.config.output_frame_rate), size
        )
        if not self.writer.isOpened():
            raise EncodeError(
                f"cv2.VideoWriter cannot open {self.temp_path} with codec "
                f"{self.FOURCC[self.config.codec]}"
            )

    def _write(self, image: np.ndarray) -> None:
        self.writer.write(image)

    def _close(self) -> None:
        self.writer.release()
        self.writer = None

    def _kill(self) -> None:
        if self.writer is not None:
            self.writer.release()
            self.writer = None


class FFmpegVideoSink(VideoSink):

    CODEC_ARGS = {
        Codec.H264: [
            "-c:v", "libx264", "-preset", "medium", "-crf", "18",
            "-vf", "pad=ceil(iw/2)*2:ceil(ih/2)*2", "-pix_fmt", "yuv420p",
        ],
        Codec.PRORES: ["-c:v", "prores_ks", "-profile:v", "3", "-pix_fmt", "yuv422p10le"],
        Codec.MJPG: ["-c:v", "mjpeg", "-q:v", "3"],
        Codec.MP4V: ["-c:v", "mpeg4", "-q:v", "3"],
    }

    def __init__(self, output_path: Path, config: EncoderConfig):
        super().__init__(output_path, config)
        self.process: Optional[subprocess.Popen] = None
        self._stderr = None

    def command(self, size: tuple[int, int]) -> list[str]:
        return [
            self.config.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "bgr24",
            "-s", f"{size[0]}x{size[1]}",
            "-r", f"{self.config.output_frame_rate:g}",
            "-i", "-",
            "-an",
            *self.CODEC_ARGS[self.config.codec],
            str(self.temp_path),
        ]

    def _error_output(self) -> str:
        if self._stderr is None:
            return ""
        self._stderr.seek(0)
        return self._stderr.read().decode("utf-8", errors="replace").strip()

    def _open(self, size: tuple[int, int]) -> None:
        self._stderr = tempfile.TemporaryFile()
        try:
            self.process = subprocess.Popen(
                self.command(size),
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=self._stderr,
            )
        except OSError as e:
            self._stderr.close()
            self._stderr = None
            raise EncodeError(f"Cannot start ffmpeg ({self.config.ffmpeg_path}): {e}") from e

    def _write(self, image: np.ndarray) -> None:
        try:
            self.process.stdin.write(image.tobytes())
        except (BrokenPipeError, ValueError) as e:
            self.process.wait()
            raise EncodeError(f"ffmpeg stopped accepting frames: {self._error_output()}") from e

    def _close(self) -> None:
        try:
            self.process.stdin.close()
        except BrokenPipeError:
            pass
        returncode = self.process.wait()
        if returncode != 0:
            raise EncodeError(f"ffmpeg exited with status {returncode}: {self._error_output()}")
        self._stderr.close()
        self._stderr = None

    def _kill(self) -> None:
        if self.process is not None and self.process.poll() is None:
            self.process.kill()
            self.process.wait()
        if self._stderr is not None:
            self._stderr.close()
            self._stderr = None


def create_sink(config: EncoderConfig, output_path: Path) -> VideoSink:
    """Build the sink selected by ``config.backend``."""
    if config.backend is EncoderBackend.FFMPEG:
        return FFmpegVideoSink(output_path, config)
    return OpenCVVideoSink(output_path, config)
