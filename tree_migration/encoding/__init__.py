"""
Encoding Stage

Video sinks consuming ordered CompositeFrames.

Components:
- sink: VideoSink protocol, OpenCV and ffmpeg backends, create_sink factory
"""

from tree_migration.encoding.sink import (
    FFmpegVideoSink,
    OpenCVVideoSink,
    VideoSink,
    create_sink,
)

__all__ = [
    "VideoSink",
    "OpenCVVideoSink",
    "FFmpegVideoSink",
    "create_sink",
]
