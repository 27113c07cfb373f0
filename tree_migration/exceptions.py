"""
Error taxonomy for the tree migration pipeline.

Per-frame errors (DecodeError, MalformedDescriptor, NoObjectsFound) are
recoverable: the pipeline records them in its Diagnostics and keeps going.
ConfigError, EncodeError and InvariantViolation abort the run.
"""

from pathlib import Path
from typing import Optional


class MigrationError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, log_message: Optional[str] = None):
        super().__init__(message)
        self.log_message = log_message  # Extra detail for the log, not for the user


class ConfigError(MigrationError):
    """Raised when a configuration value or file is invalid."""

    pass


class DecodeError(MigrationError):
    """Raised when a source image cannot be decoded into a usable pixel buffer."""

    def __init__(
        self,
        message: str,
        path: Optional[Path] = None,
        frame_index: Optional[int] = None,
        log_message: Optional[str] = None,
    ):
        super().__init__(message, log_message)
        self.path = path
        self.frame_index = frame_index


class NoObjectsFound(MigrationError):
    """
    Soft signal: no candidate cleared the confidence floor in a frame.

    Never raised out of the pipeline. Instances are reported through
    Diagnostics; an empty descriptor set is a valid extraction result.
    """

    pass


class MalformedDescriptor(MigrationError):
    """Raised when an ObjectDescriptor fails validation at resolver ingestion."""

    pass


class EncodeError(MigrationError):
    """Raised when the video sink rejects a frame or cannot finalize the file."""

    pass


class InvariantViolation(MigrationError):
    """Raised when an internal invariant is broken (a logic error, not bad input)."""

    pass
