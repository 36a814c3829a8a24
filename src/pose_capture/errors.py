"""Exception types raised by the capture-to-archive pipeline."""

from __future__ import annotations


class RecordingError(RuntimeError):
    """Base class for recording failures surfaced to callers."""


class RecordingStateError(RecordingError):
    """Raised when a recorder operation is invoked in the wrong state."""


class RecordingSetupError(RecordingError):
    """Raised when a session's output folder or files cannot be created."""


class RecordingFinaliseError(RecordingError):
    """Raised when the video writer did not produce a finished file."""


class VideoWriterError(RecordingError):
    """Raised when the video muxer cannot be opened for a frame geometry."""


class ArchiveError(RecordingError):
    """Raised when an archive cannot be assembled or written."""


__all__ = [
    "ArchiveError",
    "RecordingError",
    "RecordingFinaliseError",
    "RecordingSetupError",
    "RecordingStateError",
    "VideoWriterError",
]
