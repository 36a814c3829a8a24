"""Capture synchronised video, depth masks and skeleton poses into archives."""

from .archive import ArchiveEntry, all_files, create_archive, directory_size
from .config import RecorderSettings, load_settings, save_settings
from .depth_mask import DepthMaskProcessor
from .errors import (
    ArchiveError,
    RecordingError,
    RecordingFinaliseError,
    RecordingSetupError,
    RecordingStateError,
    VideoWriterError,
)
from .joints import JointIndex, JointPosition, PoseFrame, TrackedBody, WallCalibration
from .recorder import RecordingMode, RecordingResult, SessionRecorder
from .version import APP_VERSION
from .video_writer import FrameSample, FrameVideoWriter

__all__ = [
    "APP_VERSION",
    "ArchiveEntry",
    "ArchiveError",
    "DepthMaskProcessor",
    "FrameSample",
    "FrameVideoWriter",
    "JointIndex",
    "JointPosition",
    "PoseFrame",
    "RecorderSettings",
    "RecordingError",
    "RecordingFinaliseError",
    "RecordingMode",
    "RecordingResult",
    "RecordingSetupError",
    "RecordingStateError",
    "SessionRecorder",
    "TrackedBody",
    "VideoWriterError",
    "WallCalibration",
    "all_files",
    "create_archive",
    "directory_size",
    "load_settings",
    "save_settings",
]
