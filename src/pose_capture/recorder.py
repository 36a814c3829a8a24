"""Session recorder turning sensor callbacks into packaged recordings."""

from __future__ import annotations

import asyncio
import logging
import math
import re
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Iterable

import numpy as np

from .archive import all_files, create_archive, directory_size
from .config import DEFAULT_RECORDER_SETTINGS, RecorderSettings
from .depth_mask import DepthMaskProcessor
from .errors import (
    RecordingFinaliseError,
    RecordingSetupError,
    RecordingStateError,
    VideoWriterError,
)
from .joints import (
    CoordinateCalibration,
    IdentityCalibration,
    PoseFrame,
    TrackedBody,
    build_pose_document,
    project_world_joints,
)
from .ledger import FrameTimestampLedger, build_timestamps_document
from .metadata import (
    OrientationProvider,
    SessionMetadata,
    device_model_identifier,
    format_resolution,
    normalise_orientation,
    os_version,
    unknown_orientation,
    write_json,
)
from .video_writer import FrameSample, FrameVideoWriter, MuxerFactory


logger = logging.getLogger(__name__)

VIDEO_FILE_NAME = "video.mp4"
DEPTH_MASK_FILE_NAME = "depth_mask.bin"
TIMESTAMPS_FILE_NAME = "timestamps.json"
METADATA_FILE_NAME = "metadata.json"
SKELETON_FILE_NAME = "skeleton.json"
POSE_RECORDING_FILE_NAME = "recording.json"
RAW_SUBDIR = "raw"
SKELETON_SUBDIR = "skeleton"


class RecorderState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RECORDING = "recording"
    FINISHING = "finishing"


class RecordingMode(str, Enum):
    """Which streams a session captures and how it is laid out on disk."""

    COMBINED = "combined"
    RAW = "raw"
    SKELETON = "skeleton"

    @property
    def captures_depth(self) -> bool:
        return self is not RecordingMode.SKELETON

    @property
    def captures_pose(self) -> bool:
        return self is not RecordingMode.RAW


def recording_name(mode: RecordingMode, index: int) -> str:
    if mode is RecordingMode.COMBINED:
        return f"recording_{index:03d}"
    return f"recording_{mode.value}_{index:03d}"


def _recording_pattern(mode: RecordingMode) -> re.Pattern[str]:
    infix = "" if mode is RecordingMode.COMBINED else f"{mode.value}_"
    return re.compile(
        rf"^recording_{infix}(\d{{3,}})(?:_full|_raw|_skeleton)?(?:\.zip)?$"
    )


def next_recording_index(root: Path, mode: RecordingMode) -> int:
    """Return one past the highest index used by folders or archives in ``root``."""

    pattern = _recording_pattern(mode)
    highest = 0
    try:
        names = [item.name for item in root.iterdir()]
    except OSError:
        return 1
    for name in names:
        match = pattern.match(name)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


@dataclass(frozen=True, slots=True)
class SessionLayout:
    """Paths of every artefact produced by one session."""

    mode: RecordingMode
    name: str
    folder: Path
    raw_folder: Path
    skeleton_folder: Path

    @classmethod
    def create(cls, root: Path, mode: RecordingMode, index: int) -> "SessionLayout":
        name = recording_name(mode, index)
        folder = root / name
        if mode is RecordingMode.COMBINED:
            return cls(mode, name, folder, folder / RAW_SUBDIR, folder / SKELETON_SUBDIR)
        return cls(mode, name, folder, folder, folder)

    @property
    def video_path(self) -> Path:
        return self.raw_folder / VIDEO_FILE_NAME

    @property
    def depth_mask_path(self) -> Path:
        return self.raw_folder / DEPTH_MASK_FILE_NAME

    @property
    def timestamps_path(self) -> Path:
        return self.raw_folder / TIMESTAMPS_FILE_NAME

    @property
    def metadata_path(self) -> Path:
        return self.raw_folder / METADATA_FILE_NAME

    @property
    def pose_path(self) -> Path:
        if self.mode is RecordingMode.SKELETON:
            return self.skeleton_folder / POSE_RECORDING_FILE_NAME
        return self.skeleton_folder / SKELETON_FILE_NAME

    def archive_path(self, suffix: str = "") -> Path:
        return self.folder.parent / f"{self.name}{suffix}.zip"


@dataclass
class Session:
    """State exclusively owned by one recording attempt."""

    layout: SessionLayout
    metadata: SessionMetadata
    calibration: CoordinateCalibration
    video_writer: FrameVideoWriter
    mask_handle: IO[bytes] | None
    mask_executor: ThreadPoolExecutor | None
    prepared_monotonic: float
    start_timestamp: float | None = None
    first_frame_monotonic: float | None = None
    last_mask_timestamp: float = -math.inf
    video_ledger: FrameTimestampLedger = field(
        default_factory=lambda: FrameTimestampLedger("video", enforce_monotonic=True)
    )
    depth_ledger: FrameTimestampLedger = field(
        default_factory=lambda: FrameTimestampLedger("depth_mask")
    )
    pose_frames: list[PoseFrame] = field(default_factory=list)

    def drain_mask_work(self) -> None:
        executor = self.mask_executor
        self.mask_executor = None
        if executor is not None:
            executor.shutdown(wait=True)

    def close_mask_handle(self) -> None:
        handle = self.mask_handle
        self.mask_handle = None
        if handle is not None:
            handle.close()

    def release_buffers(self) -> None:
        self.video_ledger.clear()
        self.depth_ledger.clear()
        self.pose_frames.clear()


@dataclass(frozen=True, slots=True)
class RecordingResult:
    """Terminal outcome of a successfully finished session."""

    name: str
    folder: Path
    archives: tuple[Path, ...]
    metadata: SessionMetadata
    video_frame_count: int
    depth_mask_frame_count: int
    pose_frame_count: int


class SessionRecorder:
    """Drive the video writer, depth mask codec and pose ledger for a session.

    ``process_frame`` and ``process_bodies`` may be called from the sensor
    delivery thread. Depth masks are extracted on a single background worker
    so frame delivery never waits on them. ``finish_recording`` drains that
    worker, waits for the video file and packages the session folder.
    """

    def __init__(
        self,
        output_root: Path | str,
        settings: RecorderSettings | None = None,
        *,
        mode: RecordingMode = RecordingMode.COMBINED,
        orientation_provider: OrientationProvider | None = None,
        muxer_factory: MuxerFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.output_root = Path(output_root)
        self.settings = settings or DEFAULT_RECORDER_SETTINGS
        self.mode = RecordingMode(mode)
        self.mask_processor = DepthMaskProcessor(
            width=self.settings.mask_width,
            height=self.settings.mask_height,
            percentile=self.settings.percentile,
            delta_meters=self.settings.delta_meters,
        )
        self._orientation = orientation_provider or unknown_orientation
        self._muxer_factory = muxer_factory
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.Lock()
        self._state = RecorderState.IDLE
        self._session: Session | None = None

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._state is RecorderState.RECORDING

    @property
    def session(self) -> Session | None:
        return self._session

    # ------------------------------------------------------------------ prepare
    def prepare_recording(
        self,
        camera_resolution: tuple[int | float, int | float],
        video_fps: int | None = None,
        depth_available: bool = True,
        *,
        calibration: CoordinateCalibration | None = None,
    ) -> Session:
        """Allocate a fresh session folder and start accepting callbacks."""

        with self._lock:
            if self._state is not RecorderState.IDLE:
                raise RecordingStateError(f"Recorder is {self._state.value}")
            self._state = RecorderState.PREPARING
        try:
            session = self._create_session(
                camera_resolution, video_fps, depth_available, calibration
            )
        except BaseException:
            with self._lock:
                self._state = RecorderState.IDLE
            raise
        with self._lock:
            self._session = session
            self._state = RecorderState.RECORDING
        logger.info("Prepared recording %s in %s", session.layout.name, self.output_root)
        return session

    def _create_session(
        self,
        camera_resolution: tuple[int | float, int | float],
        video_fps: int | None,
        depth_available: bool,
        calibration: CoordinateCalibration | None,
    ) -> Session:
        width, height = camera_resolution
        resolution = format_resolution(width, height)
        fps = int(video_fps) if video_fps else self.settings.video_fps
        if fps <= 0:
            raise ValueError("video_fps must be positive")
        try:
            self.output_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RecordingSetupError(f"Cannot create {self.output_root}: {exc}") from exc
        index = next_recording_index(self.output_root, self.mode)
        layout = SessionLayout.create(self.output_root, self.mode, index)

        mask_handle: IO[bytes] | None = None
        try:
            shutil.rmtree(layout.folder, ignore_errors=True)
            layout.raw_folder.mkdir(parents=True, exist_ok=True)
            layout.skeleton_folder.mkdir(parents=True, exist_ok=True)
            if self.mode.captures_depth:
                mask_handle = layout.depth_mask_path.open("wb")
        except OSError as exc:
            shutil.rmtree(layout.folder, ignore_errors=True)
            raise RecordingSetupError(
                f"Cannot create {DEPTH_MASK_FILE_NAME} for {layout.name}: {exc}"
            ) from exc

        metadata = SessionMetadata(
            device_model=device_model_identifier(),
            os_version=os_version(),
            camera_resolution=resolution,
            video_fps=fps,
            depth_mask_fps=self.settings.depth_mask_fps,
            depth_mask_encoding=self.mask_processor.encoding_name,
            orientation=normalise_orientation(self._orientation()),
            depth_sensor_available=bool(depth_available),
            depth_mask_parameters=self.mask_processor.parameters,
        )
        writer = FrameVideoWriter(
            layout.video_path,
            frame_rate=fps,
            bit_rate=self.settings.video_bit_rate,
            muxer_factory=self._muxer_factory,
            codec_preference=self.settings.video_codec,
        )
        executor = None
        if mask_handle is not None:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="depth-mask")
        return Session(
            layout=layout,
            metadata=metadata,
            calibration=calibration or IdentityCalibration(),
            video_writer=writer,
            mask_handle=mask_handle,
            mask_executor=executor,
            prepared_monotonic=self._clock(),
        )

    # ---------------------------------------------------------------- callbacks
    def process_frame(
        self,
        sample: FrameSample,
        timestamp: float,
        depth: np.ndarray | None = None,
    ) -> None:
        """Handle one colour frame and its optional aligned depth map."""

        with self._lock:
            session = self._session
            if self._state is not RecorderState.RECORDING or session is None:
                return
            if session.start_timestamp is None:
                session.start_timestamp = float(timestamp)
                session.first_frame_monotonic = self._clock()
            relative = max(0.0, float(timestamp) - session.start_timestamp)

            writer = session.video_writer
            if not writer.is_recording:
                try:
                    writer.start(sample)
                except VideoWriterError as exc:
                    logger.error("Video start failed for %s: %s", session.layout.name, exc)
                    return
            if writer.append(sample, relative):
                session.video_ledger.append(relative)
            else:
                logger.debug("Video writer not ready; dropped frame at %.3fs", relative)

            executor = session.mask_executor
            if executor is None:
                return
            if depth is None:
                return
            if relative - session.last_mask_timestamp < self.settings.depth_mask_interval:
                return
            depth_copy = np.array(depth, dtype=np.float32, copy=True)
            executor.submit(self._write_depth_mask, session, depth_copy, relative)

    def _write_depth_mask(self, session: Session, depth: np.ndarray, timestamp: float) -> None:
        # Frames queued before the previous mask landed are re-checked here.
        if timestamp - session.last_mask_timestamp < self.settings.depth_mask_interval:
            return
        try:
            mask = self.mask_processor.make_mask(depth)
        except ValueError as exc:
            logger.warning("Depth mask extraction failed at %.3fs: %s", timestamp, exc)
            return
        if mask is None:
            logger.debug("No valid depth samples at %.3fs; mask skipped", timestamp)
            return
        handle = session.mask_handle
        if handle is None:
            return
        try:
            handle.write(mask)
        except (OSError, ValueError) as exc:
            logger.error("depth_mask write failed: %s", exc)
            return
        session.last_mask_timestamp = timestamp
        session.depth_ledger.append(timestamp)

    def _pose_timestamp(self, session: Session, frame_timestamp: float | None) -> float:
        if frame_timestamp is not None and session.start_timestamp is not None:
            return max(0.0, float(frame_timestamp) - session.start_timestamp)
        reference = session.first_frame_monotonic
        if reference is None:
            reference = session.prepared_monotonic
        return max(0.0, self._clock() - reference)

    def process_bodies(
        self,
        bodies: Iterable[TrackedBody],
        frame_timestamp: float | None = None,
    ) -> int:
        """Record one pose frame per tracked body; returns the number recorded."""

        with self._lock:
            session = self._session
            if self._state is not RecorderState.RECORDING or session is None:
                return 0
            if not self.mode.captures_pose:
                return 0
            relative = self._pose_timestamp(session, frame_timestamp)
            recorded = 0
            for body in bodies:
                world = project_world_joints(body)
                if not world:
                    continue
                session.pose_frames.append(
                    PoseFrame(
                        frame_index=len(session.pose_frames),
                        timestamp=relative,
                        world_joints=world,
                        wall_joints=session.calibration.apply(world),
                    )
                )
                recorded += 1
            return recorded

    # ------------------------------------------------------------------- finish
    async def finish_recording(self) -> RecordingResult:
        """Finalise the active session and package it into archive(s)."""

        with self._lock:
            session = self._session
            if self._state is not RecorderState.RECORDING or session is None:
                raise RecordingStateError("No recording in progress")
            self._state = RecorderState.FINISHING
        try:
            return await self._finalise(session)
        finally:
            self._release_session(session)

    async def _finalise(self, session: Session) -> RecordingResult:
        await asyncio.to_thread(session.drain_mask_work)
        try:
            session.close_mask_handle()
        except OSError as exc:
            raise RecordingFinaliseError(f"Cannot close {DEPTH_MASK_FILE_NAME}: {exc}") from exc

        video_path = await session.video_writer.stop()
        if video_path is None:
            raise RecordingFinaliseError("Video writer failed before completion.")

        metadata = session.metadata.with_orientation(self._orientation())
        video_count = len(session.video_ledger)
        depth_count = len(session.depth_ledger)
        pose_count = len(session.pose_frames)
        archives = await asyncio.to_thread(self._export, session, metadata, video_path)
        return RecordingResult(
            name=session.layout.name,
            folder=session.layout.folder,
            archives=tuple(archives),
            metadata=metadata,
            video_frame_count=video_count,
            depth_mask_frame_count=depth_count,
            pose_frame_count=pose_count,
        )

    def _export(
        self, session: Session, metadata: SessionMetadata, video_path: Path
    ) -> list[Path]:
        layout = session.layout
        created_at = int(self._wall_clock())
        if layout.mode.captures_depth:
            write_json(
                layout.timestamps_path,
                build_timestamps_document(session.video_ledger, session.depth_ledger),
            )
            write_json(layout.metadata_path, metadata.to_dict())
        if layout.mode.captures_pose:
            video_name = video_path.relative_to(layout.folder).as_posix()
            write_json(
                layout.pose_path,
                build_pose_document(
                    session.pose_frames,
                    created_at_unix=created_at,
                    video_file_name=video_name,
                ),
            )
        if layout.mode is RecordingMode.COMBINED:
            return self._create_size_aware_archives(layout)
        prefix = layout.name if layout.mode is RecordingMode.RAW else None
        destination = layout.archive_path()
        create_archive(destination, all_files(layout.folder, prefix=prefix))
        return [destination]

    def _create_size_aware_archives(self, layout: SessionLayout) -> list[Path]:
        total_bytes = directory_size(layout.folder)
        budget = self.settings.max_single_archive_bytes
        if total_bytes <= budget:
            destination = layout.archive_path("_full")
            create_archive(destination, all_files(layout.folder, prefix=layout.name))
            return [destination]
        logger.info(
            "Recording %s is %d bytes (budget %d); splitting archives",
            layout.name,
            total_bytes,
            budget,
        )
        raw_zip = layout.archive_path("_raw")
        skeleton_zip = layout.archive_path("_skeleton")
        create_archive(raw_zip, all_files(layout.raw_folder, prefix=RAW_SUBDIR))
        create_archive(skeleton_zip, all_files(layout.skeleton_folder, prefix=SKELETON_SUBDIR))
        return [raw_zip, skeleton_zip]

    # ------------------------------------------------------------------ cleanup
    def _release_session(self, session: Session) -> None:
        try:
            session.drain_mask_work()
            try:
                session.close_mask_handle()
            except OSError as exc:  # pragma: no cover - already reported
                logger.warning("Closing depth mask file failed: %s", exc)
            session.video_writer.abort()
            session.release_buffers()
        finally:
            with self._lock:
                if self._session is session:
                    self._session = None
                self._state = RecorderState.IDLE

    def discard_recording(self) -> None:
        """Abandon the active session and delete its folder."""

        with self._lock:
            session = self._session
            if session is None or self._state is not RecorderState.RECORDING:
                return
            self._state = RecorderState.FINISHING
        self._release_session(session)
        shutil.rmtree(session.layout.folder, ignore_errors=True)
        logger.info("Discarded recording %s", session.layout.name)


__all__ = [
    "RecorderState",
    "RecordingMode",
    "RecordingResult",
    "Session",
    "SessionLayout",
    "SessionRecorder",
    "next_recording_index",
    "recording_name",
]
