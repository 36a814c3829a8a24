"""Incremental MP4 writer for captured colour frames."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Callable, Protocol

import av
import numpy as np

from .errors import VideoWriterError
from .video_encoding import available_backends


logger = logging.getLogger(__name__)

VIDEO_TIMESCALE = 600
"""Presentation timestamps are expressed in 1/600 s ticks."""

VIDEO_TIME_BASE = Fraction(1, VIDEO_TIMESCALE)

_PLANAR_FORMATS = frozenset({"nv12", "yuv420p"})
_SUPPORTED_FORMATS = frozenset({"rgb24", "bgr24", "rgba", "bgra", "gray"}) | _PLANAR_FORMATS


@dataclass(frozen=True, slots=True)
class FrameSample:
    """Raw pixel buffer handed over by the capture subsystem.

    Packed formats use ``(height, width[, channels])`` arrays. Planar 4:2:0
    formats (``nv12``, ``yuv420p``) use a single ``(height * 3 // 2, width)``
    array as produced by most camera stacks.
    """

    pixels: np.ndarray
    pixel_format: str = "rgb24"

    def __post_init__(self) -> None:
        fmt = str(self.pixel_format).strip().lower()
        if fmt not in _SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported pixel format: {self.pixel_format}")
        array = np.asarray(self.pixels)
        if array.ndim not in (2, 3) or array.shape[0] == 0 or array.shape[1] == 0:
            raise ValueError("Frame pixels must be a non-empty 2D or 3D array")
        object.__setattr__(self, "pixel_format", fmt)
        object.__setattr__(self, "pixels", array)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        rows = int(self.pixels.shape[0])
        if self.pixel_format in _PLANAR_FORMATS:
            return rows * 2 // 3
        return rows


class MuxerSink(Protocol):
    """Destination accepting frames at integer presentation timestamps."""

    path: Path

    @property
    def ready(self) -> bool:
        ...

    def append(self, sample: FrameSample, pts: int) -> bool:
        ...

    def finish(self) -> bool:
        ...

    def abort(self) -> None:
        ...


MuxerFactory = Callable[[FrameSample, Path, int, int], MuxerSink]


def _normalise_pixel_format(value: object) -> str | None:
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if isinstance(value, str):
        return value.strip().lower() or None
    return None


def _select_stream_pixel_format(stream: object, requested: str | None) -> str:
    """Choose a pixel format supported by ``stream``, preferring ``requested``."""

    requested_format = _normalise_pixel_format(requested) or "yuv420p"
    codec_context = getattr(stream, "codec_context", None)
    pix_fmts = getattr(codec_context, "pix_fmts", None) if codec_context is not None else None
    available: tuple[str, ...] = ()
    if isinstance(pix_fmts, (list, tuple)):
        available = tuple(
            fmt for fmt in (_normalise_pixel_format(item) for item in pix_fmts) if fmt
        )
    if not available:
        return requested_format
    for candidate in (requested_format, "yuv420p", "nv12"):
        if candidate in available:
            return candidate
    return available[0]


def _prepare_frame_for_encoding(sample: FrameSample) -> np.ndarray:
    """Return a contiguous ``uint8`` array matching ``sample.pixel_format``."""

    array = sample.pixels
    if sample.pixel_format in ("rgb24", "bgr24", "rgba", "bgra"):
        channels = 4 if sample.pixel_format in ("rgba", "bgra") else 3
        if array.ndim == 2:
            array = np.repeat(array[:, :, np.newaxis], channels, axis=2)
        elif array.shape[2] == 1:
            array = np.repeat(array, channels, axis=2)
        elif array.shape[2] > channels:
            array = array[:, :, :channels]
    elif array.ndim == 3:
        array = array[:, :, 0]
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    if not array.flags["C_CONTIGUOUS"]:
        array = np.ascontiguousarray(array)
    return array


def _apply_stream_timing(stream: object, frame_rate: Fraction, time_base: Fraction) -> None:
    """Synchronise stream and codec timing with the writer's tick scale."""

    for attribute, value in (("time_base", time_base), ("rate", frame_rate)):
        try:
            setattr(stream, attribute, value)
        except (AttributeError, TypeError, ValueError):  # pragma: no cover - PyAV variations
            pass
    codec_context = getattr(stream, "codec_context", None)
    if codec_context is None:
        return
    for attribute, value in (("time_base", time_base), ("framerate", frame_rate)):
        try:
            setattr(codec_context, attribute, value)
        except (AttributeError, TypeError, ValueError):  # pragma: no cover - PyAV variations
            pass


@dataclass
class PyAVMuxer:
    """FFmpeg-backed MP4 sink that receives frames incrementally."""

    path: Path
    container: av.container.OutputContainer
    stream: av.video.stream.VideoStream
    codec: str
    target_width: int
    target_height: int
    pixel_format: str
    time_base: Fraction = VIDEO_TIME_BASE
    frame_count: int = 0
    _finished: bool = field(init=False, default=False, repr=False)
    _failed: bool = field(init=False, default=False, repr=False)

    @property
    def ready(self) -> bool:
        return not (self._finished or self._failed)

    def _mux(self, packets) -> None:
        for packet in packets:
            self.container.mux(packet)

    def append(self, sample: FrameSample, pts: int) -> bool:
        if not self.ready:
            return False
        try:
            frame = av.VideoFrame.from_ndarray(
                _prepare_frame_for_encoding(sample), format=sample.pixel_format
            )
            frame = frame.reformat(
                width=self.target_width,
                height=self.target_height,
                format=self.pixel_format,
            )
            frame.pts = int(pts)
            frame.time_base = self.time_base
            self._mux(self.stream.encode(frame))
        except (av.FFmpegError, ValueError) as exc:
            logger.warning("Dropping frame for %s: %s", self.path.name, exc)
            return False
        self.frame_count += 1
        return True

    def finish(self) -> bool:
        """Flush and close the container; ``True`` when a playable file exists."""

        if self._finished:
            return False
        self._finished = True
        try:
            self._mux(self.stream.encode())
            self.container.close()
        except av.FFmpegError as exc:
            self._failed = True
            logger.error("Failed to finalise %s: %s", self.path, exc)
            try:
                self.container.close()
            except av.FFmpegError:  # pragma: no cover - already failing
                pass
            return False
        if self.frame_count == 0:
            return False
        try:
            size = self.path.stat().st_size
        except OSError:
            return False
        return size > 0

    def abort(self) -> None:
        """Close the container and remove the partially written file."""

        self._finished = True
        try:
            self.container.close()
        except av.FFmpegError:  # pragma: no cover - best-effort cleanup
            pass
        try:
            self.path.unlink(missing_ok=True)
        except OSError:  # pragma: no cover - best-effort cleanup
            pass
        self.frame_count = 0


def open_muxer(
    first_sample: FrameSample,
    output_path: Path,
    frame_rate: int,
    bit_rate: int,
    *,
    codec_preference: str | None = None,
) -> PyAVMuxer:
    """Open an MP4 container sized for ``first_sample``.

    Encoders are tried in preference order; :class:`VideoWriterError` is
    raised when none can be initialised.
    """

    frame_rate_fraction = Fraction(max(1, int(frame_rate)), 1)
    attempted: list[str] = []
    last_error: Exception | None = None
    for backend in available_backends(codec_preference):
        attempted.append(backend.codec)
        width, height = first_sample.width, first_sample.height
        if backend.requires_even_dimensions:
            width -= width % 2
            height -= height % 2
        if width <= 0 or height <= 0:
            last_error = ValueError("invalid frame dimensions for video encoder")
            continue
        output_path.unlink(missing_ok=True)
        try:
            container = av.open(
                str(output_path),
                mode="w",
                format="mp4",
                options={"movflags": "+faststart"},
            )
        except (av.FFmpegError, OSError) as exc:
            raise VideoWriterError(f"Cannot open video file {output_path}: {exc}") from exc
        try:
            stream = container.add_stream(backend.codec, rate=frame_rate_fraction)
            stream.width = width
            stream.height = height
            pixel_format = _select_stream_pixel_format(stream, "yuv420p")
            stream.pix_fmt = pixel_format
            stream.bit_rate = int(bit_rate)
            _apply_stream_timing(stream, frame_rate_fraction, VIDEO_TIME_BASE)
        except (av.FFmpegError, ValueError) as exc:
            last_error = exc
            logger.debug("Encoder %s rejected: %s", backend.codec, exc)
            container.close()
            output_path.unlink(missing_ok=True)
            continue
        logger.info(
            "Video writer opened %s (%s, %dx%d @ %d fps)",
            output_path.name,
            backend.label,
            width,
            height,
            frame_rate_fraction.numerator,
        )
        return PyAVMuxer(
            path=output_path,
            container=container,
            stream=stream,
            codec=backend.codec,
            target_width=width,
            target_height=height,
            pixel_format=pixel_format,
        )
    detail = str(last_error) if last_error is not None else "no H.264 encoder available"
    suffix = f" (attempted codecs: {', '.join(attempted)})" if attempted else ""
    raise VideoWriterError(f"{detail}{suffix}")


class FrameVideoWriter:
    """Wrap a muxer sink with monotonic timestamps and a lazy session start.

    Timestamps are quantised to :data:`VIDEO_TIMESCALE`. A timestamp that does
    not advance past the last accepted one is nudged forward by a single tick.
    The first accepted frame opens the session, so presentation times in the
    file start at zero.
    """

    def __init__(
        self,
        output_path: Path,
        *,
        frame_rate: int = 30,
        bit_rate: int = 12_000_000,
        muxer_factory: MuxerFactory | None = None,
        codec_preference: str | None = None,
    ) -> None:
        if frame_rate <= 0:
            raise ValueError("frame_rate must be positive")
        self.output_path = Path(output_path)
        self.frame_rate = int(frame_rate)
        self.bit_rate = int(bit_rate)
        self._codec_preference = codec_preference
        self._muxer_factory = muxer_factory
        self._sink: MuxerSink | None = None
        self._session_start_ticks: int | None = None
        self._last_ticks: int | None = None
        self.frames_written = 0

    @property
    def is_recording(self) -> bool:
        return self._sink is not None

    @property
    def session_started(self) -> bool:
        return self._session_start_ticks is not None

    @property
    def last_timestamp(self) -> float | None:
        """Last accepted timestamp in seconds, after correction."""

        if self._last_ticks is None:
            return None
        return float(Fraction(self._last_ticks, VIDEO_TIMESCALE))

    def start(self, first_sample: FrameSample) -> None:
        if self._sink is not None:
            raise VideoWriterError("Video writer already started")
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        if self._muxer_factory is not None:
            sink = self._muxer_factory(
                first_sample, self.output_path, self.frame_rate, self.bit_rate
            )
        else:
            sink = open_muxer(
                first_sample,
                self.output_path,
                self.frame_rate,
                self.bit_rate,
                codec_preference=self._codec_preference,
            )
        self._sink = sink
        self._session_start_ticks = None
        self._last_ticks = None
        self.frames_written = 0
        logger.info(
            "Frame recorder started: %s %dx%d",
            self.output_path.name,
            first_sample.width,
            first_sample.height,
        )

    @staticmethod
    def _to_ticks(timestamp: float) -> int:
        return int(round(float(timestamp) * VIDEO_TIMESCALE))

    def append(self, sample: FrameSample, timestamp: float) -> bool:
        """Append ``sample``; ``False`` means the frame was dropped."""

        sink = self._sink
        if sink is None or not sink.ready:
            return False
        ticks = self._to_ticks(timestamp)
        if self._last_ticks is not None and ticks <= self._last_ticks:
            ticks = self._last_ticks + 1
        start = self._session_start_ticks if self._session_start_ticks is not None else ticks
        if not sink.append(sample, ticks - start):
            return False
        if self._session_start_ticks is None:
            self._session_start_ticks = ticks
        self._last_ticks = ticks
        self.frames_written += 1
        return True

    def _release(self) -> None:
        self._sink = None
        self._session_start_ticks = None
        self._last_ticks = None

    async def stop(
        self, completion: Callable[[Path | None], None] | None = None
    ) -> Path | None:
        """Finalise the file; returns its path only when finalisation succeeded."""

        sink = self._sink
        self._release()
        result: Path | None = None
        if sink is not None:
            try:
                finished = await asyncio.to_thread(sink.finish)
            except Exception:
                logger.exception("Video writer finalisation raised for %s", self.output_path)
                finished = False
            if finished:
                result = Path(sink.path)
        logger.info(
            "Frame recorder stopped: %s", result.name if result is not None else "nil"
        )
        if completion is not None:
            completion(result)
        return result

    def abort(self) -> None:
        sink = self._sink
        self._release()
        if sink is not None:
            sink.abort()


__all__ = [
    "FrameSample",
    "FrameVideoWriter",
    "MuxerFactory",
    "MuxerSink",
    "PyAVMuxer",
    "VIDEO_TIMESCALE",
    "open_muxer",
]
