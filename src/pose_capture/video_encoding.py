"""H.264 encoder discovery for the session video muxer."""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterator

import av


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class H264EncoderBackend:
    """Represents a concrete H.264 encoder implementation."""

    key: str
    codec: str
    label: str
    requires_even_dimensions: bool = True


_H264_ENCODER_BACKENDS: tuple[H264EncoderBackend, ...] = (
    H264EncoderBackend(
        key="videotoolbox",
        codec="h264_videotoolbox",
        label="VideoToolbox (Apple hardware)",
    ),
    H264EncoderBackend(
        key="libx264",
        codec="libx264",
        label="libx264 (software)",
    ),
    H264EncoderBackend(
        key="openh264",
        codec="libopenh264",
        label="OpenH264 (software)",
    ),
)

_H264_ENCODER_BY_KEY = {backend.key: backend for backend in _H264_ENCODER_BACKENDS}
_H264_ENCODER_ALIASES = {
    "auto": "auto",
    "default": "auto",
    "hardware": "videotoolbox",
    "h264_videotoolbox": "videotoolbox",
    "videotoolbox": "videotoolbox",
    "software": "libx264",
    "x264": "libx264",
    "libx264": "libx264",
    "openh264": "openh264",
    "libopenh264": "openh264",
}


def list_h264_backends() -> tuple[H264EncoderBackend, ...]:
    return _H264_ENCODER_BACKENDS


def normalise_encoder_choice(choice: str | None) -> str:
    """Normalise a configured encoder choice string."""

    if not choice:
        return "auto"
    key = choice.strip().lower()
    if not key:
        return "auto"
    return _H264_ENCODER_ALIASES.get(key, key)


def iter_candidate_backends(preference: str | None) -> Iterator[H264EncoderBackend]:
    """Yield backends in the order they should be tried for ``preference``."""

    normalised = normalise_encoder_choice(preference)
    preferred = _H264_ENCODER_BY_KEY.get(normalised)
    if preferred is None and normalised != "auto":
        logger.debug("Unknown H.264 encoder preference %r; using auto order", preference)
    if preferred is not None:
        yield preferred
    for backend in _H264_ENCODER_BACKENDS:
        if backend is not preferred:
            yield backend


def probe_backend(backend: H264EncoderBackend) -> bool:
    """Return ``True`` when FFmpeg exposes ``backend`` as an encoder."""

    try:
        codec = av.Codec(backend.codec, "w")
    except (av.FFmpegError, ValueError) as exc:
        logger.debug("Codec %s unavailable: %s", backend.codec, exc)
        return False
    return bool(getattr(codec, "is_encoder", True))


def available_backends(preference: str | None) -> list[H264EncoderBackend]:
    """Return the usable backends for ``preference`` in trial order."""

    return [backend for backend in iter_candidate_backends(preference) if probe_backend(backend)]


__all__ = [
    "H264EncoderBackend",
    "available_backends",
    "iter_candidate_backends",
    "list_h264_backends",
    "normalise_encoder_choice",
    "probe_backend",
]
