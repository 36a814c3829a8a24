"""Configuration for session recording."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

DEFAULT_DEPTH_MASK_FPS = 10
DEFAULT_MASK_WIDTH = 160
DEFAULT_MASK_HEIGHT = 120
DEFAULT_MASK_PERCENTILE = 0.15
DEFAULT_MASK_DELTA_METERS = 0.3
DEFAULT_VIDEO_FPS = 30
DEFAULT_VIDEO_BIT_RATE = 12_000_000
DEFAULT_MAX_SINGLE_ARCHIVE_BYTES = 130 * 1024 * 1024
DEFAULT_VIDEO_CODEC = "auto"


@dataclass(frozen=True, slots=True)
class RecorderSettings:
    """Tunable values applied to every session a recorder prepares."""

    depth_mask_fps: int = DEFAULT_DEPTH_MASK_FPS
    mask_width: int = DEFAULT_MASK_WIDTH
    mask_height: int = DEFAULT_MASK_HEIGHT
    percentile: float = DEFAULT_MASK_PERCENTILE
    delta_meters: float = DEFAULT_MASK_DELTA_METERS
    video_fps: int = DEFAULT_VIDEO_FPS
    video_bit_rate: int = DEFAULT_VIDEO_BIT_RATE
    max_single_archive_bytes: int = DEFAULT_MAX_SINGLE_ARCHIVE_BYTES
    video_codec: str = DEFAULT_VIDEO_CODEC

    def __post_init__(self) -> None:
        try:
            depth_fps = int(self.depth_mask_fps)
            width = int(self.mask_width)
            height = int(self.mask_height)
            percentile = float(self.percentile)
            delta = float(self.delta_meters)
            video_fps = int(self.video_fps)
            bit_rate = int(self.video_bit_rate)
            budget = int(self.max_single_archive_bytes)
        except (TypeError, ValueError) as exc:
            raise ValueError("Recorder settings must be numeric") from exc
        if depth_fps < 1 or depth_fps > 60:
            raise ValueError("Depth mask fps must be between 1 and 60")
        if width <= 0 or height <= 0:
            raise ValueError("Depth mask dimensions must be positive integers")
        if not math.isfinite(percentile) or not (0.0 <= percentile <= 1.0):
            raise ValueError("Depth mask percentile must be between 0 and 1")
        if not math.isfinite(delta) or delta <= 0:
            raise ValueError("Depth mask delta must be a positive distance in meters")
        if video_fps < 1 or video_fps > 240:
            raise ValueError("Video fps must be between 1 and 240")
        if bit_rate <= 0:
            raise ValueError("Video bit rate must be positive")
        if budget <= 0:
            raise ValueError("Archive size budget must be positive")
        codec = self.video_codec.strip().lower() if isinstance(self.video_codec, str) else ""
        object.__setattr__(self, "depth_mask_fps", depth_fps)
        object.__setattr__(self, "mask_width", width)
        object.__setattr__(self, "mask_height", height)
        object.__setattr__(self, "percentile", percentile)
        object.__setattr__(self, "delta_meters", delta)
        object.__setattr__(self, "video_fps", video_fps)
        object.__setattr__(self, "video_bit_rate", bit_rate)
        object.__setattr__(self, "max_single_archive_bytes", budget)
        object.__setattr__(self, "video_codec", codec or DEFAULT_VIDEO_CODEC)

    @property
    def depth_mask_interval(self) -> float:
        """Minimum spacing in seconds between two extracted depth masks."""

        return 1.0 / float(self.depth_mask_fps)

    def to_dict(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self)}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "RecorderSettings":
        """Build settings from ``payload`` ignoring unknown keys."""

        known = {item.name for item in fields(cls)}
        values = {key: value for key, value in payload.items() if key in known}
        return cls(**values)


DEFAULT_RECORDER_SETTINGS = RecorderSettings()


def load_settings(path: Path | str) -> RecorderSettings:
    """Load settings from ``path``, falling back to defaults when absent."""

    config_path = Path(path)
    if not config_path.exists():
        return DEFAULT_RECORDER_SETTINGS
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Configuration file must contain a JSON object")
    return RecorderSettings.from_mapping(payload)


def save_settings(path: Path | str, settings: RecorderSettings) -> None:
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        json.dumps(settings.to_dict(), indent=2, sort_keys=True), encoding="utf-8"
    )


__all__ = [
    "DEFAULT_RECORDER_SETTINGS",
    "RecorderSettings",
    "load_settings",
    "save_settings",
]
