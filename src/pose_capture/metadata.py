"""Session metadata records and JSON sidecar helpers."""

from __future__ import annotations

import json
import logging
import platform
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable

from .depth_mask import DepthMaskParameters


logger = logging.getLogger(__name__)

DEVICE_ORIENTATIONS: tuple[str, ...] = (
    "portrait",
    "portraitUpsideDown",
    "landscapeLeft",
    "landscapeRight",
    "faceUp",
    "faceDown",
    "unknown",
)

OrientationProvider = Callable[[], str]


def unknown_orientation() -> str:
    return "unknown"


def normalise_orientation(value: object) -> str:
    """Return ``value`` when it is a known orientation label, else ``unknown``."""

    if isinstance(value, str):
        label = value.strip()
        if label in DEVICE_ORIENTATIONS:
            return label
    return "unknown"


def device_model_identifier() -> str:
    """Return the hardware identifier of the capturing machine."""

    machine = platform.machine().strip()
    return machine or "unknown"


def os_version() -> str:
    release = platform.release().strip()
    return release or "unknown"


def format_resolution(width: int | float, height: int | float) -> str:
    width_i = int(width)
    height_i = int(height)
    if width_i <= 0 or height_i <= 0:
        raise ValueError("Resolution dimensions must be positive integers")
    return f"{width_i}x{height_i}"


@dataclass(frozen=True, slots=True)
class SessionMetadata:
    """Immutable description of the capturing device and session settings."""

    device_model: str
    os_version: str
    camera_resolution: str
    video_fps: int
    depth_mask_fps: int
    depth_mask_encoding: str
    orientation: str
    depth_sensor_available: bool
    depth_mask_parameters: DepthMaskParameters

    def with_orientation(self, orientation: str) -> "SessionMetadata":
        return replace(self, orientation=normalise_orientation(orientation))

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceModel": self.device_model,
            "osVersion": self.os_version,
            "cameraResolution": self.camera_resolution,
            "videoFPS": int(self.video_fps),
            "depthMaskFPS": int(self.depth_mask_fps),
            "depthMaskEncoding": self.depth_mask_encoding,
            "orientation": self.orientation,
            "depthSensorAvailable": bool(self.depth_sensor_available),
            "depthMaskParameters": self.depth_mask_parameters.to_dict(),
        }


def dump_json(payload: object) -> str:
    """Serialise ``payload`` deterministically (sorted keys, indented)."""

    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)


def write_json(path: Path, payload: object) -> None:
    path.write_text(dump_json(payload), encoding="utf-8")
    logger.debug("Wrote %s", path)


__all__ = [
    "DEVICE_ORIENTATIONS",
    "OrientationProvider",
    "SessionMetadata",
    "device_model_identifier",
    "dump_json",
    "format_resolution",
    "normalise_orientation",
    "os_version",
    "unknown_orientation",
    "write_json",
]
