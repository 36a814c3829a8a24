"""Foreground depth mask extraction for dense depth frames."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np


logger = logging.getLogger(__name__)

DEPTH_MASK_ENCODING = "grayscale8_relative_depth"
_MIN_DEPTH_RANGE = 1e-4


@dataclass(frozen=True, slots=True)
class DepthMaskParameters:
    """Algorithm parameters recorded alongside the mask stream."""

    percentile: float
    delta_meters: float
    width: int
    height: int

    def to_dict(self) -> dict[str, float | int]:
        return {
            "percentile": float(self.percentile),
            "deltaMeters": float(self.delta_meters),
            "width": int(self.width),
            "height": int(self.height),
        }


class DepthMaskProcessor:
    """Convert depth frames into fixed-size 8-bit relative depth masks.

    Pixels nearer than ``percentile`` depth plus ``delta_meters`` are treated
    as foreground. After a 3x3 closing pass the foreground depths are stretched
    into ``1..255`` (nearer is brighter) and background pixels are ``0``.
    """

    encoding_name = DEPTH_MASK_ENCODING

    def __init__(
        self,
        width: int = 160,
        height: int = 120,
        percentile: float = 0.15,
        delta_meters: float = 0.3,
    ) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Mask dimensions must be positive")
        if not (0.0 <= percentile <= 1.0):
            raise ValueError("Percentile must be between 0 and 1")
        if not math.isfinite(delta_meters) or delta_meters <= 0:
            raise ValueError("Delta must be a positive distance")
        self.width = int(width)
        self.height = int(height)
        self.percentile = float(percentile)
        self.delta_meters = float(delta_meters)

    @property
    def frame_size(self) -> int:
        """Number of bytes produced for every mask frame."""

        return self.width * self.height

    @property
    def parameters(self) -> DepthMaskParameters:
        return DepthMaskParameters(
            percentile=self.percentile,
            delta_meters=self.delta_meters,
            width=self.width,
            height=self.height,
        )

    def downsample(self, depth: np.ndarray) -> np.ndarray:
        """Nearest-neighbour resample ``depth`` to the mask resolution."""

        source = np.asarray(depth, dtype=np.float32)
        if source.ndim == 3 and source.shape[2] == 1:
            source = source[:, :, 0]
        if source.ndim != 2 or source.shape[0] == 0 or source.shape[1] == 0:
            raise ValueError("Depth frames must be non-empty 2D arrays")
        src_height, src_width = source.shape
        rows = np.minimum(src_height - 1, np.arange(self.height) * src_height // self.height)
        cols = np.minimum(src_width - 1, np.arange(self.width) * src_width // self.width)
        return source[np.ix_(rows, cols)]

    def make_mask(self, depth: np.ndarray) -> bytes | None:
        """Return the encoded mask, or ``None`` when no depth sample is usable."""

        grid = self.downsample(depth)
        with np.errstate(invalid="ignore"):
            valid = np.isfinite(grid) & (grid > 0)
        samples = np.sort(grid[valid])
        if samples.size == 0:
            return None

        rank = int((samples.size - 1) * self.percentile)
        rank = max(0, min(samples.size - 1, rank))
        threshold = float(samples[rank]) + self.delta_meters

        with np.errstate(invalid="ignore"):
            foreground = valid & (grid < threshold)
        foreground = _erode(_dilate(foreground)) & valid

        mask = np.zeros(grid.shape, dtype=np.uint8)
        if not foreground.any():
            return mask.tobytes()

        depths = grid[foreground].astype(np.float64)
        fg_min = float(depths.min())
        fg_max = float(depths.max())
        depth_range = max(_MIN_DEPTH_RANGE, fg_max - fg_min)
        normalised = np.clip((depths - fg_min) / depth_range, 0.0, 1.0)
        gray = np.rint((1.0 - normalised) * 254.0) + 1.0
        mask[foreground] = np.clip(gray, 1, 255).astype(np.uint8)
        return mask.tobytes()


def _shifted_windows(padded: np.ndarray, height: int, width: int):
    for dy in range(3):
        for dx in range(3):
            yield padded[dy : dy + height, dx : dx + width]


def _dilate(mask: np.ndarray) -> np.ndarray:
    height, width = mask.shape
    padded = np.pad(mask, 1, mode="constant", constant_values=False)
    result = np.zeros_like(mask)
    for window in _shifted_windows(padded, height, width):
        result |= window
    return result


def _erode(mask: np.ndarray) -> np.ndarray:
    # Zero padding: pixels touching the border never survive erosion.
    height, width = mask.shape
    padded = np.pad(mask, 1, mode="constant", constant_values=False)
    result = np.ones_like(mask)
    for window in _shifted_windows(padded, height, width):
        result &= window
    return result


__all__ = [
    "DEPTH_MASK_ENCODING",
    "DepthMaskParameters",
    "DepthMaskProcessor",
]
