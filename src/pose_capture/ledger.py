"""Per-stream frame timestamp ledgers."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterator


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FrameTimestamp:
    """A single ``(index, timestamp)`` pair relative to the session start."""

    index: int
    timestamp: float

    def to_dict(self) -> dict[str, float | int]:
        return {"index": int(self.index), "timestamp": float(self.timestamp)}


class FrameTimestampLedger:
    """Ordered list of frame timestamps for one stream.

    Indices are assigned by the ledger and always run ``0..N-1``. When
    ``enforce_monotonic`` is set, a timestamp earlier than the previous entry
    is clamped to the previous value so the recorded series never decreases.
    """

    def __init__(self, name: str, *, enforce_monotonic: bool = False) -> None:
        self.name = name
        self.enforce_monotonic = enforce_monotonic
        self._entries: list[FrameTimestamp] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FrameTimestamp]:
        return iter(list(self._entries))

    @property
    def last(self) -> FrameTimestamp | None:
        return self._entries[-1] if self._entries else None

    def append(self, timestamp: float) -> FrameTimestamp:
        value = float(timestamp)
        if not math.isfinite(value):
            raise ValueError("Frame timestamps must be finite")
        previous = self.last
        if self.enforce_monotonic and previous is not None and value < previous.timestamp:
            logger.debug(
                "Clamping %s timestamp %.6f to previous %.6f",
                self.name,
                value,
                previous.timestamp,
            )
            value = previous.timestamp
        entry = FrameTimestamp(index=len(self._entries), timestamp=value)
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def to_list(self) -> list[dict[str, float | int]]:
        return [entry.to_dict() for entry in self._entries]


def build_timestamps_document(
    video: FrameTimestampLedger, depth_mask: FrameTimestampLedger
) -> dict[str, object]:
    """Return the ``timestamps.json`` payload for the two raw streams."""

    return {
        "videoFrames": video.to_list(),
        "depthMaskFrames": depth_mask.to_list(),
    }


__all__ = ["FrameTimestamp", "FrameTimestampLedger", "build_timestamps_document"]
