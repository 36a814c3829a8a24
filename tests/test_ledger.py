"""Tests for frame timestamp ledgers."""

from __future__ import annotations

import math

import pytest

from pose_capture.ledger import FrameTimestampLedger, build_timestamps_document


def test_indices_run_from_zero_for_each_stream() -> None:
    video = FrameTimestampLedger("video")
    depth = FrameTimestampLedger("depth_mask")
    for step in range(5):
        video.append(step / 30)
    for step in range(2):
        depth.append(step / 10)

    assert [entry.index for entry in video] == [0, 1, 2, 3, 4]
    assert [entry.index for entry in depth] == [0, 1]


def test_monotonic_ledger_clamps_regressions() -> None:
    ledger = FrameTimestampLedger("video", enforce_monotonic=True)
    ledger.append(0.5)
    entry = ledger.append(0.25)
    assert entry.timestamp == 0.5
    assert entry.index == 1


def test_advisory_ledger_keeps_raw_values() -> None:
    ledger = FrameTimestampLedger("depth_mask")
    ledger.append(0.5)
    assert ledger.append(0.25).timestamp == 0.25


def test_non_finite_timestamps_are_rejected() -> None:
    ledger = FrameTimestampLedger("video")
    with pytest.raises(ValueError):
        ledger.append(math.nan)
    assert len(ledger) == 0


def test_timestamps_document_shape() -> None:
    video = FrameTimestampLedger("video")
    depth = FrameTimestampLedger("depth_mask")
    video.append(0.0)
    video.append(0.033)
    depth.append(0.0)

    document = build_timestamps_document(video, depth)

    assert document == {
        "videoFrames": [
            {"index": 0, "timestamp": 0.0},
            {"index": 1, "timestamp": 0.033},
        ],
        "depthMaskFrames": [{"index": 0, "timestamp": 0.0}],
    }


def test_clear_resets_indices() -> None:
    ledger = FrameTimestampLedger("video")
    ledger.append(1.0)
    ledger.clear()
    assert ledger.last is None
    assert ledger.append(2.0).index == 0
