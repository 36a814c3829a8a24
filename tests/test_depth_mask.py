"""Tests for foreground depth mask extraction."""

from __future__ import annotations

import numpy as np
import pytest

from pose_capture.depth_mask import DEPTH_MASK_ENCODING, DepthMaskProcessor


def _as_grid(mask: bytes, processor: DepthMaskProcessor) -> np.ndarray:
    return np.frombuffer(mask, dtype=np.uint8).reshape(processor.height, processor.width)


def test_mask_length_matches_target_resolution_for_any_input() -> None:
    processor = DepthMaskProcessor()
    rng = np.random.default_rng(7)
    for shape in [(192, 256), (120, 160), (7, 3), (480, 640)]:
        depth = rng.uniform(0.2, 6.0, size=shape).astype(np.float32)
        mask = processor.make_mask(depth)
        assert mask is not None
        assert len(mask) == processor.width * processor.height == processor.frame_size


def test_mask_is_idempotent_for_identical_frames() -> None:
    rng = np.random.default_rng(11)
    depth = rng.uniform(0.5, 4.0, size=(96, 128)).astype(np.float32)
    depth[10:20, 30:40] = np.nan
    first = DepthMaskProcessor().make_mask(depth)
    second = DepthMaskProcessor().make_mask(depth.copy())
    assert first == second


def test_mask_returns_none_without_valid_depth() -> None:
    processor = DepthMaskProcessor(width=8, height=6)
    depth = np.zeros((12, 16), dtype=np.float32)
    depth[0, 0] = np.nan
    depth[1, 1] = np.inf
    depth[2, 2] = -1.0
    assert processor.make_mask(depth) is None


def test_near_half_is_foreground_and_far_half_background() -> None:
    processor = DepthMaskProcessor(percentile=0.15, delta_meters=0.3)
    depth = np.array([[1.0, 1.0], [5.0, 5.0]], dtype=np.float32)

    mask = processor.make_mask(depth)

    assert mask is not None
    grid = _as_grid(mask, processor)
    assert np.all(grid[processor.height // 2 :, :] == 0)
    assert grid[30, 80] == 255
    assert np.all(grid[1:59, 1:159] > 0)


def test_downsample_uses_nearest_neighbour_indices() -> None:
    processor = DepthMaskProcessor(width=2, height=2)
    source = np.arange(16, dtype=np.float32).reshape(4, 4)
    result = processor.downsample(source)
    assert result.tolist() == [[0.0, 2.0], [8.0, 10.0]]


def test_foreground_depth_is_stretched_nearer_brighter() -> None:
    processor = DepthMaskProcessor(width=8, height=8)
    depth = np.full((8, 8), 5.0, dtype=np.float32)
    depth[2:4, 2:6] = 1.0
    depth[4:6, 2:6] = 1.2

    mask = processor.make_mask(depth)

    assert mask is not None
    grid = _as_grid(mask, processor)
    assert grid[2, 2] == 255
    assert grid[5, 5] == 1
    assert grid[0, 0] == 0
    assert grid[7, 7] == 0
    assert np.count_nonzero(grid) == 16


def test_closing_removes_foreground_touching_the_border() -> None:
    processor = DepthMaskProcessor(width=2, height=2)
    depth = np.array([[1.0, 1.0], [1.0, 1.0]], dtype=np.float32)
    mask = processor.make_mask(depth)
    assert mask == bytes(4)


def test_closing_fills_single_pixel_gap() -> None:
    processor = DepthMaskProcessor(width=9, height=9)
    depth = np.full((9, 9), 5.0, dtype=np.float32)
    depth[2:7, 2:7] = 1.0
    depth[4, 4] = 5.0

    grid = _as_grid(processor.make_mask(depth), processor)

    assert grid[4, 4] > 0


def test_parameters_describe_configuration() -> None:
    processor = DepthMaskProcessor(width=80, height=60, percentile=0.2, delta_meters=0.5)
    assert processor.encoding_name == DEPTH_MASK_ENCODING
    assert processor.parameters.to_dict() == {
        "percentile": 0.2,
        "deltaMeters": 0.5,
        "width": 80,
        "height": 60,
    }


@pytest.mark.parametrize(
    "kwargs",
    [{"width": 0}, {"height": -1}, {"percentile": 1.5}, {"delta_meters": 0.0}],
)
def test_invalid_parameters_are_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        DepthMaskProcessor(**kwargs)


def test_non_2d_depth_is_rejected() -> None:
    with pytest.raises(ValueError):
        DepthMaskProcessor().make_mask(np.zeros((2, 2, 2), dtype=np.float32))
