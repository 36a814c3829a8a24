"""Tests for recorder configuration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pose_capture.config import (
    DEFAULT_RECORDER_SETTINGS,
    RecorderSettings,
    load_settings,
    save_settings,
)


def test_defaults_match_capture_profile() -> None:
    settings = RecorderSettings()
    assert settings.depth_mask_fps == 10
    assert (settings.mask_width, settings.mask_height) == (160, 120)
    assert settings.percentile == pytest.approx(0.15)
    assert settings.delta_meters == pytest.approx(0.3)
    assert settings.max_single_archive_bytes == 130 * 1024 * 1024
    assert settings.depth_mask_interval == pytest.approx(0.1)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"depth_mask_fps": 0},
        {"mask_width": 0},
        {"percentile": -0.1},
        {"delta_meters": 0},
        {"video_fps": 0},
        {"video_bit_rate": -5},
        {"max_single_archive_bytes": 0},
        {"depth_mask_fps": "fast"},
    ],
)
def test_invalid_settings_raise(kwargs) -> None:
    with pytest.raises(ValueError):
        RecorderSettings(**kwargs)


def test_codec_preference_is_normalised() -> None:
    assert RecorderSettings(video_codec="  LIBX264 ").video_codec == "libx264"
    assert RecorderSettings(video_codec="").video_codec == "auto"


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    assert load_settings(tmp_path / "absent.json") == DEFAULT_RECORDER_SETTINGS


def test_settings_round_trip_through_disk(tmp_path: Path) -> None:
    path = tmp_path / "config" / "recorder.json"
    settings = RecorderSettings(depth_mask_fps=5, max_single_archive_bytes=1024)

    save_settings(path, settings)

    assert load_settings(path) == settings


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "recorder.json"
    path.write_text(json.dumps({"video_fps": 60, "theme": "dark"}), encoding="utf-8")
    assert load_settings(path).video_fps == 60


def test_non_object_payload_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "recorder.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)
