"""Tests for H.264 encoder discovery."""

from __future__ import annotations

from pose_capture import video_encoding


def test_normalise_encoder_choice_handles_aliases() -> None:
    assert video_encoding.normalise_encoder_choice(None) == "auto"
    assert video_encoding.normalise_encoder_choice("  ") == "auto"
    assert video_encoding.normalise_encoder_choice("Hardware") == "videotoolbox"
    assert video_encoding.normalise_encoder_choice("x264") == "libx264"


def test_preferred_backend_is_tried_first() -> None:
    order = [backend.key for backend in video_encoding.iter_candidate_backends("software")]
    assert order[0] == "libx264"
    assert sorted(order) == sorted(b.key for b in video_encoding.list_h264_backends())


def test_unknown_preference_uses_default_order() -> None:
    order = list(video_encoding.iter_candidate_backends("mystery"))
    assert order == list(video_encoding.list_h264_backends())


def test_available_backends_filters_unprobeable(monkeypatch) -> None:
    monkeypatch.setattr(
        video_encoding, "probe_backend", lambda backend: backend.key == "openh264"
    )
    available = video_encoding.available_backends("auto")
    assert [backend.codec for backend in available] == ["libopenh264"]


def test_probe_backend_rejects_unknown_codec() -> None:
    backend = video_encoding.H264EncoderBackend(
        key="missing", codec="definitely_not_a_codec", label="Missing"
    )
    assert video_encoding.probe_backend(backend) is False
