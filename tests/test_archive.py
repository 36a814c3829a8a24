"""Tests for the store-only archive writer."""

from __future__ import annotations

import struct
import zipfile
import zlib
from pathlib import Path

import numpy as np
import pytest

from pose_capture.archive import (
    ArchiveEntry,
    Crc32,
    all_files,
    crc32,
    create_archive,
    directory_size,
)
from pose_capture.errors import ArchiveError


def test_crc32_matches_reference_values() -> None:
    assert crc32(b"") == 0
    assert crc32(b"123456789") == 0xCBF43926
    payload = bytes(range(256)) * 5
    assert crc32(payload) == zlib.crc32(payload)


def test_crc32_is_incremental() -> None:
    digest = Crc32()
    digest.update(b"hello ").update(b"world")
    assert digest.value == zlib.crc32(b"hello world")


def test_crc32_of_large_buffers_matches_zlib() -> None:
    rng = np.random.default_rng(7)
    payload = rng.integers(0, 256, size=4096 * 16 + 37, dtype=np.uint8).tobytes()

    assert crc32(payload) == zlib.crc32(payload)
    assert crc32(bytes(4096 * 64)) == zlib.crc32(bytes(4096 * 64))


def test_crc32_mixes_large_and_small_updates() -> None:
    rng = np.random.default_rng(11)
    payload = rng.integers(0, 256, size=300_000, dtype=np.uint8).tobytes()
    digest = Crc32()
    for start, stop in ((0, 5), (5, 70_005), (70_005, 70_100), (70_100, 300_000)):
        digest.update(memoryview(payload)[start:stop])

    assert digest.value == zlib.crc32(payload)


def test_single_entry_round_trips_through_zipfile(tmp_path: Path) -> None:
    destination = tmp_path / "out.zip"

    create_archive(destination, [ArchiveEntry.from_bytes("a.txt", b"hello")])

    with zipfile.ZipFile(destination) as archive:
        assert archive.namelist() == ["a.txt"]
        info = archive.getinfo("a.txt")
        assert info.compress_type == zipfile.ZIP_STORED
        assert info.CRC == zlib.crc32(b"hello")
        assert archive.read("a.txt") == b"hello"
        assert archive.testzip() is None


def test_layout_matches_fixed_header_sizes(tmp_path: Path) -> None:
    destination = tmp_path / "layout.zip"
    create_archive(destination, [ArchiveEntry.from_bytes("a.txt", b"hello")])
    data = destination.read_bytes()

    assert struct.unpack_from("<I", data, 0)[0] == 0x04034B50
    local_size = 30 + len("a.txt") + len(b"hello")
    assert struct.unpack_from("<I", data, local_size)[0] == 0x02014B50
    central_size = 46 + len("a.txt")
    end_offset = local_size + central_size
    assert len(data) == end_offset + 22
    signature, _, _, on_disk, total, size, start, comment = struct.unpack_from(
        "<IHHHHIIH", data, end_offset
    )
    assert signature == 0x06054B50
    assert on_disk == total == 1
    assert size == central_size
    assert start == local_size
    assert comment == 0


def test_entries_keep_input_order_and_file_sources(tmp_path: Path) -> None:
    source = tmp_path / "video.bin"
    source.write_bytes(b"\x00\x01\x02" * 1000)
    destination = tmp_path / "mixed.zip"

    create_archive(
        destination,
        [
            ArchiveEntry.from_bytes("z/meta.json", b"{}"),
            ArchiveEntry.from_file("a/video.bin", source),
            ArchiveEntry.from_bytes("empty.txt", b""),
        ],
    )

    with zipfile.ZipFile(destination) as archive:
        assert archive.namelist() == ["z/meta.json", "a/video.bin", "empty.txt"]
        assert archive.read("a/video.bin") == source.read_bytes()
        assert archive.read("empty.txt") == b""


def test_unicode_names_are_stored_as_utf8(tmp_path: Path) -> None:
    destination = tmp_path / "unicode.zip"
    create_archive(destination, [ArchiveEntry.from_bytes("übung.json", b"[]")])
    assert "übung.json".encode("utf-8") in destination.read_bytes()


def test_existing_destination_is_replaced(tmp_path: Path) -> None:
    destination = tmp_path / "replace.zip"
    destination.write_bytes(b"stale data that is not a zip")
    create_archive(destination, [ArchiveEntry.from_bytes("x", b"1")])
    with zipfile.ZipFile(destination) as archive:
        assert archive.read("x") == b"1"


@pytest.mark.parametrize("name", ["", "/abs.txt", "dir\\file.txt"])
def test_invalid_archive_paths_are_rejected(tmp_path: Path, name: str) -> None:
    with pytest.raises(ArchiveError):
        create_archive(tmp_path / "bad.zip", [ArchiveEntry.from_bytes(name, b"x")])


def test_duplicate_archive_paths_are_rejected(tmp_path: Path) -> None:
    entries = [ArchiveEntry.from_bytes("a.txt", b"1"), ArchiveEntry.from_bytes("a.txt", b"2")]
    with pytest.raises(ArchiveError):
        create_archive(tmp_path / "dup.zip", entries)
    assert not (tmp_path / "dup.zip").exists()


def test_missing_source_file_raises_archive_error(tmp_path: Path) -> None:
    destination = tmp_path / "missing.zip"
    with pytest.raises(ArchiveError):
        create_archive(destination, [ArchiveEntry.from_file("gone", tmp_path / "gone")])
    assert not destination.exists()


def test_entry_requires_exactly_one_source(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        ArchiveEntry("a")
    with pytest.raises(ValueError):
        ArchiveEntry("a", path=tmp_path / "a", data=b"a")


def test_all_files_is_sorted_relative_and_prefixed(tmp_path: Path) -> None:
    (tmp_path / "raw").mkdir()
    (tmp_path / "skeleton").mkdir()
    (tmp_path / "raw" / "video.mp4").write_bytes(b"v")
    (tmp_path / "raw" / "depth_mask.bin").write_bytes(b"dd")
    (tmp_path / "skeleton" / "skeleton.json").write_bytes(b"{}")

    entries = all_files(tmp_path, prefix="recording_001")

    assert [entry.archive_path for entry in entries] == [
        "recording_001/raw/depth_mask.bin",
        "recording_001/raw/video.mp4",
        "recording_001/skeleton/skeleton.json",
    ]
    assert [entry.archive_path for entry in all_files(tmp_path / "raw")] == [
        "depth_mask.bin",
        "video.mp4",
    ]


def test_directory_size_sums_regular_files(tmp_path: Path) -> None:
    (tmp_path / "nested").mkdir()
    (tmp_path / "a").write_bytes(b"12345")
    (tmp_path / "nested" / "b").write_bytes(b"123")
    assert directory_size(tmp_path) == 8


def test_all_files_requires_directory(tmp_path: Path) -> None:
    with pytest.raises(ArchiveError):
        all_files(tmp_path / "absent")
