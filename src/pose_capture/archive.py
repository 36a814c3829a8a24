"""Minimal store-only ZIP container writer.

Only the subset needed to package a recording is produced: stored
(uncompressed) entries, no extra fields, no zip64 and a single disk. The
output opens with any standard unarchiver.
"""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import IO, Iterable, Iterator, Sequence

import numpy as np

from .errors import ArchiveError


logger = logging.getLogger(__name__)

LOCAL_FILE_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06054B50
ZIP_VERSION = 20
STORED = 0

_LOCAL_FILE_HEADER = struct.Struct("<IHHHHHIIIHH")
_CENTRAL_DIRECTORY_HEADER = struct.Struct("<IHHHHHHIIIHHHHHII")
_END_OF_CENTRAL_DIRECTORY = struct.Struct("<IHHHHIIH")

_MAX_UINT32 = 0xFFFFFFFF
_MAX_UINT16 = 0xFFFF
_CHUNK_SIZE = 1024 * 1024

CRC32_POLYNOMIAL = 0xEDB88320

# Inputs at least this large are checksummed as _CRC_LANES interleaved
# blocks stepped together, then folded back into one register.
_CRC_LANES = 4096
_CRC_MIN_LANE_LENGTH = 16


def _build_crc_table() -> tuple[int, ...]:
    table: list[int] = []
    for index in range(256):
        value = index
        for _ in range(8):
            if value & 1:
                value = CRC32_POLYNOMIAL ^ (value >> 1)
            else:
                value >>= 1
        table.append(value)
    return tuple(table)


_CRC_TABLE = _build_crc_table()
_CRC_TABLE_ARRAY = np.array(_CRC_TABLE, dtype=np.uint32)
_REGISTER_BITS = np.left_shift(np.uint32(1), np.arange(32, dtype=np.uint32))


def _update_bytes(register: int, data: bytes) -> int:
    table = _CRC_TABLE
    for byte in data:
        register = table[(register ^ byte) & 0xFF] ^ (register >> 8)
    return register


def _shift_tables(images: np.ndarray) -> np.ndarray:
    """Byte-sliced lookup tables for the linear map sending bit ``k`` to ``images[k]``."""

    tables = np.zeros((4, 256), dtype=np.uint32)
    values = np.arange(256)
    for position in range(4):
        for bit in range(8):
            selected = ((values >> bit) & 1).astype(bool)
            tables[position, selected] ^= images[position * 8 + bit]
    return tables


def _apply_shift(tables: np.ndarray, registers: np.ndarray) -> np.ndarray:
    return (
        tables[0][registers & 0xFF]
        ^ tables[1][(registers >> 8) & 0xFF]
        ^ tables[2][(registers >> 16) & 0xFF]
        ^ tables[3][registers >> 24]
    )


@lru_cache(maxsize=8)
def _lane_shifts(length: int) -> tuple[np.ndarray, ...]:
    """Shift tables for folding lanes of ``length`` bytes pairwise, level by level.

    Feeding ``n`` zero bytes through the register is linear, so appending a
    block of ``n`` bytes to a prefix is ``shift_n(prefix) ^ crc_from_zero(block)``.
    """

    images = _REGISTER_BITS.copy()
    table = _CRC_TABLE_ARRAY
    for _ in range(length):
        images = table[images & 0xFF] ^ (images >> 8)
    levels = [_shift_tables(images)]
    span = _CRC_LANES // 2
    while span > 1:
        previous = levels[-1]
        squared = _apply_shift(previous, _apply_shift(previous, _REGISTER_BITS))
        levels.append(_shift_tables(squared))
        span //= 2
    return tuple(levels)


def _update_lanes(register: int, data: np.ndarray) -> int:
    length = data.size // _CRC_LANES
    columns = np.ascontiguousarray(data.reshape(_CRC_LANES, length).T)
    registers = np.zeros(_CRC_LANES, dtype=np.uint32)
    registers[0] = register
    table = _CRC_TABLE_ARRAY
    for column in columns:
        registers = table[(registers ^ column) & 0xFF] ^ (registers >> 8)
    for shift in _lane_shifts(length):
        registers = _apply_shift(shift, registers[0::2]) ^ registers[1::2]
    return int(registers[0])


class Crc32:
    """Incremental table-driven CRC-32 (reflected ``0xEDB88320``)."""

    __slots__ = ("_register",)

    def __init__(self) -> None:
        self._register = _MAX_UINT32

    def update(self, data: bytes | bytearray | memoryview) -> "Crc32":
        view = np.frombuffer(data, dtype=np.uint8)
        register = self._register
        split = 0
        if view.size >= _CRC_LANES * _CRC_MIN_LANE_LENGTH:
            split = view.size - view.size % _CRC_LANES
            register = _update_lanes(register, view[:split])
        self._register = _update_bytes(register, view[split:].tobytes())
        return self

    @property
    def value(self) -> int:
        return self._register ^ _MAX_UINT32


def crc32(data: bytes | bytearray | memoryview) -> int:
    return Crc32().update(data).value


@dataclass(frozen=True, slots=True)
class ArchiveEntry:
    """Source bytes (in memory or on disk) and the path stored in the archive."""

    archive_path: str
    path: Path | None = None
    data: bytes | None = None

    def __post_init__(self) -> None:
        if (self.path is None) == (self.data is None):
            raise ValueError("Archive entries need exactly one of path or data")
        if self.path is not None:
            object.__setattr__(self, "path", Path(self.path))
        else:
            object.__setattr__(self, "data", bytes(self.data))

    @classmethod
    def from_bytes(cls, archive_path: str, data: bytes) -> "ArchiveEntry":
        return cls(archive_path=archive_path, data=data)

    @classmethod
    def from_file(cls, archive_path: str, path: Path | str) -> "ArchiveEntry":
        return cls(archive_path=archive_path, path=Path(path))

    def iter_chunks(self, chunk_size: int = _CHUNK_SIZE) -> Iterator[bytes]:
        if self.data is not None:
            for offset in range(0, len(self.data), chunk_size):
                yield self.data[offset : offset + chunk_size]
            return
        with self.path.open("rb") as handle:
            while True:
                chunk = handle.read(chunk_size)
                if not chunk:
                    return
                yield chunk


@dataclass(frozen=True, slots=True)
class _CentralRecord:
    name: bytes
    crc: int
    size: int
    offset: int


def _validate_entries(entries: Sequence[ArchiveEntry]) -> list[bytes]:
    if len(entries) > _MAX_UINT16:
        raise ArchiveError("Too many entries for a single archive")
    names: list[bytes] = []
    seen: set[str] = set()
    for entry in entries:
        archive_path = entry.archive_path
        if not archive_path or archive_path.startswith("/") or "\\" in archive_path:
            raise ArchiveError(f"Invalid archive path: {archive_path!r}")
        if archive_path in seen:
            raise ArchiveError(f"Duplicate archive path: {archive_path}")
        seen.add(archive_path)
        encoded = archive_path.encode("utf-8")
        if len(encoded) > _MAX_UINT16:
            raise ArchiveError(f"Archive path too long: {archive_path[:64]}...")
        names.append(encoded)
    return names


def _checksum(entry: ArchiveEntry) -> tuple[int, int]:
    digest = Crc32()
    size = 0
    for chunk in entry.iter_chunks():
        digest.update(chunk)
        size += len(chunk)
    if size > _MAX_UINT32:
        raise ArchiveError(f"{entry.archive_path} exceeds the 4 GiB entry limit")
    return digest.value, size


def _write_entries(
    handle: IO[bytes], entries: Sequence[ArchiveEntry], names: Sequence[bytes]
) -> list[_CentralRecord]:
    records: list[_CentralRecord] = []
    offset = 0
    for entry, name in zip(entries, names):
        crc, size = _checksum(entry)
        if offset > _MAX_UINT32:
            raise ArchiveError("Archive exceeds the 4 GiB offset limit")
        handle.write(
            _LOCAL_FILE_HEADER.pack(
                LOCAL_FILE_HEADER_SIGNATURE,
                ZIP_VERSION,
                0,
                STORED,
                0,
                0,
                crc,
                size,
                size,
                len(name),
                0,
            )
        )
        handle.write(name)
        written = 0
        for chunk in entry.iter_chunks():
            handle.write(chunk)
            written += len(chunk)
        if written != size:
            raise ArchiveError(f"{entry.archive_path} changed while being archived")
        records.append(_CentralRecord(name=name, crc=crc, size=size, offset=offset))
        offset += _LOCAL_FILE_HEADER.size + len(name) + size
    return records


def _write_central_directory(
    handle: IO[bytes], records: Sequence[_CentralRecord], start: int
) -> None:
    directory_size = 0
    for record in records:
        handle.write(
            _CENTRAL_DIRECTORY_HEADER.pack(
                CENTRAL_DIRECTORY_SIGNATURE,
                ZIP_VERSION,
                ZIP_VERSION,
                0,
                STORED,
                0,
                0,
                record.crc,
                record.size,
                record.size,
                len(record.name),
                0,
                0,
                0,
                0,
                0,
                record.offset,
            )
        )
        handle.write(record.name)
        directory_size += _CENTRAL_DIRECTORY_HEADER.size + len(record.name)
    if start > _MAX_UINT32 or directory_size > _MAX_UINT32:
        raise ArchiveError("Archive exceeds the 4 GiB offset limit")
    handle.write(
        _END_OF_CENTRAL_DIRECTORY.pack(
            END_OF_CENTRAL_DIRECTORY_SIGNATURE,
            0,
            0,
            len(records),
            len(records),
            directory_size,
            start,
            0,
        )
    )


def create_archive(destination: Path | str, entries: Iterable[ArchiveEntry]) -> Path:
    """Write ``entries`` in order into a stored ZIP file at ``destination``.

    Any existing file at ``destination`` is replaced. On failure the partial
    file is removed and :class:`ArchiveError` is raised.
    """

    target = Path(destination)
    ordered = list(entries)
    names = _validate_entries(ordered)
    try:
        target.unlink(missing_ok=True)
        with target.open("wb") as handle:
            records = _write_entries(handle, ordered, names)
            _write_central_directory(handle, records, handle.tell())
    except ArchiveError:
        target.unlink(missing_ok=True)
        raise
    except OSError as exc:
        try:
            target.unlink(missing_ok=True)
        except OSError:  # pragma: no cover - best-effort cleanup
            pass
        raise ArchiveError(f"Failed to write archive {target}: {exc}") from exc
    logger.info("Wrote archive %s (%d entries)", target, len(ordered))
    return target


def _iter_regular_files(directory: Path) -> Iterator[Path]:
    for root, dirnames, filenames in os.walk(directory):
        dirnames.sort()
        for filename in filenames:
            candidate = Path(root) / filename
            if candidate.is_symlink() or not candidate.is_file():
                continue
            yield candidate


def all_files(directory: Path | str, prefix: str | None = None) -> list[ArchiveEntry]:
    """Return entries for every regular file under ``directory``.

    Archive paths are relative to ``directory`` using forward slashes,
    optionally placed under ``prefix``, and sorted lexicographically.
    """

    root = Path(directory)
    if not root.is_dir():
        raise ArchiveError(f"Not a directory: {root}")
    entries: list[ArchiveEntry] = []
    for path in _iter_regular_files(root):
        relative = path.relative_to(root).as_posix()
        archive_path = f"{prefix}/{relative}" if prefix else relative
        entries.append(ArchiveEntry.from_file(archive_path, path))
    entries.sort(key=lambda entry: entry.archive_path)
    return entries


def directory_size(directory: Path | str) -> int:
    """Sum the sizes of the regular files under ``directory``."""

    total = 0
    for path in _iter_regular_files(Path(directory)):
        total += path.stat().st_size
    return total


__all__ = [
    "ArchiveEntry",
    "Crc32",
    "all_files",
    "crc32",
    "create_archive",
    "directory_size",
]
