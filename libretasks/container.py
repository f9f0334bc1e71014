"""Model container detection and stored-zip archive reader.

Two container kinds are handled:

- a bare model (TFLite flatbuffer, ``TFL3`` at offset 4), optionally with a
  zip archive of associated files appended to it, and
- a task bundle: a zip archive whose entries are stored (not deflated)
  models plus shared label/vocabulary files.

Format dispatch is an ordered registry of ``(offset, magic, loader)``
entries; the first signature matching the buffer wins.  The archive reader
never decompresses and never copies: every entry resolves to a
``memoryview`` slice of the buffer it was opened on.
"""

import struct
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ._constants import (
    MIN_MODEL_SIZE,
    ZIP_CENTRAL_HEADER_MAGIC,
    ZIP_END_OF_CENTRAL_DIR_MAGIC,
    ZIP_EOCD_SEARCH_WINDOW,
    ZIP_LOCAL_HEADER_MAGIC,
)
from .errors import ParseError

__all__ = [
    "ModelFormat", "register_format", "registered_formats", "sniff_format",
    "Archive", "ArchiveEntry", "open_archive", "try_open_archive",
]


# ── Format registry ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ModelFormat:
    name: str
    offset: int
    magic: bytes
    loader: Callable

    def matches(self, buf) -> bool:
        end = self.offset + len(self.magic)
        return len(buf) >= end and bytes(buf[self.offset:end]) == self.magic


_FORMATS: List[ModelFormat] = []


def register_format(name: str, offset: int, magic: bytes, loader: Callable) -> ModelFormat:
    """Append a format to the dispatch registry.

    Later registrations are tried after earlier ones.  *loader* is called
    as ``loader(buf, model_names, parent_archive=None, model_name=None)``.
    """
    fmt = ModelFormat(name=name, offset=offset, magic=bytes(magic), loader=loader)
    _FORMATS.append(fmt)
    return fmt


def registered_formats() -> Tuple[ModelFormat, ...]:
    return tuple(_FORMATS)


def sniff_format(buf) -> ModelFormat:
    """Return the first registered format whose signature matches *buf*."""
    if len(buf) < MIN_MODEL_SIZE:
        raise ParseError(f"Model buffer is too short ({len(buf)} bytes)")
    for fmt in _FORMATS:
        if fmt.matches(buf):
            return fmt
    raise ParseError(f"Cannot parse this head magic `{bytes(buf[:8])!r}`")


# ── Zip archive ─────────────────────────────────────────────────────────────

_LOCAL_HEADER = struct.Struct("<4sHHHHHIIIHH")          # 30 bytes
_CENTRAL_HEADER = struct.Struct("<4sHHHHHHIIIHHHHHII")  # 46 bytes
_END_OF_CENTRAL_DIR = struct.Struct("<4sHHHHIIH")       # 22 bytes

_STORED = 0


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    offset: int  # absolute offset of the entry data in the archive buffer
    size: int
    compression: int = _STORED

    @property
    def compressed(self) -> bool:
        return self.compression != _STORED


class Archive:
    """Name → byte-range table over a zip archive held in memory."""

    def __init__(self, buf, entries: Sequence[ArchiveEntry]):
        self._buf = memoryview(buf)
        self._entries: Dict[str, ArchiveEntry] = {}
        for entry in entries:
            # first occurrence wins, like most zip readers
            self._entries.setdefault(entry.name, entry)

    def __contains__(self, name) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    def entry(self, name: str) -> Optional[ArchiveEntry]:
        return self._entries.get(name)

    def read(self, name: str) -> Optional[memoryview]:
        """Return a zero-copy view of entry *name*, or None if absent."""
        entry = self._entries.get(name)
        if entry is None:
            return None
        if entry.compressed:
            raise ParseError(
                f"Archive entry {name!r} is compressed (method {entry.compression}); "
                f"only stored entries are supported"
            )
        return self._buf[entry.offset:entry.offset + entry.size]

    def resolve(self, candidates: Sequence[str]) -> Tuple[str, memoryview]:
        """Return (name, data) for the first candidate present in the archive."""
        for name in candidates:
            if name in self._entries:
                return name, self.read(name)
        raise ParseError(
            f"None of the candidate models {list(candidates)!r} found in bundle "
            f"(entries: {self.names!r})"
        )


def _find_end_of_central_dir(buf):
    start = max(0, len(buf) - ZIP_EOCD_SEARCH_WINDOW)
    pos = bytes(buf[start:]).rfind(ZIP_END_OF_CENTRAL_DIR_MAGIC)
    if pos < 0:
        return -1
    return start + pos


def open_archive(buf) -> Archive:
    """Parse the central directory of the zip archive in *buf*.

    Data prepended to the archive (e.g. a model flatbuffer with the archive
    appended) is tolerated: offsets are corrected by the distance between
    where the central directory claims to be and where it actually is.

    Raises:
        ParseError: if *buf* does not hold a well-formed zip archive.
    """
    eocd_pos = _find_end_of_central_dir(buf)
    if eocd_pos < 0 or eocd_pos + _END_OF_CENTRAL_DIR.size > len(buf):
        raise ParseError("Zip end of central directory record not found")
    (_, _, _, _, count, cd_size, cd_offset, _) = _END_OF_CENTRAL_DIR.unpack_from(buf, eocd_pos)
    if cd_offset == 0xFFFFFFFF or count == 0xFFFF:
        raise ParseError("Zip64 archives are not supported")

    concat = eocd_pos - cd_size - cd_offset
    if concat < 0:
        raise ParseError("Zip central directory offset out of range")

    entries = []
    pos = cd_offset + concat
    for _ in range(count):
        if pos + _CENTRAL_HEADER.size > eocd_pos:
            raise ParseError("Zip central directory truncated")
        fields = _CENTRAL_HEADER.unpack_from(buf, pos)
        if fields[0] != ZIP_CENTRAL_HEADER_MAGIC:
            raise ParseError(f"Bad zip central directory signature at {pos}")
        method, csize, name_len, extra_len, comment_len, local_offset = (
            fields[4], fields[8], fields[10], fields[11], fields[12], fields[16])
        name_start = pos + _CENTRAL_HEADER.size
        name = bytes(buf[name_start:name_start + name_len]).decode("utf-8", errors="replace")
        pos = name_start + name_len + extra_len + comment_len

        local = local_offset + concat
        if local + _LOCAL_HEADER.size > len(buf):
            raise ParseError(f"Zip local header for {name!r} out of range")
        lfields = _LOCAL_HEADER.unpack_from(buf, local)
        if lfields[0] != ZIP_LOCAL_HEADER_MAGIC:
            raise ParseError(f"Bad zip local header signature for {name!r}")
        data_start = local + _LOCAL_HEADER.size + lfields[9] + lfields[10]
        if data_start + csize > len(buf):
            raise ParseError(f"Zip entry {name!r} extends past end of buffer")
        if name.endswith("/"):
            continue  # directory entry
        entries.append(ArchiveEntry(name=name, offset=data_start, size=csize, compression=method))

    return Archive(buf, entries)


def try_open_archive(buf) -> Optional[Archive]:
    """Like :func:`open_archive`, but return None when *buf* is not an archive."""
    try:
        return open_archive(buf)
    except (ParseError, struct.error):
        return None
