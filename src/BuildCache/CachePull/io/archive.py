# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.io.archive",
#   "purpose": "Decode staged tar archives and restore their entries onto disk",
#   "sections": [
#     {"id": "model", "name": "Entry Model", "anchor": "MOD", "kind": "api"},
#     {"id": "appliers", "name": "Entry Appliers", "anchor": "APP", "kind": "helpers"},
#     {"id": "restore", "name": "Archive Restoration", "anchor": "RST", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Archive restoration engine.

The staged cache archive is a tar stream, optionally wrapped in gzip.  The
stream does not declare which, so callers pass ``compressed`` explicitly and
retry with the other decoder when the first one fails (see
:mod:`BuildCache.CachePull.pipeline`).

Entries are decoded one at a time and applied immediately:

- directories are created with mode 0755 (ancestors included)
- regular files, character/block devices and FIFOs are written as plain files
  carrying the entry payload, permission bits and modification time
- symlinks point at the recorded target verbatim
- hard links point at the entry name joined with the recorded target, which is
  how the cache push step addresses them

Entry names are applied relative to the destination without sanitisation;
cache archives are produced by the same build pipeline and are trusted.
Nothing is rolled back on failure: entries restored before the failing one
stay on disk.
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import tarfile
import zlib
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Dict, Optional

from ..errors import RestoreError
from .filesystem import (
    apply_mode,
    compose_hardlink_source,
    ensure_directory,
    ensure_parent_directory,
    format_bytes,
    replace_with_symlink,
    set_mtime,
)

__all__ = [
    "ArchiveEntry",
    "EntryKind",
    "RestoreSummary",
    "apply_entry",
    "restore_archive",
]

_COPY_BUFFER_SIZE = 1 << 20


class EntryKind(str, Enum):
    """Closed set of entry kinds the engine knows how to restore."""

    DIRECTORY = "directory"
    REGULAR_FILE = "file"
    CHAR_DEVICE = "char-device"
    BLOCK_DEVICE = "block-device"
    FIFO = "fifo"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"

    @property
    def is_data(self) -> bool:
        """Return ``True`` for kinds restored as plain files."""

        return self in _DATA_KINDS


_DATA_KINDS = frozenset(
    {EntryKind.REGULAR_FILE, EntryKind.CHAR_DEVICE, EntryKind.BLOCK_DEVICE, EntryKind.FIFO}
)

_KIND_BY_TYPE: Dict[bytes, EntryKind] = {
    tarfile.DIRTYPE: EntryKind.DIRECTORY,
    tarfile.REGTYPE: EntryKind.REGULAR_FILE,
    tarfile.AREGTYPE: EntryKind.REGULAR_FILE,
    tarfile.CHRTYPE: EntryKind.CHAR_DEVICE,
    tarfile.BLKTYPE: EntryKind.BLOCK_DEVICE,
    tarfile.FIFOTYPE: EntryKind.FIFO,
    tarfile.SYMTYPE: EntryKind.SYMLINK,
    tarfile.LNKTYPE: EntryKind.HARDLINK,
}


def _describe_type(type_flag: bytes) -> str:
    text = type_flag.decode("latin-1")
    return text if text.isprintable() and text else repr(type_flag)[2:-1]


class _StrictTarInfo(tarfile.TarInfo):
    """Header reader that fails on damaged headers past the first member.

    ``TarFile.next`` only reports invalid or truncated headers at offset 0;
    later ones silently end the iteration.  An all-NUL block or a clean EOF on
    a block boundary still ends the archive.
    """

    @classmethod
    def fromtarfile(cls, archive: tarfile.TarFile) -> "tarfile.TarInfo":
        try:
            return super().fromtarfile(archive)
        except (tarfile.InvalidHeaderError, tarfile.TruncatedHeaderError) as exc:
            raise tarfile.ReadError(
                f"invalid or truncated header at offset {archive.offset}: {exc}"
            ) from exc


@dataclass(frozen=True)
class ArchiveEntry:
    """One decoded archive record.

    Attributes:
        name: Relative path recorded in the archive.
        kind: Entry kind.
        mode: Permission bits (``0o7777`` mask).
        mtime: Modification time in seconds since the epoch.
        size: Payload size for data entries.
        link_target: Recorded target for symlinks and hard links.
        type_code: Raw tar type flag, kept for diagnostics.
    """

    name: str
    kind: EntryKind
    mode: int = 0o644
    mtime: float = 0.0
    size: int = 0
    link_target: str = ""
    type_code: str = ""

    @classmethod
    def from_tarinfo(cls, member: tarfile.TarInfo) -> "ArchiveEntry":
        """Build an entry from a tar header.

        Raises:
            RestoreError: If the header's type flag is not a known kind.
        """

        type_code = _describe_type(member.type)
        kind = _KIND_BY_TYPE.get(member.type)
        if kind is None:
            raise RestoreError(
                f"{member.name}: unknown type flag: {type_code}",
                entry_name=member.name,
                type_code=type_code,
            )
        return cls(
            name=member.name,
            kind=kind,
            mode=member.mode & 0o7777,
            mtime=float(member.mtime),
            size=int(member.size),
            link_target=member.linkname,
            type_code=type_code,
        )


@dataclass
class RestoreSummary:
    """Counters describing one restoration pass."""

    compressed: bool
    entries: Dict[str, int] = field(default_factory=dict)
    bytes_written: int = 0

    @property
    def total_entries(self) -> int:
        return sum(self.entries.values())

    def record(self, entry: ArchiveEntry, written: int) -> None:
        self.entries[entry.kind.value] = self.entries.get(entry.kind.value, 0) + 1
        self.bytes_written += written


def _restore_directory(
    entry: ArchiveEntry,
    payload: Optional[IO[bytes]],
    root: Path,
    logger: Optional[logging.Logger],
) -> int:
    ensure_directory(root / entry.name)
    return 0


def _restore_data(
    entry: ArchiveEntry,
    payload: Optional[IO[bytes]],
    root: Path,
    logger: Optional[logging.Logger],
) -> int:
    target = root / entry.name
    ensure_parent_directory(target)
    written = 0
    with target.open("wb") as out:
        apply_mode(target, entry.mode, logger=logger)
        if payload is not None:
            shutil.copyfileobj(payload, out, _COPY_BUFFER_SIZE)
            written = out.tell()
    set_mtime(target, entry.mtime)
    return written


def _restore_symlink(
    entry: ArchiveEntry,
    payload: Optional[IO[bytes]],
    root: Path,
    logger: Optional[logging.Logger],
) -> int:
    target = root / entry.name
    ensure_parent_directory(target)
    replace_with_symlink(target, entry.link_target)
    return 0


def _restore_hardlink(
    entry: ArchiveEntry,
    payload: Optional[IO[bytes]],
    root: Path,
    logger: Optional[logging.Logger],
) -> int:
    target = root / entry.name
    ensure_parent_directory(target)
    source = root / compose_hardlink_source(entry.name, entry.link_target)
    os.link(source, target)
    return 0


_Applier = Callable[[ArchiveEntry, Optional[IO[bytes]], Path, Optional[logging.Logger]], int]

_APPLIERS: Dict[EntryKind, _Applier] = {
    EntryKind.DIRECTORY: _restore_directory,
    EntryKind.REGULAR_FILE: _restore_data,
    EntryKind.CHAR_DEVICE: _restore_data,
    EntryKind.BLOCK_DEVICE: _restore_data,
    EntryKind.FIFO: _restore_data,
    EntryKind.SYMLINK: _restore_symlink,
    EntryKind.HARDLINK: _restore_hardlink,
}


def apply_entry(
    entry: ArchiveEntry,
    payload: Optional[IO[bytes]],
    *,
    root: Path,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Materialise ``entry`` under ``root`` and return the payload bytes written.

    Raises:
        RestoreError: If the filesystem operation for the entry fails.
    """

    applier = _APPLIERS.get(entry.kind)
    if applier is None:
        raise RestoreError(
            f"{entry.name}: unknown type flag: {entry.type_code}",
            entry_name=entry.name,
            type_code=entry.type_code,
        )
    try:
        written = applier(entry, payload, root, logger)
    except OSError as exc:
        raise RestoreError(
            f"{entry.name}: failed to restore {entry.kind.value}: {exc}",
            entry_name=entry.name,
            type_code=entry.type_code,
        ) from exc
    if logger:
        logger.debug(
            "restored entry",
            extra={"stage": "restore", "entry": entry.name, "kind": entry.kind.value},
        )
    return written


def restore_archive(
    archive_path: Path,
    *,
    compressed: bool,
    destination: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> RestoreSummary:
    """Decode ``archive_path`` and restore every entry under ``destination``.

    Args:
        archive_path: Staged archive file; read, never modified.
        compressed: Wrap the file in a gzip decoder before tar decoding.
        destination: Root for relative entry names; defaults to the current
            working directory at call time.
        logger: Optional logger for structured ``stage="restore"`` records.

    Returns:
        Summary of the restored entries.

    Raises:
        RestoreError: On decode failures (bad header, truncated stream, bad
            gzip framing), an unknown entry kind, or a failed filesystem
            operation.  Entries restored before the failure are left in place.
    """

    root = Path(destination) if destination is not None else Path.cwd()
    summary = RestoreSummary(compressed=compressed)
    try:
        with ExitStack() as stack:
            stream: IO[bytes] = stack.enter_context(open(archive_path, "rb"))
            if compressed:
                stream = stack.enter_context(gzip.GzipFile(fileobj=stream, mode="rb"))
            archive = stack.enter_context(
                tarfile.open(fileobj=stream, mode="r|", tarinfo=_StrictTarInfo)
            )
            for member in archive:
                entry = ArchiveEntry.from_tarinfo(member)
                payload = None
                if entry.kind is EntryKind.REGULAR_FILE:
                    payload = archive.extractfile(member)
                written = apply_entry(entry, payload, root=root, logger=logger)
                summary.record(entry, written)
    except (tarfile.TarError, gzip.BadGzipFile, EOFError, zlib.error) as exc:
        raise RestoreError(f"Failed to decode archive {archive_path}: {exc}") from exc
    except OSError as exc:
        raise RestoreError(f"Failed to read archive {archive_path}: {exc}") from exc

    if logger:
        logger.info(
            "restored %d entries (%s)",
            summary.total_entries,
            format_bytes(summary.bytes_written),
            extra={
                "stage": "restore",
                "compressed": compressed,
                "bytes": summary.bytes_written,
                "path": str(archive_path),
            },
        )
    return summary
