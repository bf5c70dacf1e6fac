# === NAVMAP v1 ===
# {
#   "module": "tests.cache_pull.test_restore_archive",
#   "purpose": "Coverage for tar decoding and per-entry filesystem restoration",
#   "sections": [
#     {"id": "happy_paths", "name": "Happy Path Tests", "anchor": "HPT", "kind": "tests"},
#     {"id": "links", "name": "Symlink & Hard Link Tests", "anchor": "LNK", "kind": "tests"},
#     {"id": "failures", "name": "Decode & Entry Failure Tests", "anchor": "ERR", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for the archive restoration engine.

Tests cover:
- Directories, regular files, and device-like entries restored as files
- Content, modification time, and permission bits of restored files
- Symlink targets and the nested hard-link addressing convention
- Compressed and uncompressed decoding, including the wrong-decoder failure
- Unknown type flags, truncated streams, and idempotent re-restoration
"""

from __future__ import annotations

import logging
import os
import stat
import sys
import tarfile
from pathlib import Path

import pytest

from BuildCache.CachePull.errors import RestoreError
from BuildCache.CachePull.io import archive as archive_mod
from BuildCache.CachePull.io.archive import ArchiveEntry, EntryKind, restore_archive
from BuildCache.CachePull.testing import MemberSpec, build_tar_bytes, write_tar_archive

MTIME = 1_650_000_000

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX links and modes")


def _basic_members() -> list[MemberSpec]:
    return [
        MemberSpec("d", type_flag=tarfile.DIRTYPE, mode=0o755, mtime=MTIME),
        MemberSpec("d/f.txt", data="hi", mode=0o644, mtime=MTIME),
        MemberSpec("d/sub/nested.bin", data=b"\x00\x01\x02", mode=0o600, mtime=MTIME + 5),
    ]


def _snapshot(root: Path) -> dict[str, tuple[bool, bytes, int]]:
    state = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        if path.is_dir():
            state[rel] = (True, b"", 0)
        else:
            state[rel] = (False, path.read_bytes(), int(path.stat().st_mtime))
    return state


# ============================================================================
# HAPPY PATH TESTS
# ============================================================================


def test_restore_uncompressed_directories_and_files(tmp_path, restore_root, test_logger) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())

    summary = restore_archive(
        archive, compressed=False, destination=restore_root, logger=test_logger
    )

    assert (restore_root / "d").is_dir()
    assert (restore_root / "d" / "f.txt").read_text() == "hi"
    assert (restore_root / "d" / "sub" / "nested.bin").read_bytes() == b"\x00\x01\x02"
    assert summary.compressed is False
    assert summary.entries == {"directory": 1, "file": 2}
    assert summary.total_entries == 3
    assert summary.bytes_written == 5


def test_restore_preserves_mtime(tmp_path, restore_root) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())

    restore_archive(archive, compressed=False, destination=restore_root)

    assert int((restore_root / "d" / "f.txt").stat().st_mtime) == MTIME
    assert int((restore_root / "d" / "sub" / "nested.bin").stat().st_mtime) == MTIME + 5


@posix_only
def test_restore_applies_permission_bits(tmp_path, restore_root) -> None:
    members = [
        MemberSpec("run.sh", data="#!/bin/sh\n", mode=0o755),
        MemberSpec("private.key", data="k", mode=0o600),
    ]
    archive = write_tar_archive(tmp_path / "cache.tar", members)

    restore_archive(archive, compressed=False, destination=restore_root)

    assert stat.S_IMODE((restore_root / "run.sh").stat().st_mode) == 0o755
    assert stat.S_IMODE((restore_root / "private.key").stat().st_mode) == 0o600


def test_restore_compressed_archive(tmp_path, restore_root) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members(), compressed=True)

    summary = restore_archive(archive, compressed=True, destination=restore_root)

    assert (restore_root / "d" / "f.txt").read_text() == "hi"
    assert summary.compressed is True


def test_restore_creates_missing_parents_without_directory_entries(
    tmp_path, restore_root
) -> None:
    archive = write_tar_archive(
        tmp_path / "cache.tar", [MemberSpec("a/b/c/deep.txt", data="deep")]
    )

    restore_archive(archive, compressed=False, destination=restore_root)

    assert (restore_root / "a" / "b" / "c" / "deep.txt").read_text() == "deep"


def test_restore_defaults_to_current_directory(tmp_path, restore_root, monkeypatch) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())
    monkeypatch.chdir(restore_root)

    restore_archive(archive, compressed=False)

    assert (restore_root / "d" / "f.txt").read_text() == "hi"


def test_restore_overwrites_existing_files(tmp_path, restore_root) -> None:
    (restore_root / "d").mkdir()
    (restore_root / "d" / "f.txt").write_text("stale content that is longer")
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())

    restore_archive(archive, compressed=False, destination=restore_root)

    assert (restore_root / "d" / "f.txt").read_text() == "hi"


def test_restore_twice_is_idempotent(tmp_path, restore_root) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())

    restore_archive(archive, compressed=False, destination=restore_root)
    first = _snapshot(restore_root)
    restore_archive(archive, compressed=False, destination=restore_root)

    assert _snapshot(restore_root) == first


@pytest.mark.parametrize(
    "type_flag, kind",
    [
        (tarfile.CHRTYPE, "char-device"),
        (tarfile.BLKTYPE, "block-device"),
        (tarfile.FIFOTYPE, "fifo"),
    ],
)
def test_device_like_entries_are_restored_as_plain_files(
    tmp_path, restore_root, type_flag, kind
) -> None:
    archive = write_tar_archive(
        tmp_path / "cache.tar", [MemberSpec("dev/node", type_flag=type_flag, mtime=MTIME)]
    )

    summary = restore_archive(archive, compressed=False, destination=restore_root)

    node = restore_root / "dev" / "node"
    assert node.is_file()
    assert node.read_bytes() == b""
    assert int(node.stat().st_mtime) == MTIME
    assert summary.entries == {kind: 1}


def test_empty_archive_restores_nothing(tmp_path, restore_root) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", [])

    summary = restore_archive(archive, compressed=False, destination=restore_root)

    assert summary.total_entries == 0
    assert list(restore_root.iterdir()) == []


# ============================================================================
# LINK TESTS
# ============================================================================


@posix_only
def test_symlink_points_at_recorded_target(tmp_path, restore_root) -> None:
    members = [
        MemberSpec("d/f.txt", data="hi"),
        MemberSpec("links/to-f", type_flag=tarfile.SYMTYPE, linkname="../d/f.txt"),
        MemberSpec("links/dangling", type_flag=tarfile.SYMTYPE, linkname="/nowhere/at/all"),
    ]
    archive = write_tar_archive(tmp_path / "cache.tar", members)

    summary = restore_archive(archive, compressed=False, destination=restore_root)

    assert os.readlink(restore_root / "links" / "to-f") == "../d/f.txt"
    assert os.readlink(restore_root / "links" / "dangling") == "/nowhere/at/all"
    assert (restore_root / "links" / "to-f").read_text() == "hi"
    assert summary.entries["symlink"] == 2


@posix_only
def test_symlink_restore_replaces_existing_link(tmp_path, restore_root) -> None:
    members = [MemberSpec("current", type_flag=tarfile.SYMTYPE, linkname="v2")]
    archive = write_tar_archive(tmp_path / "cache.tar", members)
    os.symlink("v1", restore_root / "current")

    restore_archive(archive, compressed=False, destination=restore_root)
    restore_archive(archive, compressed=False, destination=restore_root)

    assert os.readlink(restore_root / "current") == "v2"


@posix_only
def test_hardlink_source_is_nested_under_entry_name(tmp_path, restore_root) -> None:
    members = [
        MemberSpec("d/f.txt", data="shared"),
        MemberSpec("d/hard", type_flag=tarfile.LNKTYPE, linkname="../f.txt"),
    ]
    archive = write_tar_archive(tmp_path / "cache.tar", members)

    summary = restore_archive(archive, compressed=False, destination=restore_root)

    original = restore_root / "d" / "f.txt"
    linked = restore_root / "d" / "hard"
    assert linked.read_text() == "shared"
    assert os.path.samefile(original, linked)
    assert original.stat().st_nlink == 2
    assert summary.entries["hardlink"] == 1


@posix_only
def test_hardlink_with_archive_root_relative_target_fails(tmp_path, restore_root) -> None:
    members = [
        MemberSpec("d/f.txt", data="shared"),
        MemberSpec("d/hard", type_flag=tarfile.LNKTYPE, linkname="d/f.txt"),
    ]
    archive = write_tar_archive(tmp_path / "cache.tar", members)

    with pytest.raises(RestoreError) as excinfo:
        restore_archive(archive, compressed=False, destination=restore_root)

    assert excinfo.value.entry_name == "d/hard"
    assert not (restore_root / "d" / "hard").exists()
    assert (restore_root / "d" / "f.txt").read_text() == "shared"


# ============================================================================
# FAILURE TESTS
# ============================================================================


def test_unknown_type_flag_fails_without_applying_entry(tmp_path, restore_root) -> None:
    members = [
        MemberSpec("before.txt", data="kept"),
        MemberSpec("mystery", type_flag=b"Z"),
        MemberSpec("after.txt", data="never"),
    ]
    archive = write_tar_archive(tmp_path / "cache.tar", members)

    with pytest.raises(RestoreError, match="mystery: unknown type flag: Z") as excinfo:
        restore_archive(archive, compressed=False, destination=restore_root)

    assert excinfo.value.entry_name == "mystery"
    assert excinfo.value.type_code == "Z"
    assert (restore_root / "before.txt").read_text() == "kept"
    assert not (restore_root / "mystery").exists()
    assert not (restore_root / "after.txt").exists()


def test_contiguous_file_type_is_unknown() -> None:
    member = tarfile.TarInfo("contig")
    member.type = tarfile.CONTTYPE

    with pytest.raises(RestoreError, match="unknown type flag: 7"):
        ArchiveEntry.from_tarinfo(member)


def test_entry_from_tarinfo_maps_metadata() -> None:
    member = tarfile.TarInfo("bin/tool")
    member.type = tarfile.REGTYPE
    member.mode = 0o104755
    member.mtime = MTIME
    member.size = 42

    entry = ArchiveEntry.from_tarinfo(member)

    assert entry.kind is EntryKind.REGULAR_FILE
    assert entry.mode == 0o4755
    assert entry.mtime == float(MTIME)
    assert entry.size == 42
    assert entry.type_code == "0"
    assert entry.kind.is_data


def test_compressed_archive_fails_with_uncompressed_decoder(tmp_path, restore_root) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members(), compressed=True)

    with pytest.raises(RestoreError, match="Failed to decode archive"):
        restore_archive(archive, compressed=False, destination=restore_root)

    assert list(restore_root.iterdir()) == []


def test_uncompressed_archive_fails_with_gzip_decoder(tmp_path, restore_root) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())

    with pytest.raises(RestoreError):
        restore_archive(archive, compressed=True, destination=restore_root)

    assert list(restore_root.iterdir()) == []


def test_truncated_archive_fails(tmp_path, restore_root) -> None:
    payload = build_tar_bytes([MemberSpec("big.bin", data=b"x" * 4096)])
    archive = tmp_path / "cache.tar"
    archive.write_bytes(payload[:1024])

    with pytest.raises(RestoreError):
        restore_archive(archive, compressed=False, destination=restore_root)


def _three_file_archive() -> bytes:
    # Each member occupies one header block and one data block.
    return build_tar_bytes(
        [
            MemberSpec("a.txt", data="one"),
            MemberSpec("b.txt", data="two"),
            MemberSpec("c.txt", data="three"),
        ]
    )


def test_corrupt_later_header_fails(tmp_path, restore_root) -> None:
    data = bytearray(_three_file_archive())
    second_header = 1024
    data[second_header + 148 : second_header + 156] = b"0000000\x00"
    archive = tmp_path / "cache.tar"
    archive.write_bytes(bytes(data))

    with pytest.raises(RestoreError, match="Failed to decode archive"):
        restore_archive(archive, compressed=False, destination=restore_root)

    assert (restore_root / "a.txt").read_text() == "one"
    assert not (restore_root / "c.txt").exists()


def test_archive_truncated_inside_later_header_fails(tmp_path, restore_root) -> None:
    archive = tmp_path / "cache.tar"
    archive.write_bytes(_three_file_archive()[: 1024 + 200])

    with pytest.raises(RestoreError, match="Failed to decode archive"):
        restore_archive(archive, compressed=False, destination=restore_root)


def test_archive_truncated_inside_member_padding_fails(tmp_path, restore_root) -> None:
    archive = tmp_path / "cache.tar"
    archive.write_bytes(_three_file_archive()[: 512 + 3])

    with pytest.raises(RestoreError):
        restore_archive(archive, compressed=False, destination=restore_root)


def test_archive_ending_on_block_boundary_without_marker_succeeds(
    tmp_path, restore_root
) -> None:
    archive = tmp_path / "cache.tar"
    archive.write_bytes(_three_file_archive()[:1024])

    summary = restore_archive(archive, compressed=False, destination=restore_root)

    assert summary.total_entries == 1
    assert (restore_root / "a.txt").read_text() == "one"


def test_truncated_gzip_stream_fails(tmp_path, restore_root) -> None:
    payload = build_tar_bytes(_basic_members(), compressed=True)
    archive = tmp_path / "cache.tar"
    archive.write_bytes(payload[: len(payload) // 2])

    with pytest.raises(RestoreError):
        restore_archive(archive, compressed=True, destination=restore_root)


def test_missing_archive_fails(tmp_path, restore_root) -> None:
    with pytest.raises(RestoreError, match="Failed to read archive"):
        restore_archive(tmp_path / "absent.tar", compressed=False, destination=restore_root)


def test_filesystem_failure_is_reported_with_entry_name(tmp_path, restore_root) -> None:
    (restore_root / "d").write_text("a file where a directory is expected")
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())

    with pytest.raises(RestoreError, match="d: failed to restore directory") as excinfo:
        restore_archive(archive, compressed=False, destination=restore_root)

    assert excinfo.value.entry_name == "d"
    assert isinstance(excinfo.value.__cause__, OSError)


def test_entry_debug_logging(tmp_path, restore_root, caplog) -> None:
    archive = write_tar_archive(tmp_path / "cache.tar", _basic_members())
    logger = logging.getLogger("test.cache_pull.entries")
    logger.setLevel(logging.DEBUG)
    caplog.set_level(logging.DEBUG, logger="test.cache_pull.entries")

    restore_archive(archive, compressed=False, destination=restore_root, logger=logger)

    restored = [r for r in caplog.records if r.getMessage() == "restored entry"]
    assert [r.entry for r in restored] == ["d", "d/f.txt", "d/sub/nested.bin"]
    assert all(r.stage == "restore" for r in restored)


def test_appliers_cover_every_kind() -> None:
    assert set(archive_mod._APPLIERS) == set(EntryKind)
