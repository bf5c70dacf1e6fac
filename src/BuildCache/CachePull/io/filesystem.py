# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.io.filesystem",
#   "purpose": "Filesystem primitives used when restoring archive entries",
#   "sections": [
#     {"id": "directories", "name": "Directory Creation", "anchor": "DIR", "kind": "helpers"},
#     {"id": "metadata", "name": "Mode & Timestamp Application", "anchor": "MET", "kind": "helpers"},
#     {"id": "links", "name": "Link Creation", "anchor": "LNK", "kind": "helpers"},
#     {"id": "formatting", "name": "Formatting Helpers", "anchor": "FMT", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem helpers for cache restoration.

Every helper raises :class:`OSError` on failure and leaves the translation into
:class:`~BuildCache.CachePull.errors.RestoreError` to the archive engine, which
knows the entry being applied.  The one exception is :func:`apply_mode`, which
swallows failures on platforms that cannot represent POSIX permission bits.
"""

from __future__ import annotations

import errno
import logging
import os
import sys
from pathlib import Path
from typing import Optional

__all__ = [
    "DIRECTORY_MODE",
    "apply_mode",
    "compose_hardlink_source",
    "ensure_directory",
    "ensure_parent_directory",
    "format_bytes",
    "replace_with_symlink",
    "set_mtime",
]

DIRECTORY_MODE = 0o755

_UNSUPPORTED_MODE_ERRNOS = {
    getattr(errno, "ENOTSUP", None),
    getattr(errno, "EOPNOTSUPP", None),
    getattr(errno, "ENOSYS", None),
} - {None}


def ensure_directory(path: Path) -> None:
    """Create ``path`` and any missing ancestors; succeed when it already exists."""

    os.makedirs(path, mode=DIRECTORY_MODE, exist_ok=True)


def ensure_parent_directory(path: Path) -> None:
    """Create the parent directories of ``path``."""

    ensure_directory(path.parent)


def _mode_errors_tolerated(exc: OSError) -> bool:
    if sys.platform.startswith("win"):
        return True
    return exc.errno in _UNSUPPORTED_MODE_ERRNOS


def apply_mode(path: Path, mode: int, *, logger: Optional[logging.Logger] = None) -> None:
    """Apply permission bits ``mode`` to ``path``.

    Failures are tolerated on Windows and on filesystems that report chmod as
    unsupported; anything else is re-raised.
    """

    try:
        os.chmod(path, mode)
    except OSError as exc:
        if not _mode_errors_tolerated(exc):
            raise
        if logger:
            logger.debug(
                "permission bits not applied",
                extra={"stage": "restore", "path": str(path), "error": str(exc)},
            )


def set_mtime(path: Path, mtime: float) -> None:
    """Set both access and modification time of ``path`` to ``mtime``."""

    os.utime(path, (mtime, mtime))


def replace_with_symlink(path: Path, target: str) -> None:
    """Create a symlink at ``path`` pointing at ``target``, replacing a non-directory."""

    if path.is_symlink() or (path.exists() and not path.is_dir()):
        path.unlink()
    os.symlink(target, path)


def compose_hardlink_source(name: str, link_target: str) -> str:
    """Return the path a hard-link entry links to.

    Archives written by the cache push step address hard-link targets relative
    to the link entry itself: the source is ``name`` and ``link_target`` joined
    and lexically cleaned.  An absolute ``link_target`` is still nested under
    ``name``.

    Examples:
        >>> compose_hardlink_source("d/hard", "../f.txt")
        'd/f.txt'
        >>> compose_hardlink_source("d/hard", "/abs")
        'd/hard/abs'
    """

    if not link_target:
        return os.path.normpath(name)
    return os.path.normpath(name + "/" + link_target)


def format_bytes(num: int) -> str:
    """Return a human-readable representation for ``num`` bytes."""

    value = float(num)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024.0 or unit == "TB":
            return f"{value:.2f} {unit}"
        value /= 1024.0
    return f"{value:.2f} TB"
