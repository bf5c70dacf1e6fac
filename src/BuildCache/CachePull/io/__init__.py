"""Archive decoding and filesystem restoration."""

from .archive import ArchiveEntry, EntryKind, RestoreSummary, apply_entry, restore_archive
from .filesystem import compose_hardlink_source, format_bytes

__all__ = [
    "ArchiveEntry",
    "EntryKind",
    "RestoreSummary",
    "apply_entry",
    "compose_hardlink_source",
    "format_bytes",
    "restore_archive",
]
