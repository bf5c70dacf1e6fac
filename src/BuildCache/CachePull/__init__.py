"""Public API for the build cache pull step.

The step asks the cache API for a short-lived download URL, streams the cache
archive to a staging file, and restores the archive's directories, files,
symlinks, and hard links relative to the working directory.
"""

from __future__ import annotations

from .errors import CachePullError, ConfigError, FetchError, ResolutionError, RestoreError
from .fetcher import download_archive
from .io.archive import ArchiveEntry, EntryKind, RestoreSummary, restore_archive
from .pipeline import PipelineState, PullResult, StageTiming, pull_cache
from .resolver import resolve_download_url
from .settings import Settings, load_settings

__version__ = "0.1.0"

__all__ = [
    "ArchiveEntry",
    "CachePullError",
    "ConfigError",
    "EntryKind",
    "FetchError",
    "PipelineState",
    "PullResult",
    "ResolutionError",
    "RestoreError",
    "RestoreSummary",
    "Settings",
    "StageTiming",
    "__version__",
    "download_archive",
    "load_settings",
    "pull_cache",
    "resolve_download_url",
    "restore_archive",
]
