# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.errors",
#   "purpose": "Define the exception hierarchy used across URL resolution, fetching, and restoration",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "configuration", "name": "Configuration Errors", "anchor": "CFG", "kind": "api"},
#     {"id": "network", "name": "Resolution & Fetch Errors", "anchor": "NET", "kind": "api"},
#     {"id": "restore", "name": "Restoration Errors", "anchor": "RST", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across cache resolution, download, and restoration.

A cache pull runs three stages: asking the cache API for a short-lived
download URL, streaming the archive to the staging file, and restoring the
archive entries onto disk.  Each stage surfaces its first failure as one of the
subclasses below so the orchestrator can decide whether a retry is allowed and
the CLI can map terminal failures to an exit status.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "CachePullError",
    "ConfigError",
    "ResolutionError",
    "FetchError",
    "RestoreError",
]


class CachePullError(RuntimeError):
    """Base exception for cache resolution, download, or restoration failures."""


class ConfigError(CachePullError):
    """Raised when process configuration is invalid."""


class ResolutionError(CachePullError):
    """Raised when the cache API cannot produce a usable download URL."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchError(CachePullError):
    """Raised when streaming the archive into the staging file fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RestoreError(CachePullError):
    """Raised when decoding the archive or applying one of its entries fails."""

    def __init__(
        self,
        message: str,
        *,
        entry_name: Optional[str] = None,
        type_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.entry_name = entry_name
        self.type_code = type_code
