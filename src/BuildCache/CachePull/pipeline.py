"""Cache pull orchestration: resolve, fetch, restore.

The run is a linear state machine::

    INIT -> RESOLVING -> FETCHING (x2) -> RESTORING (x2) -> DONE

Resolution happens once and any failure there is terminal.  Fetching and
restoring each get one immediate retry through
:func:`~BuildCache.CachePull.network.retry.run_with_retry`; the fetch retry
reuses the resolved URL, and the restore retry switches from the plain tar
decoder to the gzip one.  A second failure in either stage is terminal.

An empty cache API URL means no cache exists for this build yet, so the run is
skipped successfully without touching the network or the filesystem.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional

from .fetcher import download_archive
from .io.archive import RestoreSummary, restore_archive
from .logging_utils import get_logger, redact_url
from .network.client import http_client
from .network.retry import DEFAULT_STAGE_ATTEMPTS, run_with_retry
from .resolver import resolve_download_url
from .settings import Settings

__all__ = ["PipelineState", "PullResult", "StageTiming", "pull_cache"]


class PipelineState(str, Enum):
    """Stages of a cache pull run."""

    INIT = "init"
    RESOLVING = "resolve"
    FETCHING = "fetch"
    RESTORING = "restore"
    DONE = "done"


@dataclass(frozen=True)
class StageTiming:
    """Wall-clock duration of one pipeline stage."""

    stage: str
    attempts: int
    duration_ms: float


@dataclass
class PullResult:
    """Outcome of :func:`pull_cache`."""

    status: str
    state: PipelineState = PipelineState.INIT
    bytes_downloaded: int = 0
    fetch_attempts: int = 0
    restore_attempts: int = 0
    restore: Optional[RestoreSummary] = None
    timings: List[StageTiming] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"


class _StageClock:
    def __init__(self) -> None:
        self.attempts = 1


@contextmanager
def _timed_stage(
    stage: PipelineState, result: PullResult, logger: logging.Logger
) -> Iterator[_StageClock]:
    result.state = stage
    clock = _StageClock()
    started = time.perf_counter()
    try:
        yield clock
    finally:
        duration_ms = (time.perf_counter() - started) * 1000.0
        result.timings.append(
            StageTiming(stage=stage.value, attempts=clock.attempts, duration_ms=duration_ms)
        )
        logger.info(
            "%s took %.1f ms",
            stage.value,
            duration_ms,
            extra={"stage": stage.value, "duration_ms": round(duration_ms, 2)},
        )


def pull_cache(
    settings: Settings,
    *,
    destination: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> PullResult:
    """Download the cache archive and restore it under ``destination``.

    Args:
        settings: Resolved configuration; carries the debug flag.
        destination: Restoration root; defaults to the current directory.
        logger: Logger for progress records; defaults to the package logger.

    Returns:
        :class:`PullResult` with ``status`` ``"skipped"`` or ``"restored"``.

    Raises:
        ResolutionError: When the cache API exchange fails.
        FetchError: When both download attempts fail.
        RestoreError: When both the plain and the gzip restoration fail.
    """

    log = logger or get_logger()
    result = PullResult(status="skipped")

    if settings.is_debug_mode:
        log.debug("settings: %s", settings.masked_dump(), extra={"stage": "config"})

    if not settings.has_cache_api_url:
        log.info(
            "No cache API URL specified, there's no cache to use, exiting.",
            extra={"stage": "config"},
        )
        result.state = PipelineState.DONE
        return result

    archive_path = settings.archive_path

    with http_client(settings) as client:
        log.info("resolving cache download URL", extra={"stage": "resolve"})
        with _timed_stage(PipelineState.RESOLVING, result, log):
            download_url = resolve_download_url(
                settings.cache_api_url,
                client=client,
                timeout=settings.resolve_timeout_sec,
                logger=log,
            )
        if settings.is_debug_mode:
            log.debug(
                "download URL: %s",
                download_url,
                extra={"stage": "resolve", "url": redact_url(download_url)},
            )

        log.info("downloading cache archive", extra={"stage": "fetch"})
        with _timed_stage(PipelineState.FETCHING, result, log) as clock:
            fetched = run_with_retry(
                lambda attempt: download_archive(
                    download_url,
                    archive_path,
                    client=client,
                    timeout=settings.download_timeout,
                    logger=log,
                ),
                stage=PipelineState.FETCHING.value,
                max_attempts=DEFAULT_STAGE_ATTEMPTS,
                logger=log,
            )
            clock.attempts = fetched.attempts
        result.bytes_downloaded = fetched.value
        result.fetch_attempts = fetched.attempts

    log.info("uncompressing archive", extra={"stage": "restore"})
    with _timed_stage(PipelineState.RESTORING, result, log) as clock:
        restored = run_with_retry(
            lambda attempt: restore_archive(
                archive_path,
                compressed=attempt > 1,
                destination=destination,
                logger=log,
            ),
            stage=PipelineState.RESTORING.value,
            max_attempts=DEFAULT_STAGE_ATTEMPTS,
            logger=log,
        )
        clock.attempts = restored.attempts
    result.restore = restored.value
    result.restore_attempts = restored.attempts
    result.status = "restored"
    result.state = PipelineState.DONE
    log.info("finished", extra={"stage": PipelineState.DONE.value})
    return result
