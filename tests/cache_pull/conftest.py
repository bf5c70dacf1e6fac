"""Shared fixtures for the cache pull test suite."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from BuildCache.CachePull.logging_utils import LOGGER_NAME
from BuildCache.CachePull.network.client import reset_http_client

_ENV_VARS = (
    "cache_api_url",
    "is_debug_mode",
    "cache_archive_path",
    "cache_resolve_timeout_sec",
    "cache_download_timeout_sec",
    "cache_tls_verify",
    "cache_log_level",
    "cache_log_dir",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Clear cache pull environment variables and any installed HTTP client."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(name.upper(), raising=False)
    reset_http_client()
    yield
    reset_http_client()
    _reset_package_logger()


def _reset_package_logger() -> None:
    """Undo ``setup_logging`` so later tests can capture records via caplog."""

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_cachepull_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def staging_path(tmp_path: Path) -> Path:
    """Staging file location inside the test's temporary directory."""

    staging = tmp_path / "staging"
    staging.mkdir()
    return staging / "cache-archive.tar"


@pytest.fixture
def restore_root(tmp_path: Path) -> Path:
    """Empty directory used as the restoration root."""

    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def test_logger() -> logging.Logger:
    logger = logging.getLogger("test.cache_pull")
    logger.setLevel(logging.DEBUG)
    return logger
