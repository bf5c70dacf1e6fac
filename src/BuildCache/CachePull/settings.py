"""Process configuration for the cache pull step.

The build pipeline hands configuration to the step through environment
variables.  ``cache_api_url`` and ``is_debug_mode`` are the two inputs the
pipeline always sets; the remaining ``cache_*`` variables tune local paths,
timeouts, and logging.  Values are resolved once into an immutable
:class:`Settings` instance that is threaded explicitly through every component.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .logging_utils import mask_sensitive_data, redact_url

__all__ = [
    "DEFAULT_ARCHIVE_PATH",
    "DEFAULT_RESOLVE_TIMEOUT_SEC",
    "DEFAULT_DOWNLOAD_TIMEOUT_SEC",
    "Settings",
    "load_settings",
]

DEFAULT_ARCHIVE_PATH = Path("/tmp/cache-archive.tar")
DEFAULT_RESOLVE_TIMEOUT_SEC = 20.0
DEFAULT_DOWNLOAD_TIMEOUT_SEC = 300.0

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    """Environment-derived configuration for a single cache pull run."""

    cache_api_url: str = Field(default="", alias="cache_api_url")
    is_debug_mode: bool = Field(default=False, alias="is_debug_mode")
    archive_path: Path = Field(default=DEFAULT_ARCHIVE_PATH, alias="cache_archive_path")
    resolve_timeout_sec: float = Field(
        default=DEFAULT_RESOLVE_TIMEOUT_SEC, gt=0, alias="cache_resolve_timeout_sec"
    )
    download_timeout_sec: float = Field(
        default=DEFAULT_DOWNLOAD_TIMEOUT_SEC, ge=0, alias="cache_download_timeout_sec"
    )
    tls_verify: bool = Field(default=True, alias="cache_tls_verify")
    log_level: str = Field(default="INFO", alias="cache_log_level")
    log_dir: Optional[Path] = Field(default=None, alias="cache_log_dir")

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("cache_api_url", mode="before")
    @classmethod
    def _strip_url(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("is_debug_mode", mode="before")
    @classmethod
    def _parse_debug_flag(cls, value: object) -> bool:
        # Only the literal string "true" enables debug mode.
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        return str(value).strip().lower() == "true"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: object) -> str:
        level = str(value or "INFO").strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @property
    def has_cache_api_url(self) -> bool:
        """Return ``True`` when a cache API endpoint was configured."""

        return bool(self.cache_api_url)

    @property
    def effective_log_level(self) -> str:
        """Return the log level, forcing ``DEBUG`` when debug mode is on."""

        return "DEBUG" if self.is_debug_mode else self.log_level

    @property
    def download_timeout(self) -> Optional[float]:
        """Return the download timeout in seconds or ``None`` when disabled."""

        return self.download_timeout_sec or None

    def masked_dump(self) -> Dict[str, object]:
        """Return a log-safe dictionary of the settings."""

        payload: Dict[str, object] = {
            "cache_api_url": redact_url(self.cache_api_url) if self.cache_api_url else "",
            "is_debug_mode": self.is_debug_mode,
            "archive_path": str(self.archive_path),
            "resolve_timeout_sec": self.resolve_timeout_sec,
            "download_timeout_sec": self.download_timeout_sec,
            "tls_verify": self.tls_verify,
            "log_level": self.log_level,
            "log_dir": str(self.log_dir) if self.log_dir else None,
        }
        return mask_sensitive_data(payload)


def load_settings(**overrides: object) -> Settings:
    """Resolve :class:`Settings` from the environment plus explicit overrides.

    ``overrides`` use field names (``cache_api_url``, ``archive_path``, ...);
    entries whose value is ``None`` are ignored so CLI options that were not
    given fall back to the environment.

    Raises:
        ConfigError: If any value fails validation.
    """

    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**explicit)
    except ValidationError as exc:
        raise ConfigError(f"Invalid cache pull configuration: {exc}") from exc
