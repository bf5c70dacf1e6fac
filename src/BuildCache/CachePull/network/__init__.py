"""HTTP client construction and stage retry policy."""

from .client import configure_http_client, create_http_client, http_client, reset_http_client
from .retry import DEFAULT_STAGE_ATTEMPTS, AttemptOutcome, run_with_retry

__all__ = [
    "AttemptOutcome",
    "DEFAULT_STAGE_ATTEMPTS",
    "configure_http_client",
    "create_http_client",
    "http_client",
    "reset_http_client",
    "run_with_retry",
]
