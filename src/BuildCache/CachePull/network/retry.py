"""Bounded stage retries built on Tenacity.

The fetch and restore stages are each allowed exactly one immediate retry.
Both go through :func:`run_with_retry` so the policy lives in one place:

- **Attempts**: ``max_attempts`` (2 for both stages), no backoff, no jitter
- **Retryable failures**: :class:`~BuildCache.CachePull.errors.CachePullError`
  subclasses only; programming errors propagate on the first attempt
- **Attempt-aware stages**: the stage callable receives the 1-based attempt
  number, which lets the restore stage switch decoders on its second attempt
- **Final failure**: the last exception is re-raised unchanged

Example:
    >>> outcome = run_with_retry(
    ...     lambda attempt: download_archive(url, path, client=client),
    ...     stage="fetch",
    ... )
    >>> outcome.attempts
    1
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_none,
)

from ..errors import CachePullError

T = TypeVar("T")

__all__ = ["AttemptOutcome", "DEFAULT_STAGE_ATTEMPTS", "run_with_retry"]

DEFAULT_STAGE_ATTEMPTS = 2


@dataclass(frozen=True)
class AttemptOutcome(Generic[T]):
    """Value returned by a stage together with the attempt that produced it."""

    value: T
    attempts: int


def run_with_retry(
    stage_fn: Callable[[int], T],
    *,
    stage: str,
    max_attempts: int = DEFAULT_STAGE_ATTEMPTS,
    retry_on: Tuple[Type[BaseException], ...] = (CachePullError,),
    logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> AttemptOutcome[T]:
    """Call ``stage_fn(attempt)`` until it succeeds or ``max_attempts`` is reached."""

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    log = logger or logging.getLogger(__name__)

    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log.warning(
            "%s attempt %d failed, retrying: %s",
            stage,
            retry_state.attempt_number,
            exc,
            extra={
                "stage": stage,
                "attempt": retry_state.attempt_number,
                "max_attempts": max_attempts,
                "error": str(exc) if exc is not None else None,
            },
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )

    for attempt in retrying:
        with attempt:
            attempt_number = attempt.retry_state.attempt_number
            value = stage_fn(attempt_number)
        if not attempt.retry_state.outcome.failed:
            return AttemptOutcome(value=value, attempts=attempt_number)

    raise AssertionError("unreachable: tenacity exhausted without raising")  # pragma: no cover
