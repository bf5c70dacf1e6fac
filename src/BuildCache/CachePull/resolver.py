"""Resolve the short-lived archive download URL from the cache API."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .errors import ResolutionError
from .logging_utils import redact_url
from .settings import DEFAULT_RESOLVE_TIMEOUT_SEC

__all__ = ["DownloadURLResponse", "resolve_download_url"]

_BODY_EXCERPT_CHARS = 1024


class DownloadURLResponse(BaseModel):
    """Payload returned by the cache API."""

    model_config = ConfigDict(extra="ignore")

    download_url: str = ""


def _excerpt(body: str) -> str:
    if len(body) <= _BODY_EXCERPT_CHARS:
        return body
    return body[:_BODY_EXCERPT_CHARS] + "..."


def resolve_download_url(
    api_url: str,
    *,
    client: httpx.Client,
    timeout: float = DEFAULT_RESOLVE_TIMEOUT_SEC,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Ask the cache API at ``api_url`` for a direct archive download URL.

    Issues exactly one GET with ``timeout`` seconds applied to every phase of
    the exchange.  Any status outside 200-202 means the cache does not exist
    yet or the API refused the request.

    Raises:
        ResolutionError: On a malformed URL, transport failure, an unexpected
            status, a body that is not a JSON object, or an empty
            ``download_url``.
    """

    log = logger or logging.getLogger(__name__)
    try:
        response = client.get(api_url, timeout=httpx.Timeout(timeout))
    except httpx.InvalidURL as exc:
        raise ResolutionError(f"Failed to create request: {exc}") from exc
    except httpx.HTTPError as exc:
        raise ResolutionError(f"Failed to send request: {exc}") from exc

    status = response.status_code
    body = response.text
    log.debug(
        "cache API responded",
        extra={"stage": "resolve", "status_code": status, "url": redact_url(api_url)},
    )

    if status < 200 or status > 202:
        raise ResolutionError(
            "Build cache not found (http-code: "
            f"{status}). Probably the cache is not initialised yet; "
            "the first cache push initialises it.",
            status_code=status,
        )

    try:
        payload = DownloadURLResponse.model_validate_json(body)
    except PydanticValidationError as exc:
        raise ResolutionError(
            f"Request sent, but failed to parse JSON response (http-code: {status}): "
            f"{_excerpt(body)}",
            status_code=status,
        ) from exc

    if not payload.download_url:
        raise ResolutionError(
            f"Request sent, but download URL is empty (http-code: {status}): {_excerpt(body)}",
            status_code=status,
        )

    return payload.download_url
