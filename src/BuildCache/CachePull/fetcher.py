"""Stream the cache archive into the local staging file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx

from .errors import FetchError
from .io.filesystem import format_bytes
from .logging_utils import redact_url

__all__ = ["CHUNK_SIZE", "download_archive"]

CHUNK_SIZE = 1 << 20
_BODY_EXCERPT_CHARS = 1024


def _read_error_body(response: httpx.Response) -> str:
    try:
        response.read()
    except httpx.HTTPError as exc:
        return f"<failed to read response body: {exc}>"
    body = response.text
    if len(body) > _BODY_EXCERPT_CHARS:
        body = body[:_BODY_EXCERPT_CHARS] + "..."
    return body


def download_archive(
    url: str,
    destination: Path,
    *,
    client: httpx.Client,
    timeout: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Download ``url`` into ``destination`` and return the number of bytes written.

    ``destination`` is truncated when the server answers 200 and is then
    filled with the response body.  ``timeout`` bounds each network phase
    (connect, each read); ``None`` disables it.  One attempt per call.

    Raises:
        FetchError: On a malformed URL, transport failure, a non-200 status
            (the body excerpt is attached), or a local I/O error while writing.
    """

    log = logger or logging.getLogger(__name__)
    bytes_written = 0
    try:
        with client.stream("GET", url, timeout=httpx.Timeout(timeout)) as response:
            if response.status_code != 200:
                body = _read_error_body(response)
                raise FetchError(
                    "Failed to download archive - non success response code: "
                    f"{response.status_code}, body: {body}",
                    status_code=response.status_code,
                    body=body,
                )

            expected = response.headers.get("Content-Length")
            log.debug(
                "streaming cache archive",
                extra={
                    "stage": "fetch",
                    "url": redact_url(url),
                    "path": str(destination),
                    "bytes": int(expected) if expected and expected.isdigit() else None,
                },
            )
            try:
                with destination.open("wb") as stream:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        stream.write(chunk)
                        bytes_written += len(chunk)
            except OSError as exc:
                raise FetchError(
                    f"Failed to write the local cache file {destination}: {exc}"
                ) from exc
    except httpx.InvalidURL as exc:
        raise FetchError(f"Failed to create download request: {exc}") from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Failed to download archive: {exc}") from exc

    log.info(
        "downloaded cache archive (%s)",
        format_bytes(bytes_written),
        extra={"stage": "fetch", "bytes": bytes_written, "path": str(destination)},
    )
    return bytes_written
