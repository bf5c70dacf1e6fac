# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.network.client",
#   "purpose": "HTTPX client factory for cache API and archive downloads.",
#   "sections": [
#     {"id": "http-client", "name": "http_client", "anchor": "function-http-client", "kind": "function"},
#     {"id": "configure-http-client", "name": "configure_http_client", "anchor": "function-configure-http-client", "kind": "function"},
#     {"id": "reset-http-client", "name": "reset_http_client", "anchor": "function-reset-http-client", "kind": "function"},
#     {"id": "create-ssl-context", "name": "_create_ssl_context", "anchor": "function-create-ssl-context", "kind": "function"},
#     {"id": "create-http-client", "name": "create_http_client", "anchor": "function-create-http-client", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""HTTPX client factory.

A cache pull issues at most three requests (one resolution, up to two archive
downloads), so the client is created per run and closed when the run ends.
Timeouts are not set on the client itself; the resolver and fetcher pass their
own per-request timeouts.

Tests install a client backed by ``httpx.MockTransport`` through
:func:`configure_http_client`; an installed client is handed out as-is and is
never closed by :func:`http_client`.

Example:
    >>> from BuildCache.CachePull.network import http_client
    >>> with http_client(settings) as client:
    ...     response = client.get("https://cache.example.com/api")
"""

from __future__ import annotations

import logging
import ssl
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, Optional

import certifi
import httpx

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from ..settings import Settings

logger = logging.getLogger(__name__)

USER_AGENT = "cache-pull"

_configured_client: Optional[httpx.Client] = None
_client_lock = threading.Lock()


def configure_http_client(client: httpx.Client) -> None:
    """Install ``client`` as the client returned by :func:`http_client`."""

    global _configured_client
    with _client_lock:
        _configured_client = client


def reset_http_client() -> None:
    """Remove any client installed via :func:`configure_http_client`."""

    global _configured_client
    with _client_lock:
        _configured_client = None


def _create_ssl_context(verify: bool) -> ssl.SSLContext:
    """Create SSL context with the certifi bundle, or an unverified one."""

    if not verify:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS verification DISABLED")
        return ctx

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def create_http_client(*, tls_verify: bool = True) -> httpx.Client:
    """Create a fresh HTTPX client that follows redirects.

    Pre-signed download URLs commonly answer with a redirect to object
    storage, so redirects are followed.
    """

    client = httpx.Client(
        verify=_create_ssl_context(tls_verify),
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )
    logger.debug("HTTPX client created", extra={"stage": "http"})
    return client


@contextmanager
def http_client(settings: "Settings") -> Iterator[httpx.Client]:
    """Yield the client for one run, closing it afterwards when we created it."""

    with _client_lock:
        configured = _configured_client
    if configured is not None:
        yield configured
        return

    client = create_http_client(tls_verify=settings.tls_verify)
    try:
        yield client
    finally:
        client.close()


__all__ = [
    "USER_AGENT",
    "configure_http_client",
    "create_http_client",
    "http_client",
    "reset_http_client",
]
