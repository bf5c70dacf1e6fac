from __future__ import annotations

import ssl

import httpx

from BuildCache.CachePull.network import client as client_module
from BuildCache.CachePull.network.client import (
    USER_AGENT,
    configure_http_client,
    http_client,
)
from BuildCache.CachePull.settings import load_settings


def test_http_client_hands_out_configured_client_without_closing() -> None:
    installed = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
    configure_http_client(installed)

    with http_client(load_settings()) as client:
        assert client is installed

    assert not installed.is_closed
    installed.close()


def test_http_client_creates_and_closes_its_own_client() -> None:
    with http_client(load_settings()) as client:
        assert client.follow_redirects is True
        assert client.headers["User-Agent"] == USER_AGENT

    assert client.is_closed


def test_create_ssl_context_verifies_by_default() -> None:
    ctx = client_module._create_ssl_context(True)

    assert ctx.verify_mode == ssl.CERT_REQUIRED
    assert ctx.check_hostname is True


def test_create_ssl_context_can_disable_verification(caplog) -> None:
    ctx = client_module._create_ssl_context(False)

    assert ctx.verify_mode == ssl.CERT_NONE
    assert "TLS verification DISABLED" in caplog.text
