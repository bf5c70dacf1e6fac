"""Helpers for exercising cache pulls without a real cache service.

Tests build archives with :func:`write_tar_archive` and route HTTP through
``httpx.MockTransport`` with :func:`use_mock_http_client`.
"""

from __future__ import annotations

import io
import tarfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator, Union

from .network.client import configure_http_client, reset_http_client

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    import httpx

__all__ = [
    "MemberSpec",
    "build_tar_bytes",
    "use_mock_http_client",
    "write_tar_archive",
]


@dataclass
class MemberSpec:
    """Tar member definition used to build test archives.

    ``type_flag`` is the raw tar type flag (``tarfile.REGTYPE`` by default) so
    tests can produce any entry kind, including unknown ones.
    """

    name: str
    data: Union[bytes, str] = b""
    type_flag: bytes = tarfile.REGTYPE
    mode: int = 0o644
    mtime: int = 1_600_000_000
    linkname: str = ""

    def payload(self) -> bytes:
        if isinstance(self.data, str):
            return self.data.encode("utf-8")
        return self.data


def build_tar_bytes(members: Iterable[MemberSpec], *, compressed: bool = False) -> bytes:
    """Return tar archive bytes holding ``members`` (gzip-wrapped when ``compressed``)."""

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz" if compressed else "w") as archive:
        for spec in members:
            info = tarfile.TarInfo(spec.name)
            info.type = spec.type_flag
            info.mode = spec.mode
            info.mtime = spec.mtime
            info.linkname = spec.linkname
            if spec.type_flag in (tarfile.REGTYPE, tarfile.AREGTYPE):
                payload = spec.payload()
                info.size = len(payload)
                archive.addfile(info, io.BytesIO(payload))
            else:
                archive.addfile(info)
    return buffer.getvalue()


def write_tar_archive(
    path: Path, members: Iterable[MemberSpec], *, compressed: bool = False
) -> Path:
    """Write a tar archive holding ``members`` to ``path`` and return ``path``."""

    path.write_bytes(build_tar_bytes(members, compressed=compressed))
    return path


@contextmanager
def use_mock_http_client(transport: "httpx.BaseTransport", **client_kwargs) -> Iterator["httpx.Client"]:
    """Temporarily install an HTTPX client backed by ``transport``."""

    import httpx

    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()
