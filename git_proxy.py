"""Reverse proxy that syncs world repositories through a fixed upstream account.

``/git/<rest>`` becomes ``<upstream>/<account>/<rest>`` with the account's
Basic-Auth credential injected. Everything else about the request and the
upstream response is passed through unchanged.
"""

from __future__ import annotations

import base64
import logging
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from errors import Forbidden, UpstreamUnavailable

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)
# Recomputed by urllib (request side) or replaced by the injected credential.
_DROPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length", "authorization"}


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    """Hand 3xx responses back to the caller instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[no-untyped-def]
        return None


_opener = urllib.request.build_opener(_NoRedirect)


def _open(request: urllib.request.Request, timeout: float) -> Any:
    """Open ``request``; upstream HTTP error statuses are returned, not raised."""
    try:
        return _opener.open(request, timeout=timeout)
    except urllib.error.HTTPError as exc:
        return exc


@dataclass
class ProxiedResponse:
    status: int
    headers: list[tuple[str, str]]
    body: Iterator[bytes]


def _stream(upstream: Any) -> Iterator[bytes]:
    try:
        while True:
            chunk = upstream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        upstream.close()


class GitSyncProxy:
    def __init__(
        self,
        upstream_url: str,
        account: str,
        token: str,
        prefix: str = "/git",
        timeout_seconds: float = 60,
    ) -> None:
        self.upstream_url = upstream_url.rstrip("/")
        self.account = account
        self.prefix = "/" + prefix.strip("/")
        self.timeout_seconds = timeout_seconds
        self._authorization = ""
        if account and token:
            credential = base64.b64encode(f"{account}:{token}".encode("utf-8")).decode("ascii")
            self._authorization = f"Basic {credential}"

    def rewrite_path(self, path: str) -> str:
        """Map ``/git/<rest>`` onto the upstream account, refusing anything else.

        ``path`` is the undecoded request path. Dot segments, plain or
        percent-encoded, are refused so ``<rest>`` cannot climb out of the
        account.
        """
        if path != self.prefix and not path.startswith(self.prefix + "/"):
            raise Forbidden("Forbidden")
        rest = path[len(self.prefix):]
        for segment in rest.split("/"):
            decoded = urllib.parse.unquote(segment).replace("\\", "/")
            if any(part in (".", "..") for part in decoded.split("/")):
                raise Forbidden("Forbidden")
        return "/" + self.account + rest

    def forward(
        self,
        method: str,
        path: str,
        query: str,
        headers: Iterable[tuple[str, str]],
        body: bytes,
    ) -> ProxiedResponse:
        upstream_path = self.rewrite_path(path)
        if not self._authorization:
            log.error("git proxy has no upstream credential configured")
            raise UpstreamUnavailable("git proxy is not configured")

        target = self.upstream_url + upstream_path
        if query:
            target += "?" + query
        # urllib keeps one value per header name, so repeats are comma-joined.
        forwarded: dict[str, str] = {}
        for name, value in headers:
            if name.lower() in _DROPPED_REQUEST_HEADERS:
                continue
            key = name.capitalize()
            forwarded[key] = f"{forwarded[key]}, {value}" if key in forwarded else value
        forwarded["Authorization"] = self._authorization

        log.info("syncing world: %s %s", method, upstream_path)
        request = urllib.request.Request(
            target, data=body or None, headers=forwarded, method=method
        )
        try:
            upstream = _open(request, self.timeout_seconds)
        except (urllib.error.URLError, OSError) as exc:
            log.error("git upstream unreachable for %s %s: %s", method, upstream_path, exc)
            raise UpstreamUnavailable("git upstream unreachable") from exc

        response_headers = [
            (name, value)
            for name, value in upstream.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]
        status = upstream.status
        if status >= 500:
            log.warning("git upstream returned %s for %s %s", status, method, upstream_path)
        return ProxiedResponse(status=status, headers=response_headers, body=_stream(upstream))
