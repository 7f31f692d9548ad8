# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Streaming forwarder from the gateway to the upstream object store.

Request and response bodies move in bounded chunks: the client body is
handed to ``httpx`` as an iterator and the upstream body is relayed with
``iter_raw()`` as it arrives, so large objects never sit in memory.
"""

from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Iterable, Iterator

import httpx
from werkzeug.wrappers import Response

from s3gate.errors import UpstreamUnreachable
from s3gate.signing.types import SignedRequest


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_DEFAULT_PORTS = {"http": 80, "https": 443}

# Connection-level headers that must not be copied between hops
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


def upstream_host(url: str) -> str:
    """``Host`` header value for *url* (port only when non-default).

    Raises:
        ValueError: If *url* is not an absolute http(s) URL.
    """
    parts = urllib.parse.urlsplit(url)
    if parts.scheme not in _DEFAULT_PORTS or not parts.hostname:
        raise ValueError(f"Upstream URL must be http(s)://host: {url!r}")
    netloc = parts.netloc.rpartition("@")[2]
    if parts.port == _DEFAULT_PORTS[parts.scheme]:
        netloc = netloc.rsplit(":", 1)[0]
    return netloc


class _RelayResponse(Response):
    """Response that adds no ``Content-Type`` of its own."""

    default_mimetype = None


class RelayBody:
    """WSGI response iterable relaying an upstream body.

    Logs the completion line exactly once, whether the body was fully
    relayed, cut short by an upstream error, or closed early because the
    client went away.  Closing also closes the upstream response.
    """

    def __init__(
        self,
        upstream: httpx.Response,
        *,
        method: str,
        target: str,
        log: logging.Logger,
    ) -> None:
        self.upstream = upstream
        self.method = method
        self.target = target
        self.bytes_relayed = 0
        self._log = log
        self._closed = False

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self.upstream.iter_raw():
                self.bytes_relayed += len(chunk)
                yield chunk
        except httpx.HTTPError as e:
            self._log.error(
                "Upstream stream failed for %s: %s", self.target, e
            )
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.upstream.close()
        self._log.info(
            "%d\t%s\t%s\t%d",
            self.upstream.status_code,
            self.method,
            self.target,
            self.bytes_relayed,
        )


class ProxyForwarder:
    """Sends re-signed requests upstream and relays the responses."""

    def __init__(
        self,
        upstream_url: str,
        *,
        connect_timeout: float = 10.0,
        read_timeout: float = 300.0,
        client: httpx.Client | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the forwarder.

        Args:
            upstream_url: Base URL of the upstream (scheme, host, port).
            connect_timeout: Seconds to wait for a connection.
            read_timeout: Seconds to wait between received bytes.
            client: Preconfigured ``httpx.Client`` (tests inject one with
                a mock transport).
            log: Logger for the per-request completion lines.
        """
        self.host = upstream_host(upstream_url)
        scheme = urllib.parse.urlsplit(upstream_url).scheme
        self.base_url = f"{scheme}://{self.host}"
        self.log = log or logger
        self._owns_client = client is None
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(
                read_timeout, connect=connect_timeout, pool=connect_timeout
            ),
            follow_redirects=False,
        )

    def forward(
        self,
        request: SignedRequest,
        body: Iterable[bytes] | bytes | None,
        *,
        target: str,
    ) -> Response:
        """Forward *request* and return a streaming relay response.

        Args:
            request: Re-signed request (path and query already final).
            body: Request body as a chunk iterator, bytes, or None.
            target: Original path and query, used in the log line.

        Returns:
            Response carrying upstream status and headers verbatim and
            a ``RelayBody`` as its body.

        Raises:
            UpstreamUnreachable: If the upstream cannot be reached or the
                request cannot be written.
        """
        headers = [
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]
        upstream_request = self.client.build_request(
            request.method,
            self.base_url + request.path_with_query,
            headers=headers,
            content=body,
        )
        # Client-level defaults (User-Agent, Accept-Encoding, ...) are not
        # part of the inbound request
        sent = {name.lower() for name, _ in headers}
        for name in self.client.headers:
            if name.lower() not in sent:
                del upstream_request.headers[name]
        try:
            upstream = self.client.send(upstream_request, stream=True)
        except httpx.TransportError as e:
            raise UpstreamUnreachable(
                f"Upstream request failed for {target}: {e!r}"
            ) from e

        relay = RelayBody(
            upstream, method=request.method, target=target, log=self.log
        )
        response_headers = [
            (name, value)
            for name, value in upstream.headers.multi_items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]
        return _RelayResponse(
            relay,
            status=upstream.status_code,
            headers=response_headers,
            direct_passthrough=True,
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
