# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the upstream forwarder and response relay."""

import logging
from collections.abc import Iterator

import httpx
import pytest
from werkzeug.datastructures import Headers

from s3gate.errors import UpstreamUnreachable
from s3gate.forwarder import ProxyForwarder, RelayBody, upstream_host
from s3gate.signing.types import SignedRequest
from tests.fake_upstream import FakeUpstream


def _forwarder(upstream: FakeUpstream) -> ProxyForwarder:
    return ProxyForwarder(
        "http://s3.upstream.test:9000",
        client=httpx.Client(transport=httpx.MockTransport(upstream)),
    )


def _body(response: object) -> bytes:
    return b"".join(response.response)  # type: ignore[attr-defined]


def _request(**changes: object) -> SignedRequest:
    request = SignedRequest(
        method="GET",
        path="/bucket/key.txt",
        headers=Headers(
            [
                ("Host", "s3.upstream.test:9000"),
                ("Authorization", "AWS4-HMAC-SHA256 ..."),
                ("Connection", "keep-alive"),
                ("X-Amz-Meta-A", "1"),
                ("X-Amz-Meta-A", "2"),
            ]
        ),
    )
    return request.evolve(**changes)


class TestUpstreamHost:
    """Tests for upstream_host."""

    @pytest.mark.parametrize(
        ("url", "host"),
        [
            ("https://s3.example.com", "s3.example.com"),
            ("https://s3.example.com:443", "s3.example.com"),
            ("http://s3.example.com:80/", "s3.example.com"),
            ("http://minio:9000", "minio:9000"),
            ("https://s3.example.com:8443/base", "s3.example.com:8443"),
            ("http://[::1]:9000", "[::1]:9000"),
        ],
    )
    def test_host(self, url: str, host: str) -> None:
        assert upstream_host(url) == host

    @pytest.mark.parametrize(
        "url", ["s3.example.com", "ftp://s3.example.com", "https://", ""]
    )
    def test_invalid(self, url: str) -> None:
        with pytest.raises(ValueError, match="http"):
            upstream_host(url)


class TestProxyForwarder:
    """Tests for ProxyForwarder.forward."""

    def test_forwards_method_url_and_headers(self) -> None:
        upstream = FakeUpstream()
        response = _forwarder(upstream).forward(
            _request(query_string="acl"), None, target="/bucket/key.txt?acl"
        )
        assert _body(response) == b"hello"

        sent = upstream.last
        assert sent.method == "GET"
        assert str(sent.url) == (
            "http://s3.upstream.test:9000/bucket/key.txt?acl"
        )
        assert sent.headers["host"] == "s3.upstream.test:9000"
        assert sent.headers["authorization"] == "AWS4-HMAC-SHA256 ..."
        assert sent.headers.get_list("x-amz-meta-a") == ["1", "2"]
        assert "connection" not in sent.headers
        assert "user-agent" not in sent.headers
        assert "accept-encoding" not in sent.headers

    def test_body_forwarded(self) -> None:
        upstream = FakeUpstream()
        _forwarder(upstream).forward(
            _request(method="PUT"), iter([b"abc", b"def"]), target="/bucket"
        )
        assert upstream.bodies == [b"abcdef"]

    def test_response_status_and_headers(self) -> None:
        upstream = FakeUpstream()
        upstream.status = 404
        upstream.body = b"<Error/>"
        upstream.headers = {
            "Content-Type": "application/xml",
            "X-Amz-Request-Id": "req-1",
        }
        response = _forwarder(upstream).forward(
            _request(), None, target="/bucket/key.txt"
        )
        assert response.status_code == 404
        assert response.headers["Content-Type"] == "application/xml"
        assert response.headers["X-Amz-Request-Id"] == "req-1"
        assert response.headers["Content-Length"] == "8"
        assert _body(response) == b"<Error/>"

    def test_no_default_content_type(self) -> None:
        """Missing upstream Content-Type is not filled in."""
        upstream = FakeUpstream()
        upstream.headers = {}
        response = _forwarder(upstream).forward(
            _request(), None, target="/bucket/key.txt"
        )
        assert "Content-Type" not in response.headers

    def test_connect_error(self) -> None:
        upstream = FakeUpstream()
        upstream.error = httpx.ConnectError
        with pytest.raises(UpstreamUnreachable) as exc_info:
            _forwarder(upstream).forward(_request(), None, target="/b/k")
        assert exc_info.value.status == 500

    def test_completion_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        upstream = FakeUpstream()
        caplog.set_level(logging.INFO, logger="s3gate.forwarder")
        response = _forwarder(upstream).forward(
            _request(), None, target="/bucket/key.txt"
        )
        _body(response)
        assert "200\tGET\t/bucket/key.txt\t5" in caplog.messages

    def test_close_owned_client(self) -> None:
        forwarder = ProxyForwarder("http://s3.upstream.test")
        forwarder.close()
        assert forwarder.client.is_closed

    def test_injected_client_left_open(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(FakeUpstream()))
        ProxyForwarder("http://s3.upstream.test", client=client).close()
        assert not client.is_closed


def _broken_stream() -> Iterator[bytes]:
    yield b"par"
    raise httpx.ReadError("connection reset")


class TestRelayBody:
    """Tests for RelayBody."""

    def _upstream(self, content: object) -> httpx.Response:
        return httpx.Response(200, content=content)  # type: ignore[arg-type]

    def test_relays_and_logs_once(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO)
        log = logging.getLogger("test.relay")
        relay = RelayBody(
            self._upstream(iter([b"ab", b"cd"])),
            method="GET",
            target="/b/k",
            log=log,
        )
        assert b"".join(relay) == b"abcd"
        relay.close()
        assert caplog.messages == ["200\tGET\t/b/k\t4"]

    def test_close_before_iteration(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A client that goes away early still closes the upstream."""
        caplog.set_level(logging.INFO)
        upstream = self._upstream(iter([b"never read"]))
        relay = RelayBody(
            upstream, method="HEAD", target="/b/k", log=logging.getLogger("t")
        )
        relay.close()
        assert upstream.is_closed
        assert caplog.messages == ["200\tHEAD\t/b/k\t0"]

    def test_upstream_error_mid_stream(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A mid-body failure ends the relay and is logged."""
        caplog.set_level(logging.INFO)
        relay = RelayBody(
            self._upstream(_broken_stream()),
            method="GET",
            target="/b/k",
            log=logging.getLogger("t"),
        )
        assert b"".join(relay) == b"par"
        assert "Upstream stream failed for /b/k" in caplog.text
        assert "200\tGET\t/b/k\t3" in caplog.messages
