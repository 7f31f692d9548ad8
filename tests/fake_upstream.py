# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""In-process stand-in for the upstream object store."""

import httpx


class FakeUpstream:
    """``httpx.MockTransport`` handler that records what it receives.

    Answers every request with ``status``/``body``/``headers``; set
    ``error`` to an ``httpx`` exception class to fail requests instead.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []
        self.status = 200
        self.body = b"hello"
        self.headers = {"Content-Type": "text/plain", "ETag": '"abc123"'}
        self.error: type[httpx.RequestError] | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(request.content)
        if self.error is not None:
            raise self.error("upstream failure", request=request)
        return httpx.Response(
            self.status,
            headers={**self.headers, "Content-Length": str(len(self.body))},
            content=iter([self.body]),
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]
