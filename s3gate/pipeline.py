# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-request verify, authorize, re-sign and forward pipeline.

``RequestPipeline.handle`` is the single error boundary: gateway errors
become bare 403/413/500 responses, anything unexpected is logged and
becomes a bare 500.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import urllib.parse
from collections.abc import Iterable, Iterator
from typing import IO

from werkzeug.datastructures import Headers
from werkzeug.wrappers import Request, Response

from s3gate.authorizer import BucketAuthorizer
from s3gate.errors import AuthMismatch, GatewayError, PayloadTooLarge
from s3gate.forwarder import CHUNK_SIZE, ProxyForwarder
from s3gate.signing.authenticator import RequestAuthenticator
from s3gate.signing.calculator import (
    CONTENT_SHA256_HEADER,
    SignatureCalculator,
)
from s3gate.signing.canonical import check_clock_skew
from s3gate.signing.chunked import (
    STREAMING_PAYLOAD_TRAILER,
    STREAMING_VALUES,
    ChunkedPayloadResigner,
    resign_stream,
)
from s3gate.signing.key_cache import SigningKeyCache
from s3gate.signing.types import (
    Credential,
    SignedRequest,
    SigningMetadata,
    format_authorization,
)


logger = logging.getLogger(__name__)

DEFAULT_MAX_HASHED_BODY_BYTES = 16 * 1024 * 1024

_WHITESPACE_RE = re.compile(r"\s")


def request_target(environ: dict) -> tuple[str, str]:
    """Raw (still percent-encoded) path and query string of a request.

    Prefers the request line as received (``REQUEST_URI`` / ``RAW_URI``,
    set by werkzeug, gunicorn and uWSGI) and falls back to re-quoting
    ``PATH_INFO``.
    """
    raw = environ.get("REQUEST_URI") or environ.get("RAW_URI")
    if raw:
        if "://" in raw:
            # Absolute-form request line
            raw = urllib.parse.urlsplit(raw)._replace(scheme="", netloc="")
            raw = raw.geturl()
        path, _, query = raw.partition("?")
        return path or "/", query
    path = urllib.parse.quote(
        environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", ""),
        safe="/-_.~!$&'()*+,;=:@",
    )
    return path or "/", environ.get("QUERY_STRING", "")


def _iter_stream(stream: IO[bytes]) -> Iterator[bytes]:
    while chunk := stream.read(CHUNK_SIZE):
        yield chunk


def _read_bounded(stream: IO[bytes], limit: int) -> bytes:
    data = stream.read(limit + 1)
    if len(data) > limit:
        raise PayloadTooLarge(f"Body exceeds {limit} bytes")
    return data


def _squash(value: str) -> bytes:
    return _WHITESPACE_RE.sub("", value).encode("utf-8")


def _replace_query_params(query: str, updates: dict[str, str]) -> str:
    """Replace parameter values in a raw query string.

    Other parameters keep their original encoding and order.
    """
    items: list[str] = []
    for item in query.split("&"):
        key = urllib.parse.unquote(item.partition("=")[0])
        if key in updates:
            item = f"{key}={urllib.parse.quote(updates[key], safe='')}"
        items.append(item)
    return "&".join(items)


class RequestPipeline:
    """Verifies, authorizes, re-signs and forwards inbound requests.

    Owns the signing-key cache shared by all requests it handles.
    """

    def __init__(
        self,
        *,
        verification_credential: Credential,
        upstream_credential: Credential,
        authorizer: BucketAuthorizer,
        forwarder: ProxyForwarder,
        key_cache: SigningKeyCache | None = None,
        max_hashed_body_bytes: int = DEFAULT_MAX_HASHED_BODY_BYTES,
        log: logging.Logger | None = None,
    ) -> None:
        self.verification_credential = verification_credential
        self.upstream_credential = upstream_credential
        self.authorizer = authorizer
        self.forwarder = forwarder
        self.key_cache = key_cache or SigningKeyCache()
        self.calculator = SignatureCalculator(self.key_cache)
        self.log = log or logger
        self.authenticator = RequestAuthenticator(self.log)
        self.max_hashed_body_bytes = max_hashed_body_bytes

    def handle(self, request: Request) -> Response:
        """Handle one inbound request end to end."""
        target = request.environ.get("REQUEST_URI") or request.path
        try:
            path, query = request_target(request.environ)
            target = f"{path}?{query}" if query else path
            return self._handle(request, path, query, target)
        except GatewayError as e:
            self.log.error(
                "%d\t%s\t%s\t-\t%s", e.status, request.method, target, e
            )
            return Response(status=e.status)
        except Exception:
            self.log.exception("Error handling request: %s", target)
            return Response(status=500)

    def _handle(
        self, request: Request, path: str, query: str, target: str
    ) -> Response:
        signed = SignedRequest(
            method=request.method,
            path=path,
            query_string=query,
            headers=Headers(list(request.headers.items())),
        )
        metadata = self.authenticator.authenticate(signed)

        body: Iterable[bytes] | bytes | None = None
        if _has_body(request):
            if self._needs_body_hash(signed, metadata):
                data = _read_bounded(
                    request.stream, self.max_hashed_body_bytes
                )
                signed = signed.evolve(
                    body_hash=hashlib.sha256(data).hexdigest()
                )
                body = data
            else:
                body = _iter_stream(request.stream)

        self.verify(signed, metadata)
        self.authorizer.check(path)

        skewed, drift = check_clock_skew(metadata.amz_date)
        if skewed:
            self.log.warning(
                "Clock skew of %d minutes on %s (x-amz-date %s)",
                drift,
                target,
                metadata.amz_date,
            )

        outbound, outbound_signature = self.resign(signed, metadata)
        if body is not None and not isinstance(body, bytes):
            body = self._resign_body(
                signed, metadata, outbound_signature, body
            )
        return self.forwarder.forward(outbound, body, target=target)

    @staticmethod
    def _needs_body_hash(
        request: SignedRequest, metadata: SigningMetadata
    ) -> bool:
        return not metadata.is_presigned and not request.headers.get(
            CONTENT_SHA256_HEADER
        )

    def verify(self, request: SignedRequest, metadata: SigningMetadata) -> None:
        """Check the client's signature against the verification credential.

        The expected and given authorization strings are compared with
        all whitespace removed, in constant time.

        Raises:
            AuthMismatch: If they differ.
        """
        expected = self.calculator.authorization(
            request, metadata, self.verification_credential
        )
        if not hmac.compare_digest(
            _squash(expected), _squash(metadata.authorization)
        ):
            raise AuthMismatch(
                f"Incorrect authorization {metadata.authorization}"
            )

    def resign(
        self, request: SignedRequest, metadata: SigningMetadata
    ) -> tuple[SignedRequest, str]:
        """Re-sign *request* for the upstream.

        Replaces ``Host`` with the upstream host and the credential and
        signature (header or query parameters) with ones computed from the
        upstream credential.  Everything else is left as is.

        Returns:
            Tuple of (re-signed request, new signature).
        """
        headers = request.headers.copy()
        headers["Host"] = self.forwarder.host
        outbound = request.evolve(headers=headers)
        credential = (
            f"{self.upstream_credential.access_key_id}/{metadata.scope}"
        )

        if metadata.is_presigned:
            outbound = outbound.evolve(
                query_string=_replace_query_params(
                    request.query_string, {"X-Amz-Credential": credential}
                )
            )
            signature = self.calculator.signature(
                outbound, metadata, self.upstream_credential
            )
            return (
                outbound.evolve(
                    query_string=_replace_query_params(
                        outbound.query_string, {"X-Amz-Signature": signature}
                    )
                ),
                signature,
            )

        signature = self.calculator.signature(
            outbound, metadata, self.upstream_credential
        )
        headers["Authorization"] = format_authorization(
            metadata.algorithm,
            credential,
            metadata.signed_headers_value,
            signature,
        )
        return outbound, signature

    def _resign_body(
        self,
        request: SignedRequest,
        metadata: SigningMetadata,
        outbound_signature: str,
        body: Iterable[bytes],
    ) -> Iterable[bytes]:
        content_sha256 = request.headers.get(CONTENT_SHA256_HEADER, "")
        if metadata.is_presigned or content_sha256 not in STREAMING_VALUES:
            return body
        resigner = ChunkedPayloadResigner(
            verify_key=self.calculator.signing_key(
                self.verification_credential, metadata
            ),
            sign_key=self.calculator.signing_key(
                self.upstream_credential, metadata
            ),
            amz_date=metadata.amz_date,
            scope=str(metadata.scope),
            inbound_seed=metadata.signature,
            outbound_seed=outbound_signature,
            has_trailer=content_sha256 == STREAMING_PAYLOAD_TRAILER,
            max_chunk_size=self.max_hashed_body_bytes,
        )
        return resign_stream(body, resigner)


def _has_body(request: Request) -> bool:
    """Whether the request carries a body to forward."""
    if request.environ.get("wsgi.input_terminated"):
        return True
    return bool(request.content_length)
