# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Data types describing a SigV4-signed request.

These are plain values: parsing lives in ``authenticator``, signing in
``calculator``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from werkzeug.datastructures import Headers

from s3gate.errors import CredentialsMissing
from s3gate.signing.canonical import parse_query


@dataclass(frozen=True)
class Credential:
    """An access key pair.

    The secret is kept out of ``repr`` so a credential never ends up in
    a log line by accident.
    """

    access_key_id: str
    secret_key: str = field(repr=False)


@dataclass(frozen=True)
class CredentialScope:
    """The ``date/region/service/request_type`` part of a credential."""

    date: str
    region: str
    service: str
    request_type: str

    def __str__(self) -> str:
        return "/".join(
            [self.date, self.region, self.service, self.request_type]
        )

    @classmethod
    def parse(cls, credential: str) -> tuple[str, CredentialScope]:
        """Split ``accessKeyId/date/region/service/requestType``.

        Args:
            credential: The ``Credential=`` value from a signed request.

        Returns:
            Tuple of (access key id, scope).

        Raises:
            CredentialsMissing: If the value does not have exactly five
                slash-separated parts.
        """
        parts = credential.split("/")
        if len(parts) != 5:
            raise CredentialsMissing(
                f"Malformed credential: expected 5 parts, got {len(parts)}"
            )
        key_id, date, region, service, request_type = parts
        return key_id, cls(date, region, service, request_type)


@dataclass(frozen=True)
class SignedRequest:
    """The parts of an HTTP request that take part in signing.

    Attributes:
        method: HTTP method.
        path: Request path exactly as received (still percent-encoded).
        query_string: Raw query string without the leading ``?``.
        headers: Request headers (ordered, case-insensitive).
        body_hash: Hex SHA-256 of the body when it was buffered for
            hashing, otherwise None.
    """

    method: str
    path: str
    query_string: str = ""
    headers: Headers = field(default_factory=Headers)
    body_hash: str | None = None

    @property
    def query_params(self) -> list[tuple[str, str]]:
        """Decoded query parameters in their original order."""
        return parse_query(self.query_string)

    @property
    def path_with_query(self) -> str:
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    def evolve(self, **changes: object) -> SignedRequest:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass(frozen=True)
class SigningMetadata:
    """Signing information extracted from an inbound request.

    Attributes:
        algorithm: Signing algorithm, e.g. ``AWS4-HMAC-SHA256``.
        access_key_id: Access key the client signed with.
        scope: Parsed credential scope.
        signed_headers: Signed header names in the order given.
        signature: Hex signature sent by the client.
        amz_date: Request datetime (``YYYYMMDDTHHMMSSZ``).
    """

    algorithm: str
    access_key_id: str
    scope: CredentialScope
    signed_headers: tuple[str, ...]
    signature: str
    amz_date: str

    is_presigned = False

    @property
    def signed_headers_value(self) -> str:
        return ";".join(self.signed_headers)

    @property
    def credential(self) -> str:
        return f"{self.access_key_id}/{self.scope}"

    @property
    def authorization(self) -> str:
        """Authorization string in header form."""
        return format_authorization(
            self.algorithm,
            self.credential,
            self.signed_headers_value,
            self.signature,
        )


@dataclass(frozen=True)
class HeaderSigningMetadata(SigningMetadata):
    """Metadata taken from the ``Authorization`` header."""

    raw_authorization: str = ""

    @property
    def authorization(self) -> str:
        return self.raw_authorization


@dataclass(frozen=True)
class PresignedSigningMetadata(SigningMetadata):
    """Metadata taken from ``X-Amz-*`` query parameters."""

    is_presigned = True


def format_authorization(
    algorithm: str, credential: str, signed_headers: str, signature: str
) -> str:
    """Format an ``Authorization`` header value."""
    return (
        f"{algorithm} Credential={credential}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
