# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Extraction of SigV4 signing metadata from inbound requests.

Two forms are accepted:

- Header form: ``Authorization: <alg> Credential=<cred>,
  SignedHeaders=<h1;h2>, Signature=<hex>`` plus ``x-amz-date``.
- Presigned form: ``X-Amz-Algorithm``, ``X-Amz-Credential``,
  ``X-Amz-SignedHeaders``, ``X-Amz-Date`` and ``X-Amz-Signature``
  query parameters.

The header form wins when both are present.
"""

from __future__ import annotations

import logging
import re

from s3gate.errors import CredentialsMissing, UnsupportedAlgorithm
from s3gate.signing.canonical import ALGORITHM
from s3gate.signing.types import (
    CredentialScope,
    HeaderSigningMetadata,
    PresignedSigningMetadata,
    SignedRequest,
    SigningMetadata,
)


_AUTH_HEADER_RE = re.compile(
    r"(?P<algorithm>.+) Credential=(?P<credential>.+),\s*"
    r"SignedHeaders=(?P<signed_headers>.+),\s*"
    r"Signature=(?P<signature>.+)"
)

PRESIGNED_PARAMS = (
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-SignedHeaders",
    "X-Amz-Date",
    "X-Amz-Signature",
)


def parse_authorization_header(
    value: str, amz_date: str | None
) -> HeaderSigningMetadata | None:
    """Parse an ``Authorization`` header.

    Args:
        value: Full header value.
        amz_date: Value of the ``x-amz-date`` header, if any.

    Returns:
        Parsed metadata, or None if *value* is not in SigV4 form.

    Raises:
        CredentialsMissing: If the credential is malformed or
            ``x-amz-date`` is missing.
    """
    m = _AUTH_HEADER_RE.match(value)
    if not m:
        return None
    key_id, scope = CredentialScope.parse(m.group("credential").strip())
    if not amz_date:
        raise CredentialsMissing("Authorization header without x-amz-date")
    return HeaderSigningMetadata(
        algorithm=m.group("algorithm").strip(),
        access_key_id=key_id,
        scope=scope,
        signed_headers=tuple(m.group("signed_headers").strip().split(";")),
        signature=m.group("signature").strip(),
        amz_date=amz_date,
        raw_authorization=value,
    )


def parse_presigned_query(
    params: list[tuple[str, str]],
) -> PresignedSigningMetadata:
    """Parse presigned-URL signing parameters.

    Args:
        params: Decoded query parameters.

    Returns:
        Parsed metadata.

    Raises:
        CredentialsMissing: If any of the five ``X-Amz-*`` parameters is
            missing or the credential is malformed.
    """
    values = dict(params)
    missing = [name for name in PRESIGNED_PARAMS if not values.get(name)]
    if missing:
        raise CredentialsMissing(
            f"Presigned request missing {', '.join(missing)}"
        )
    key_id, scope = CredentialScope.parse(values["X-Amz-Credential"])
    return PresignedSigningMetadata(
        algorithm=values["X-Amz-Algorithm"],
        access_key_id=key_id,
        scope=scope,
        signed_headers=tuple(values["X-Amz-SignedHeaders"].split(";")),
        signature=values["X-Amz-Signature"],
        amz_date=values["X-Amz-Date"],
    )


class RequestAuthenticator:
    """Turns an inbound request into ``SigningMetadata``."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def authenticate(self, request: SignedRequest) -> SigningMetadata:
        """Extract signing metadata from *request*.

        Returns:
            Header or presigned metadata.  Its ``authorization`` property
            is the authorization string the client effectively sent.

        Raises:
            CredentialsMissing: If neither form is present or parseable.
            UnsupportedAlgorithm: If the algorithm is not
                ``AWS4-HMAC-SHA256``.
        """
        metadata: SigningMetadata | None = None
        auth_value = request.headers.get("Authorization")
        if auth_value:
            metadata = parse_authorization_header(
                auth_value, request.headers.get("x-amz-date")
            )
            if metadata is None:
                self.logger.debug(
                    "Authorization header is not SigV4: %s", request.path
                )

        if metadata is None:
            if not request.query_string:
                raise CredentialsMissing("No Authorization header or query")
            metadata = parse_presigned_query(request.query_params)

        if metadata.algorithm != ALGORITHM:
            raise UnsupportedAlgorithm(
                f"Unsupported signing algorithm {metadata.algorithm}"
            )
        return metadata
