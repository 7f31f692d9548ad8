# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 signature computation for a parsed request."""

from __future__ import annotations

from s3gate.signing.canonical import (
    ALGORITHM,
    SHA256_EMPTY,
    UNSIGNED_PAYLOAD,
    build_canonical_request,
    build_string_to_sign,
    canonical_headers_string,
    canonical_query_string,
    hmac_sha256_hex,
)
from s3gate.signing.key_cache import SigningKeyCache
from s3gate.signing.types import (
    Credential,
    SignedRequest,
    SigningMetadata,
    format_authorization,
)


CONTENT_SHA256_HEADER = "x-amz-content-sha256"


class SignatureCalculator:
    """Computes SigV4 signatures, deriving keys through a shared cache."""

    def __init__(self, key_cache: SigningKeyCache) -> None:
        self.key_cache = key_cache

    @staticmethod
    def payload_hash(request: SignedRequest, metadata: SigningMetadata) -> str:
        """Payload hash that goes into the canonical request.

        ``x-amz-content-sha256`` wins when present, presigned requests
        fall back to ``UNSIGNED-PAYLOAD``, anything else uses the hash of
        the buffered body (or of the empty string).
        """
        declared = request.headers.get(CONTENT_SHA256_HEADER)
        if declared:
            return declared
        if metadata.is_presigned:
            return UNSIGNED_PAYLOAD
        return request.body_hash or SHA256_EMPTY

    def canonical_request(
        self, request: SignedRequest, metadata: SigningMetadata
    ) -> str:
        return build_canonical_request(
            method=request.method,
            path=request.path,
            query=canonical_query_string(request.query_params),
            headers=canonical_headers_string(
                request.headers, metadata.signed_headers
            ),
            signed_headers=metadata.signed_headers_value,
            payload_hash=self.payload_hash(request, metadata),
        )

    def string_to_sign(
        self, request: SignedRequest, metadata: SigningMetadata
    ) -> str:
        return build_string_to_sign(
            metadata.amz_date,
            str(metadata.scope),
            self.canonical_request(request, metadata),
        )

    def signing_key(
        self, credential: Credential, metadata: SigningMetadata
    ) -> bytes:
        scope = metadata.scope
        return self.key_cache.derive_key(
            credential,
            metadata.amz_date,
            scope.region,
            scope.service,
            scope.request_type,
        )

    def signature(
        self,
        request: SignedRequest,
        metadata: SigningMetadata,
        credential: Credential,
    ) -> str:
        """Compute the hex signature of *request* under *credential*.

        Args:
            request: Request to sign.
            metadata: Supplies the signed header list, scope and datetime.
            credential: Credential to sign with.

        Returns:
            Hex-encoded HMAC-SHA256 signature.
        """
        return hmac_sha256_hex(
            self.signing_key(credential, metadata),
            self.string_to_sign(request, metadata),
        )

    def authorization(
        self,
        request: SignedRequest,
        metadata: SigningMetadata,
        credential: Credential,
    ) -> str:
        """Full ``Authorization`` value for *request* under *credential*."""
        return format_authorization(
            ALGORITHM,
            f"{credential.access_key_id}/{metadata.scope}",
            metadata.signed_headers_value,
            self.signature(request, metadata, credential),
        )
