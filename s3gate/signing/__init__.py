# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS Signature Version 4 verification and signing."""

from s3gate.signing.authenticator import RequestAuthenticator
from s3gate.signing.calculator import SignatureCalculator
from s3gate.signing.key_cache import SigningKeyCache
from s3gate.signing.types import (
    Credential,
    CredentialScope,
    HeaderSigningMetadata,
    PresignedSigningMetadata,
    SignedRequest,
    SigningMetadata,
)


__all__ = [
    "Credential",
    "CredentialScope",
    "HeaderSigningMetadata",
    "PresignedSigningMetadata",
    "RequestAuthenticator",
    "SignatureCalculator",
    "SignedRequest",
    "SigningKeyCache",
    "SigningMetadata",
]
