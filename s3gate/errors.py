# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Request-handling errors and the HTTP status each one maps to.

Every error is terminal for its request.  The message is for the log
only; clients get the bare status code.
"""


class GatewayError(Exception):
    """Base exception for errors handled at the request boundary."""

    status = 500


class CredentialsMissing(GatewayError):
    """Request carries no usable signing information."""

    status = 403


class UnsupportedAlgorithm(GatewayError):
    """Request is signed with something other than AWS4-HMAC-SHA256."""

    status = 403


class AuthMismatch(GatewayError):
    """Signature does not match the verification credential."""

    status = 403


class BucketNotAllowed(GatewayError):
    """Bucket is not on the allowlist."""

    status = 403


class InvalidPath(GatewayError):
    """Path has a ``.`` or ``..`` segment the upstream would resolve."""

    status = 403


class PayloadTooLarge(GatewayError):
    """Body (or one aws-chunked chunk) exceeds the buffering limit."""

    status = 413


class UpstreamUnreachable(GatewayError):
    """Connecting to or writing to the upstream failed."""

    status = 500
