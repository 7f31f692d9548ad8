# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bucket allowlist check for path-style requests."""

import urllib.parse
from collections.abc import Iterable

from s3gate.errors import BucketNotAllowed, InvalidPath


# Health checks sign requests against these without a real bucket
PROBE_BUCKET_PREFIX = "probe-bucket-sign-"

_DOT_SEGMENTS = frozenset({".", ".."})


def bucket_from_path(path: str) -> str:
    """First segment of a request path (before ``/`` or ``?``)."""
    rest = path[1:] if path.startswith("/") else path
    for sep in "/?":
        rest = rest.split(sep, 1)[0]
    return rest


def has_dot_segment(path: str) -> bool:
    """Whether *path* has a ``.`` or ``..`` segment, encoded or not.

    HTTP clients and S3 servers resolve these, so the bucket that is
    finally addressed could differ from the first segment.
    """
    segments = path.partition("?")[0].split("/")
    return any(
        urllib.parse.unquote(segment) in _DOT_SEGMENTS for segment in segments
    )


class BucketAuthorizer:
    """Rejects requests for buckets that are not on the allowlist.

    An empty first path segment (service-level requests) always passes.
    """

    def __init__(self, allowed_buckets: Iterable[str]) -> None:
        self.allowed_buckets = frozenset(allowed_buckets)

    def is_allowed(self, bucket: str) -> bool:
        return (
            not bucket
            or bucket in self.allowed_buckets
            or bucket.startswith(PROBE_BUCKET_PREFIX)
        )

    def check(self, path: str) -> str:
        """Check the bucket addressed by *path*.

        Returns:
            The bucket name (may be empty).

        Raises:
            InvalidPath: If the path has dot segments.
            BucketNotAllowed: If the bucket is not allowed.
        """
        if has_dot_segment(path):
            raise InvalidPath(f"Dot segment in path {path}")
        bucket = bucket_from_path(path)
        if not self.is_allowed(bucket):
            raise BucketNotAllowed(f"Disallowed bucket {bucket}")
        return bucket
