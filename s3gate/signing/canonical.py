# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 canonicalization primitives.

Pure functions that turn request parts into the strings SigV4 hashes
and signs.  Only stdlib ``hmac``/``hashlib`` are used.
"""

from __future__ import annotations

import hashlib
import hmac
import urllib.parse
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime


ALGORITHM = "AWS4-HMAC-SHA256"

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

SIGNATURE_PARAM = "X-Amz-Signature"

SHA256_EMPTY = hashlib.sha256(b"").hexdigest()

_AWS_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

_AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

# Allowed drift before a warning is logged (AWS rejects past 15 min)
_CLOCK_SKEW_WARN_SECONDS = 5 * 60


def uri_encode(value: str) -> str:
    """Percent-encode everything outside the RFC 3986 unreserved set.

    Hex digits are uppercase and non-ASCII characters are encoded as
    their UTF-8 bytes.
    """
    result: list[str] = []
    for ch in value:
        if ch in _AWS_UNRESERVED:
            result.append(ch)
        else:
            result.extend(f"%{b:02X}" for b in ch.encode("utf-8"))
    return "".join(result)


def parse_query(query: str) -> list[tuple[str, str]]:
    """Split a raw query string into decoded ``(key, value)`` pairs.

    Keys without ``=`` get an empty value.  ``+`` is kept literally.
    """
    if not query:
        return []
    params: list[tuple[str, str]] = []
    for item in query.split("&"):
        if not item:
            continue
        key, _, value = item.partition("=")
        params.append(
            (urllib.parse.unquote(key), urllib.parse.unquote(value))
        )
    return params


def canonical_query_string(params: Iterable[tuple[str, str]]) -> str:
    """Build the canonical query string.

    ``X-Amz-Signature`` is dropped, the rest are encoded and sorted by
    key, then value.
    """
    encoded = sorted(
        (uri_encode(k), uri_encode(v))
        for k, v in params
        if k != SIGNATURE_PARAM
    )
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers_string(
    headers: Mapping[str, str], signed_headers: Iterable[str]
) -> str:
    """Build the canonical headers block.

    One ``name:value`` line per signed header, in the order given, with
    a trailing newline after the block.  A signed header that is absent
    contributes an empty value.
    """
    lines = [
        f"{name.lower()}:{headers.get(name, '')}" for name in signed_headers
    ]
    return "\n".join(lines) + "\n"


def build_canonical_request(
    *,
    method: str,
    path: str,
    query: str,
    headers: str,
    signed_headers: str,
    payload_hash: str,
) -> str:
    """Join the already-canonical parts into the canonical request."""
    return "\n".join(
        [method, path, query, headers, signed_headers, payload_hash]
    )


def build_string_to_sign(
    amz_date: str, scope: str, canonical_request: str
) -> str:
    """Build the SigV4 string to sign.

    Args:
        amz_date: Request datetime (``YYYYMMDDTHHMMSSZ``).
        scope: ``date/region/service/request_type``.
        canonical_request: Output of ``build_canonical_request``.

    Returns:
        String to sign.
    """
    return "\n".join(
        [
            ALGORITHM,
            amz_date,
            scope,
            sha256_hex(canonical_request.encode("utf-8")),
        ]
    )


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hmac_sha256(key: bytes, msg: str | bytes) -> bytes:
    """HMAC-SHA256 helper."""
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).digest()


def hmac_sha256_hex(key: bytes, msg: str) -> str:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).hexdigest()


def check_clock_skew(
    amz_date: str, now: datetime | None = None
) -> tuple[bool, int]:
    """Check if ``x-amz-date`` differs significantly from local time.

    Args:
        amz_date: Request datetime (``YYYYMMDDTHHMMSSZ``).
        now: Reference time, defaults to the current UTC time.

    Returns:
        Tuple of (is_skewed, drift_minutes).  Unparseable dates report
        no skew.
    """
    try:
        request_time = datetime.strptime(amz_date, _AMZ_DATE_FORMAT)
    except ValueError:
        return False, 0
    request_time = request_time.replace(tzinfo=UTC)
    if now is None:
        now = datetime.now(UTC)
    drift = abs((now - request_time).total_seconds())
    return drift > _CLOCK_SKEW_WARN_SECONDS, int(drift // 60)
