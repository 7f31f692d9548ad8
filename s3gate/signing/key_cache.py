# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signing-key derivation with a bounded FIFO cache.

Deriving a SigV4 signing key takes four HMAC rounds.  Keys only change
per day, region and service, so they are cached.  The cache evicts the
oldest *inserted* entry once it holds more than ``max_entries`` keys;
a frequently used old key can be evicted while a once-used newer key
survives.
"""

from __future__ import annotations

import base64
import logging
import threading
from collections import OrderedDict

from s3gate.signing.canonical import hmac_sha256
from s3gate.signing.types import Credential


logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 50


def derive_signing_key(
    secret_key: str, date: str, region: str, service: str, request_type: str
) -> bytes:
    """Derive the SigV4 signing key.

    Args:
        secret_key: Secret access key.
        date: Date string (YYYYMMDD).
        region: Region name.
        service: Service name.
        request_type: Terminator, normally ``aws4_request``.

    Returns:
        Derived 32-byte signing key.
    """
    k_date = hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, request_type)


def credential_identifier(credential: Credential) -> str:
    """Opaque identifier for a credential pair, usable as a cache key."""
    digest = hmac_sha256(
        credential.secret_key.encode("utf-8"), credential.access_key_id
    )
    return base64.b64encode(digest).decode("ascii")


class SigningKeyCache:
    """Thread-safe FIFO cache of derived signing keys.

    One instance is shared by every request handler of a gateway.  The
    lock covers both lookups and the insert-plus-evict sequence.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self.max_entries = max_entries
        self.hits = 0
        self.misses = 0
        self._keys: OrderedDict[str, bytes] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def cache_key(
        credential: Credential, date: str, region: str, service: str
    ) -> str:
        """Cache key for a derivation (date at day granularity)."""
        return "_".join(
            [credential_identifier(credential), date[:8], region, service]
        )

    def derive_key(
        self,
        credential: Credential,
        date: str,
        region: str,
        service: str,
        request_type: str,
    ) -> bytes:
        """Return the signing key, deriving and caching it on a miss.

        Args:
            credential: Credential whose secret seeds the derivation.
            date: Date or datetime; only the first 8 characters are used.
            region: Region name.
            service: Service name.
            request_type: Terminator, normally ``aws4_request``.

        Returns:
            Derived signing key.
        """
        date = date[:8]
        key = self.cache_key(credential, date, region, service)
        with self._lock:
            cached = self._keys.get(key)
            if cached is not None:
                self.hits += 1
                return cached

            self.misses += 1
            signing_key = derive_signing_key(
                credential.secret_key, date, region, service, request_type
            )
            self._keys[key] = signing_key
            if len(self._keys) > self.max_entries:
                evicted, _ = self._keys.popitem(last=False)
                logger.debug("Evicted signing key %s", evicted.split("_", 1)[1])
            return signing_key

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()
