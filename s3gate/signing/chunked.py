# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Streaming re-signing of ``aws-chunked`` request bodies.

With ``x-amz-content-sha256: STREAMING-AWS4-HMAC-SHA256-PAYLOAD`` every
body chunk carries a signature chained off the previous one, starting
from the request signature.  Once the request is re-signed each chunk
signature must be recomputed too.  The resigner checks every inbound
chunk signature against the verification key while producing the
upstream one, so body tampering is caught the same way header tampering
is.

Body layout::

    <hex-size>;chunk-signature=<sig>\\r\\n<data>\\r\\n
    ...
    0;chunk-signature=<sig>\\r\\n
    [<trailer-name>:<value>\\r\\n x-amz-trailer-signature:<sig>\\r\\n]
    \\r\\n
"""

from __future__ import annotations

import hmac
import re
from collections.abc import Iterable, Iterator

from s3gate.errors import AuthMismatch, PayloadTooLarge
from s3gate.signing.canonical import SHA256_EMPTY, hmac_sha256_hex, sha256_hex


STREAMING_PAYLOAD = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD"
STREAMING_PAYLOAD_TRAILER = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD-TRAILER"

STREAMING_VALUES = frozenset({STREAMING_PAYLOAD, STREAMING_PAYLOAD_TRAILER})

_CHUNK_HEADER_RE = re.compile(
    rb"(?P<hex_size>[0-9a-fA-F]+);chunk-signature=(?P<sig>[0-9a-f]{64})"
)

_TRAILER_SIG_RE = re.compile(
    rb"x-amz-trailer-signature:(?P<sig>[0-9a-f]{64})\r\n"
)

# A chunk header line is short; anything longer without CRLF is garbage
_MAX_CHUNK_HEADER = 128

# Trailing headers are a few checksums; more than this without a signature
# line is garbage
_MAX_TRAILER = 16 * 1024

DEFAULT_MAX_CHUNK_SIZE = 16 * 1024 * 1024

_CHUNKS, _TRAILER, _DONE = "chunks", "trailer", "done"


def chunk_string_to_sign(
    amz_date: str, scope: str, previous_signature: str, chunk: bytes
) -> str:
    """String to sign for one data (or the terminal empty) chunk."""
    return "\n".join(
        [
            "AWS4-HMAC-SHA256-PAYLOAD",
            amz_date,
            scope,
            previous_signature,
            SHA256_EMPTY,
            sha256_hex(chunk),
        ]
    )


def trailer_string_to_sign(
    amz_date: str, scope: str, previous_signature: str, trailer: bytes
) -> str:
    """String to sign for the trailing headers."""
    return "\n".join(
        [
            "AWS4-HMAC-SHA256-TRAILER",
            amz_date,
            scope,
            previous_signature,
            sha256_hex(trailer),
        ]
    )


class ChunkedPayloadResigner:
    """Incremental verifier and re-signer for an aws-chunked body.

    Feed raw body bytes to ``process()`` in whatever pieces they arrive;
    it returns the bytes to forward.  Call ``finish()`` at end of body.
    """

    def __init__(
        self,
        *,
        verify_key: bytes,
        sign_key: bytes,
        amz_date: str,
        scope: str,
        inbound_seed: str,
        outbound_seed: str,
        has_trailer: bool,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    ) -> None:
        """Initialize the resigner.

        Args:
            verify_key: Signing key of the verification credential.
            sign_key: Signing key of the upstream credential.
            amz_date: Request datetime.
            scope: Credential scope string.
            inbound_seed: Signature of the inbound request.
            outbound_seed: Signature of the re-signed request.
            has_trailer: Whether trailing headers follow the last chunk.
            max_chunk_size: Largest declared chunk size accepted.  A chunk
                is held in memory until its signature is checked.
        """
        self._verify_key = verify_key
        self._sign_key = sign_key
        self._amz_date = amz_date
        self._scope = scope
        self._prev_in = inbound_seed
        self._prev_out = outbound_seed
        self._has_trailer = has_trailer
        self._max_chunk_size = max_chunk_size
        self._buffer = bytearray()
        self._state = _CHUNKS

    def _resign_chunk(self, chunk: bytes, given: bytes) -> bytes:
        expected = chunk_string_to_sign(
            self._amz_date, self._scope, self._prev_in, chunk
        )
        out_sts = chunk_string_to_sign(
            self._amz_date, self._scope, self._prev_out, chunk
        )
        self._check(expected, given)
        new_sig = hmac_sha256_hex(self._sign_key, out_sts)
        self._prev_in = given.decode("ascii")
        self._prev_out = new_sig
        return new_sig.encode("ascii")

    def _resign_trailer(self, trailer: bytes, given: bytes) -> bytes:
        expected = trailer_string_to_sign(
            self._amz_date, self._scope, self._prev_in, trailer
        )
        out_sts = trailer_string_to_sign(
            self._amz_date, self._scope, self._prev_out, trailer
        )
        self._check(expected, given)
        new_sig = hmac_sha256_hex(self._sign_key, out_sts)
        self._prev_in = given.decode("ascii")
        self._prev_out = new_sig
        return new_sig.encode("ascii")

    def _check(self, string_to_sign: str, given: bytes) -> None:
        expected = hmac_sha256_hex(self._verify_key, string_to_sign)
        if not hmac.compare_digest(expected.encode("ascii"), given):
            raise AuthMismatch("Chunk signature mismatch")

    def process(self, data: bytes) -> bytes:
        """Consume body bytes and return the re-signed bytes ready so far.

        Raises:
            AuthMismatch: If a chunk signature does not verify or the
                body is not valid aws-chunked encoding.
            PayloadTooLarge: If a chunk declares more than the maximum
                chunk size.
        """
        self._buffer += data
        output: list[bytes] = []

        while self._buffer:
            if self._state == _CHUNKS:
                if not self._process_chunk(output):
                    break
            elif self._state == _TRAILER:
                if not self._process_trailer(output):
                    break
            else:
                output.append(bytes(self._buffer))
                self._buffer.clear()

        return b"".join(output)

    def _process_chunk(self, output: list[bytes]) -> bool:
        header_end = self._buffer.find(b"\r\n")
        if header_end == -1:
            if len(self._buffer) > _MAX_CHUNK_HEADER:
                raise AuthMismatch("Malformed aws-chunked body")
            return False

        m = _CHUNK_HEADER_RE.fullmatch(self._buffer[:header_end])
        if not m:
            raise AuthMismatch("Malformed aws-chunked body")

        hex_size = m.group("hex_size")
        size = int(hex_size, 16)
        if size > self._max_chunk_size:
            raise PayloadTooLarge(
                f"Chunk of {size} bytes exceeds {self._max_chunk_size}"
            )
        data_start = header_end + 2
        total = data_start + size + 2 if size else data_start
        if len(self._buffer) < total:
            return False

        chunk = bytes(self._buffer[data_start : data_start + size])
        new_sig = self._resign_chunk(chunk, m.group("sig"))
        output.append(hex_size + b";chunk-signature=" + new_sig + b"\r\n")
        if size:
            output.append(chunk + b"\r\n")
        else:
            self._state = _TRAILER if self._has_trailer else _DONE
        del self._buffer[:total]
        return True

    def _process_trailer(self, output: list[bytes]) -> bool:
        m = _TRAILER_SIG_RE.search(self._buffer)
        if not m:
            if len(self._buffer) > _MAX_TRAILER:
                raise AuthMismatch("Malformed aws-chunked trailer")
            return False

        trailing = bytes(self._buffer[: m.start()])
        canonical = b"".join(
            line + b"\n" for line in trailing.split(b"\r\n") if line
        )
        new_sig = self._resign_trailer(canonical, m.group("sig"))
        output.append(trailing + b"x-amz-trailer-signature:" + new_sig)
        output.append(b"\r\n")
        del self._buffer[: m.end()]
        self._state = _DONE
        return True

    def finish(self) -> bytes:
        """Flush at end of body.

        Raises:
            AuthMismatch: If the body ended before the terminal chunk
                (or trailer signature).
        """
        if self._state != _DONE:
            raise AuthMismatch("Truncated aws-chunked body")
        remaining = bytes(self._buffer)
        self._buffer.clear()
        return remaining


def resign_stream(
    chunks: Iterable[bytes], resigner: ChunkedPayloadResigner
) -> Iterator[bytes]:
    """Run a body stream through *resigner*."""
    for data in chunks:
        out = resigner.process(data)
        if out:
            yield out
    tail = resigner.finish()
    if tail:
        yield tail
