"""UTF-8 <-> base64 conversion for wire payloads.

Every adapter that ships content as base64 goes through this pair. The
UTF-8 byte sequence is what gets encoded, so multi-byte characters
round-trip exactly.
"""

from __future__ import annotations

import base64
import binascii

from storage.errors import ContentEncodingError


def encode_content(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def decode_content(payload: str, *, path: str | None = None) -> str:
    # @@@wrapped-base64 - the contents API wraps base64 at 60 columns; strip all whitespace before strict decoding.
    compact = "".join(payload.split())
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ContentEncodingError(f"Invalid base64 payload: {exc}", path=path) from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ContentEncodingError(f"Payload is not valid UTF-8: {exc}", path=path) from exc
