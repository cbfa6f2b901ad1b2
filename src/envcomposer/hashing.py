"""Digest helpers for pinned-toolchain records.

Recorded hashes use the SRI form ``sha256-<base64>``; the ``sha256:<hex>``
form used by container digests is accepted as well.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
from typing import Any

from .errors import DescriptorError

_SRI_PREFIX = "sha256-"
_HEX_PREFIX = "sha256:"
_HEX_PATTERN = re.compile(r"^[0-9a-f]{64}$")
_DIGEST_SIZE = 32

# lib.fakeHash and the all-zero hex digest
_PLACEHOLDER_SRI = {_SRI_PREFIX + "A" * 43 + "="}
_PLACEHOLDER_HEX = {
    "0" * 64,
    "0" * 63 + "1",
}


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def canonical_json_dumps(data: Any) -> str:
    """Serialize JSON with sorted keys and compact separators."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def parse_digest(text: str) -> bytes:
    """Decode a recorded sha256 digest into its 32 raw bytes.

    Raises:
        DescriptorError: If the digest is not a well-formed sha256 value.
    """
    value = str(text).strip()
    if value.startswith(_SRI_PREFIX):
        encoded = value[len(_SRI_PREFIX) :]
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DescriptorError(f"Invalid base64 in SRI hash {value!r}") from exc
    elif value.startswith(_HEX_PREFIX):
        hex_part = value[len(_HEX_PREFIX) :]
        if not _HEX_PATTERN.match(hex_part):
            raise DescriptorError(f"sha256 digest must be 64 lowercase hex chars, got {value!r}")
        raw = bytes.fromhex(hex_part)
    else:
        raise DescriptorError(f"Unsupported hash format {value!r}; expected 'sha256-<base64>' or 'sha256:<hex>'")

    if len(raw) != _DIGEST_SIZE:
        raise DescriptorError(f"sha256 digest must decode to {_DIGEST_SIZE} bytes, got {len(raw)}")
    return raw


def to_sri(digest: bytes) -> str:
    return _SRI_PREFIX + base64.b64encode(digest).decode("ascii")


def sri_of(data: bytes) -> str:
    """Return the SRI sha256 hash of ``data``."""
    return to_sri(hashlib.sha256(data).digest())


def is_placeholder_digest(digest: str) -> bool:
    """Return True if digest is an explicit placeholder value."""
    digest_text = str(digest).strip()
    upper = digest_text.upper()
    if "PLACEHOLDER" in upper or "UNKNOWN" in upper:
        return True
    if digest_text in _PLACEHOLDER_SRI:
        return True
    if digest_text.startswith(_HEX_PREFIX):
        return digest_text[len(_HEX_PREFIX) :] in _PLACEHOLDER_HEX
    return False
