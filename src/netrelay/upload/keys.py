# src/netrelay/upload/keys.py
"""
Deterministic identifiers for storage writes.

Identifiers double as on-chain lookup keys and idempotency keys, so they
must be a pure function of the key text or fragment bytes.
"""

from __future__ import annotations

import hashlib
import re


_BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

KEY_BYTES = 32


def is_bytes32(value: str) -> bool:
    """True when ``value`` is ``0x`` followed by exactly 64 hex digits."""
    return _BYTES32_RE.match(value) is not None


def content_hash(data: bytes) -> str:
    """SHA-256 of ``data`` as ``0x``-prefixed lowercase hex."""
    return "0x" + hashlib.sha256(data).hexdigest()


def storage_key_bytes(key: str) -> str:
    """
    Map a human storage key to its 32-byte identifier.

    - Already a bytes32 hex string: lowercased and used as-is.
    - Otherwise the key is lowercased; if its UTF-8 form fits in 32 bytes it
      is right-padded with zeros, else it is hashed.
    """
    if is_bytes32(key):
        return key.lower()
    encoded = key.lower().encode("utf-8")
    if len(encoded) > KEY_BYTES:
        return content_hash(encoded)
    return "0x" + encoded.ljust(KEY_BYTES, b"\x00").hex()


def display_key(identifier: str) -> str:
    """
    Best-effort readable form of a padded identifier.

    Returns the decoded text for identifiers produced by zero-padding a
    short ASCII key, otherwise the identifier unchanged.
    """
    if not is_bytes32(identifier):
        return identifier
    raw = bytes.fromhex(identifier[2:]).rstrip(b"\x00")
    if not raw or any(byte > 127 or byte == 0 for byte in raw):
        return identifier
    text = raw.decode("ascii")
    return text if text.isprintable() and text.strip() else identifier


def to_hex(data: bytes) -> str:
    """``0x``-prefixed hex; empty bytes encode as ``0x``."""
    return "0x" + data.hex()


def decode_value(value: str) -> bytes:
    """
    Inverse of ``to_hex``.

    Raises:
        ValueError: If ``value`` lacks the ``0x`` prefix or is not valid hex.
    """
    if not value.startswith("0x"):
        raise ValueError(f"hex value must start with 0x: {value[:16]!r}")
    return bytes.fromhex(value[2:])
