# src/chain_feed/utils/hexcodec.py
"""Helpers for the ``0x``-prefixed hex strings used by contract event arguments."""

from __future__ import annotations

import binascii


def strip_hex_prefix(value: str) -> str:
    if value[:2].lower() == "0x":
        return value[2:]
    return value


def hex_to_bytes(value: str | None) -> bytes:
    """Decode a hex string, returning empty bytes for empty or invalid input."""
    if not value:
        return b""
    digits = strip_hex_prefix(value.strip())
    if len(digits) % 2:
        digits = "0" + digits
    try:
        return binascii.unhexlify(digits)
    except (binascii.Error, ValueError):
        return b""


def hex_to_str(value: str | None) -> str:
    """Decode hex-encoded UTF-8 text."""
    return hex_to_bytes(value).decode("utf-8", errors="replace")


def hex_to_int(value: str | None) -> int | None:
    """Decode a big-endian hex integer, or None when the value carries no digits."""
    raw = hex_to_bytes(value)
    if not raw:
        return None
    return int.from_bytes(raw, "big")
