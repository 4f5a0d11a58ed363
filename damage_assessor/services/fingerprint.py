"""
Cheap content fingerprints used as cache keys.

``hash_image`` only looks at the buffer length plus its first and last 16
bytes. Two different photos of the same byte length that share those edges
will collide; the cache accepts that in exchange for never hashing a
multi-megabyte payload. Swap in a full digest here if that ever matters.
"""

from __future__ import annotations

__all__ = ["hash_image", "hash_query", "normalize_query", "simple_hash"]

_EDGE_BYTES = 16
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_DIGITS[remainder])
    return "".join(reversed(digits))


def simple_hash(text: str) -> str:
    """31-multiplier rolling hash over 32-bit signed arithmetic, rendered in base 36."""

    acc = 0
    for char in text:
        acc = (acc * 31 + ord(char)) & 0xFFFFFFFF
    if acc >= 0x80000000:
        acc -= 0x100000000
    return _to_base36(abs(acc))


def hash_image(buffer: bytes) -> str:
    size = len(buffer)
    head = ",".join(str(byte) for byte in buffer[:_EDGE_BYTES])
    tail = ",".join(str(byte) for byte in buffer[-_EDGE_BYTES:])
    return simple_hash(f"{size}_{head}_{tail}")


def normalize_query(text: str) -> str:
    return (text or "").strip().casefold()


def hash_query(text: str) -> str:
    return simple_hash(normalize_query(text))
