"""Small utility helpers used by the codec and the facade."""

from __future__ import annotations


def clamp(x: int, lo: int, hi: int) -> int:
    """Clamp ``x`` to the inclusive range ``[lo, hi]``.

    Returns ``lo`` if ``x < lo``, ``hi`` if ``x > hi``, otherwise ``x``.
    """
    if x < lo:
        return lo
    if x > hi:
        return hi
    return x


def to_int_or_none(raw: str) -> int | None:
    """Parse a decimal integer field, returning None instead of raising."""
    try:
        return int(raw.strip())
    except ValueError:
        return None
