"""Display labels for group ids (base-26 letters)."""

from __future__ import annotations

from typing import Optional

LABEL_BASE = 26
LABEL_MIN_WIDTH = 2


def int_to_label(value: int) -> str:
    """Render a group id as base-26 letters, at least two wide (0 -> AA, 26 -> BA)."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Invalid identifier value: {value!r}")
    digits = []
    remainder = value
    while True:
        digits.append(remainder % LABEL_BASE)
        remainder //= LABEL_BASE
        if remainder == 0:
            break
    while len(digits) < LABEL_MIN_WIDTH:
        digits.append(0)
    return "".join(chr(ord("A") + digit) for digit in reversed(digits))


def label_to_int(label: str) -> Optional[int]:
    """Inverse of :func:`int_to_label`; None for empty or non A-Z input."""
    if not isinstance(label, str):
        return None
    text = label.strip().upper()
    if not text:
        return None
    value = 0
    for ch in text:
        if not "A" <= ch <= "Z":
            return None
        value = value * LABEL_BASE + (ord(ch) - ord("A"))
    return value
