"""Small text helpers shared by the feed reader and the normalizer."""

from __future__ import annotations

import re

_TURKISH_FOLD = str.maketrans({
    "İ": "I", "ı": "i", "Ş": "S", "ş": "s", "Ç": "C", "ç": "c",
    "Ğ": "G", "ğ": "g", "Ü": "U", "ü": "u", "Ö": "O", "ö": "o",
})
_SPACES_RE = re.compile(r"\s+")


def fold(value: str) -> str:
    """Upper-case ASCII form used for vocabulary comparisons."""
    return value.translate(_TURKISH_FOLD).upper()


def collapse_spaces(value: str) -> str:
    return _SPACES_RE.sub(" ", value).strip()


def clip(value: str, limit: int = 200) -> str:
    value = (value or "").strip()
    if len(value) <= limit:
        return value
    return value[: limit - 1] + "…"
