"""Toxic-word filter for group messages."""

from __future__ import annotations

from typing import Iterable, List, Tuple

from .config import TOXIC_WORDS

BASE_TOXIC_WORDS: Tuple[str, ...] = (
    "anjing",
    "babi",
    "bangsat",
    "kontol",
    "memek",
    "goblok",
    "tolol",
    "ngentot",
    "brengsek",
    "jancok",
    "jembod",
    "bajingan",
    "keparat",
    "nigger",
)

TOXIC_WARNING_MSG = (
    "⚠️ Pesan kamu terdeteksi mengandung kata tidak pantas.\n"
    "Mohon gunakan bahasa yang sopan!"
)


def default_toxic_words() -> List[str]:
    return sorted(set(BASE_TOXIC_WORDS) | set(TOXIC_WORDS))


def check_toxic(text: str, words: Iterable[str]) -> List[str]:
    """Words from ``words`` found anywhere in ``text``, case-insensitive."""
    lowered = (text or "").lower()
    if not lowered:
        return []
    return [w for w in words if w and w.lower() in lowered]
