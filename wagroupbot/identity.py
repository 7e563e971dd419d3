"""Participant identity normalization.

The platform refers to the same person as ``628123@c.us`` (legacy chat id),
``628123@s.whatsapp.net`` (phone-number jid) or ``1234@lid`` (anonymized link
id), sometimes with a ``:device`` part. Everything in the roster/admin logic
compares identities only through :func:`normalize`.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Set

GROUP_SUFFIX = "@g.us"

# Phone-number fields first: they give the stable key we store
IDENTITY_FIELDS = ("pn", "phoneNumber", "jid", "id", "lid")


def normalize(raw: Optional[str]) -> str:
    if not raw:
        return ""
    token = str(raw).strip()
    if "@" in token:
        token = token.split("@", 1)[0]
    if ":" in token:
        token = token.split(":", 1)[0]
    return token.lstrip("+").strip()


def normalize_all(raws: Iterable[Optional[str]]) -> Set[str]:
    return {n for n in (normalize(r) for r in raws) if n}


def _field_values(record: Mapping[str, Any]) -> Iterable[str]:
    for field in IDENTITY_FIELDS:
        value = record.get(field)
        if isinstance(value, str):
            yield value
        elif isinstance(value, Mapping):
            # Some payloads nest the jid, e.g. {"id": {"_serialized": "..."}}
            serialized = value.get("_serialized") or value.get("user")
            if isinstance(serialized, str):
                yield serialized


def participant_identities(record: Any) -> Set[str]:
    """All normalized identities a raw participant record carries."""
    if isinstance(record, str):
        return normalize_all([record])
    if not isinstance(record, Mapping):
        return set()
    return normalize_all(_field_values(record))


def primary_identity(record: Any) -> str:
    if isinstance(record, str):
        return normalize(record)
    if not isinstance(record, Mapping):
        return ""
    for value in _field_values(record):
        n = normalize(value)
        if n:
            return n
    return ""


def is_group_chat(chat_id: Optional[str]) -> bool:
    return bool(chat_id) and str(chat_id).endswith(GROUP_SUFFIX)


def to_chat_id(raw: str) -> str:
    """Turn a bare number (or any identity) into a personal chat id."""
    token = str(raw).strip()
    if "@" in token:
        return token
    digits = "".join(ch for ch in token if ch.isdigit())
    return f"{digits}@c.us"

