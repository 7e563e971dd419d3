"""Admin classification of raw participant records.

The platform gives no stable schema for roles: admin status may show up under
several field names, in several casings, as a boolean flag, or only as a word
inside some unrelated string. Rules are kept as data so they can be tested on
their own; :func:`classify` is pure and never raises.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple

# Fields that carry a role token, checked in order
ADMIN_FIELD_NAMES: Tuple[str, ...] = ("rank", "role", "type", "groupRole", "level", "admin")

# Role tokens that mean admin, compared case-insensitively
ADMIN_FIELD_VALUES = frozenset({"admin", "superadmin", "super_admin", "group_admin", "groupadmin"})

# Boolean flags that mean admin when literally True
ADMIN_FLAG_FIELDS: Tuple[str, ...] = ("admin", "isAdmin", "isSuperAdmin")

# Substring fallback over every string value
ADMIN_KEYWORDS: Tuple[str, ...] = ("admin", "moderator", "owner")

OWNER_VALUES = frozenset({"superadmin", "super_admin", "owner", "creator"})


def _token(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def match_admin_rule(record: Any) -> Optional[str]:
    """Name of the first rule that marks ``record`` as admin, or None."""
    if not isinstance(record, Mapping):
        return None

    for field in ADMIN_FLAG_FIELDS:
        if record.get(field) is True:
            return f"flag:{field}"

    for field in ADMIN_FIELD_NAMES:
        if _token(record.get(field)) in ADMIN_FIELD_VALUES:
            return f"exact:{field}"

    for field, value in record.items():
        lowered = _token(value)
        if lowered and any(keyword in lowered for keyword in ADMIN_KEYWORDS):
            return f"substring:{field}"

    return None


def classify(record: Any) -> bool:
    return match_admin_rule(record) is not None


def is_owner_record(record: Any) -> bool:
    """Best-effort owner signal: a superadmin/owner role token."""
    if not isinstance(record, Mapping):
        return False
    return any(_token(record.get(field)) in OWNER_VALUES for field in ADMIN_FIELD_NAMES)
