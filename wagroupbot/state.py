from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Set


class TagAllScope(Enum):
    """Who may use /tagall in a group"""
    ADMIN = "admin"
    MEMBER = "member"
    OWNER = "owner"

    @classmethod
    def parse(cls, raw: Any, default: "TagAllScope" | None = None) -> "TagAllScope":
        token = str(raw or "").strip().lower()
        if token in ("all", "everyone"):
            token = "member"
        try:
            return cls(token)
        except ValueError:
            return default or cls.ADMIN


DEFAULT_WELCOME_TEMPLATE = "👋 Welcome to {group}, @{user}! Enjoy your stay."


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        token = value.strip().lower()
        if token in ("true", "on", "1", "yes"):
            return True
        if token in ("false", "off", "0", "no"):
            return False
    return default


@dataclass(frozen=True)
class GroupSettings:
    welcome_enabled: bool = True
    welcome_message_template: str = DEFAULT_WELCOME_TEMPLATE
    tag_all_scope: TagAllScope = TagAllScope.ADMIN
    prayer_reminder_enabled: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "GroupSettings":
        """Build settings, defaulting every absent or malformed field.

        Accepts the legacy keys (welcome, welcomeMessage, tagall, sholatreminder) too.
        """
        data = data or {}
        welcome = data.get("welcomeEnabled", data.get("welcome"))
        template = data.get("welcomeMessageTemplate", data.get("welcomeMessage"))
        scope = data.get("tagAllScope", data.get("tagall"))
        prayer = data.get("prayerReminderEnabled", data.get("sholatreminder"))
        return cls(
            welcome_enabled=_as_bool(welcome, True),
            welcome_message_template=template if isinstance(template, str) and template.strip() else DEFAULT_WELCOME_TEMPLATE,
            tag_all_scope=TagAllScope.parse(scope),
            prayer_reminder_enabled=_as_bool(prayer, False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "welcomeEnabled": self.welcome_enabled,
            "welcomeMessageTemplate": self.welcome_message_template,
            "tagAllScope": self.tag_all_scope.value,
            "prayerReminderEnabled": self.prayer_reminder_enabled,
        }

    def updated(self, **changes: Any) -> "GroupSettings":
        return replace(self, **changes)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class GroupRecord:
    id: str
    name: str = ""
    owner_phone: str = ""
    admin_set: Set[str] = field(default_factory=set)
    member_set: Set[str] = field(default_factory=set)
    settings: GroupSettings = field(default_factory=GroupSettings)
    created_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        self.member_set |= self.admin_set

    # Mutators keep admin_set a subset of member_set

    def add_members(self, identities: Iterable[str]) -> None:
        self.member_set.update(i for i in identities if i)

    def remove_members(self, identities: Iterable[str]) -> None:
        gone = {i for i in identities if i}
        self.member_set -= gone
        self.admin_set -= gone

    def add_admins(self, identities: Iterable[str]) -> None:
        new = {i for i in identities if i}
        self.admin_set |= new
        self.member_set |= new

    def remove_admins(self, identities: Iterable[str]) -> None:
        self.admin_set -= {i for i in identities if i}

    def copy(self) -> "GroupRecord":
        return replace(self, admin_set=set(self.admin_set), member_set=set(self.member_set))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GroupRecord":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            owner_phone=str(data.get("ownerPhone") or ""),
            admin_set={str(x) for x in data.get("adminSet") or [] if x},
            member_set={str(x) for x in data.get("memberSet") or [] if x},
            settings=GroupSettings.from_dict(data.get("settings")),
            created_at=str(data.get("createdAt") or utc_now_iso()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "ownerPhone": self.owner_phone,
            "adminSet": sorted(self.admin_set),
            "memberSet": sorted(self.member_set),
            "settings": self.settings.to_dict(),
            "createdAt": self.created_at,
        }
