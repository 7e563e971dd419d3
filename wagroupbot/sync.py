from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .api import WahaApi
from .classifier import classify, is_owner_record, match_admin_rule
from .config import logger
from .events import BotJoinedGroup, BotRemovedFromGroup, ParticipantsChanged
from .http import TransportError
from .identity import normalize, participant_identities, primary_identity
from .state import GroupRecord
from .storage import GroupStore, StoreError


def _identities_of(participants: Iterable[Any]) -> List[str]:
    ids: List[str] = []
    for p in participants:
        ids.extend(sorted(participant_identities(p)))
    return ids


def build_record_from_roster(group_id: str, name: str = "", owner: str = "",
                             participants: Optional[Iterable[Any]] = None) -> GroupRecord:
    """Build a GroupRecord from a roster snapshot.

    Every identity a participant carries is stored, so later lookups match
    whichever id format the caller arrives with. The owner is the explicit
    owner when given, otherwise a superadmin-looking participant, otherwise
    the first admin.
    """
    admins: List[str] = []
    members: List[str] = []
    owner_id = normalize(owner)
    first_admin = ""
    for p in participants or []:
        ids = sorted(participant_identities(p))
        if not ids:
            continue
        members.extend(ids)
        if classify(p):
            logger.debug(f"{group_id}: {ids} admin via {match_admin_rule(p)}")
            admins.extend(ids)
            first_admin = first_admin or primary_identity(p)
            if not owner_id and is_owner_record(p):
                owner_id = primary_identity(p)
    if not owner_id:
        owner_id = first_admin
    return GroupRecord(
        id=group_id,
        name=name,
        owner_phone=owner_id,
        admin_set=set(admins),
        member_set=set(members),
    )


class Synchronizer:
    """Applies group lifecycle events to the store.

    Each transition is a field-level merge through the store's per-group
    lock, so replaying an event is harmless.
    """

    def __init__(self, store: GroupStore):
        self.store = store

    async def apply(self, event: Any) -> Optional[GroupRecord]:
        if isinstance(event, BotJoinedGroup):
            record = build_record_from_roster(event.group_id, event.name, event.owner, event.participants)
            logger.info(
                f"Bot joined {event.group_id} ({event.name or 'unnamed'}): "
                f"{len(record.member_set)} members, {len(record.admin_set)} admins"
            )
            return await self.store.replace_roster(record)

        if isinstance(event, ParticipantsChanged):
            return await self._apply_participants(event)

        if isinstance(event, BotRemovedFromGroup):
            removed = await self.store.delete(event.group_id)
            logger.info(f"Bot removed from {event.group_id}, record {'deleted' if removed else 'was absent'}")
            return None

        logger.warning(f"Dropping unsupported lifecycle event: {event!r}")
        return None

    async def _apply_participants(self, event: ParticipantsChanged) -> Optional[GroupRecord]:
        ids = _identities_of(event.participants)
        if not ids:
            logger.info(f"{event.group_id}: {event.action} event without usable identities")
            return await self.store.get(event.group_id)

        logger.info(f"{event.group_id}: {event.action} {ids}")
        if event.action == "add":
            return await self.store.add_members(event.group_id, ids)
        if event.action == "remove":
            return await self.store.remove_members(event.group_id, ids)
        if event.action == "promote":
            return await self.store.add_admins(event.group_id, ids)
        if event.action == "demote":
            return await self.store.remove_admins(event.group_id, ids)

        logger.warning(f"{event.group_id}: unknown participants action {event.action!r}")
        return None


@dataclass
class SyncReport:
    total: int = 0
    saved: int = 0
    failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)


def _group_id_of(info: Mapping[str, Any]) -> str:
    gid = info.get("id")
    if isinstance(gid, Mapping):
        gid = gid.get("_serialized")
    return gid if isinstance(gid, str) else ""


async def sync_all_groups(api: WahaApi, store: GroupStore) -> SyncReport:
    """Bootstrap the store from every group the session belongs to.

    A failing group is counted and skipped; only failing to list the groups
    at all raises.
    """
    groups = await api.get_groups()
    report = SyncReport(total=len(groups))
    logger.info(f"Syncing {len(groups)} groups")

    for info in groups:
        gid = _group_id_of(info)
        if not gid:
            report.failed += 1
            report.errors[f"#{report.failed}"] = "group without id"
            continue
        try:
            participants = info.get("participants")
            if not isinstance(participants, list):
                participants = await api.get_participants(gid)
            owner = info.get("owner") or info.get("ownerJid") or ""
            record = build_record_from_roster(
                gid,
                str(info.get("subject") or info.get("name") or ""),
                owner if isinstance(owner, str) else "",
                participants,
            )
            await store.replace_roster(record)
            report.saved += 1
        except (TransportError, StoreError) as e:
            logger.error(f"Failed to sync {gid}: {e}")
            report.failed += 1
            report.errors[gid] = str(e)

    logger.info(f"Group sync done: {report.saved}/{report.total} saved, {report.failed} failed")
    return report
