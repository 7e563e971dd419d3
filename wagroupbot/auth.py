from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional, Set

from .api import WahaApi
from .classifier import match_admin_rule
from .config import logger
from .http import TransportError
from .identity import is_group_chat, normalize, participant_identities
from .storage import GroupStore, StoreError
from .sync import build_record_from_roster

ACCESS_DENIED_MSG = "❌ Sorry, only group admins can use this command."
GROUP_ONLY_MSG = "⚠️ This command only works in groups."


class AdminReason(Enum):
    CLASSIFIED = "classified"
    UNCLASSIFIED = "unclassified"
    ABSENT_FROM_ROSTER = "absent_from_roster"
    TRANSPORT_ERROR = "transport_error"
    CACHED_ADMIN = "cached_admin"
    CACHED_NON_ADMIN = "cached_non_admin"
    NO_RECORD = "no_record"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class AdminDecision:
    """Outcome of an authority check.

    ``source`` is ``live``, ``cache`` or ``default``. ``fallback_cause`` says
    why the live roster was not conclusive when the answer came from
    somewhere else.
    """
    is_admin: bool
    source: str
    reason: AdminReason
    rule: Optional[str] = None
    record: Optional[Dict[str, Any]] = None
    fallback_cause: Optional[AdminReason] = None


class AuthorityResolver:
    """Decides whether an identity is admin of a group right now.

    Live roster first, cached ``admin_set`` second, deny last. A positive
    live answer is written back to the store in the background.
    """

    def __init__(self, api: WahaApi, store: GroupStore):
        self.api = api
        self.store = store
        self._background: Set[asyncio.Task] = set()

    async def resolve(self, group_id: str, user_id: str) -> AdminDecision:
        identity = normalize(user_id)
        if not identity:
            return AdminDecision(False, "default", AdminReason.ABSENT_FROM_ROSTER)

        try:
            participants = await self.api.get_participants(group_id)
        except TransportError as e:
            logger.warning(f"Live roster for {group_id} unavailable: {e}")
            return await self._from_cache(group_id, identity, AdminReason.TRANSPORT_ERROR)

        match = next((p for p in participants if identity in participant_identities(p)), None)
        if match is None:
            self._spawn(self._heal(group_id, identity, participants, False))
            return await self._from_cache(group_id, identity, AdminReason.ABSENT_FROM_ROSTER)

        rule = match_admin_rule(match)
        self._spawn(self._heal(group_id, identity, participants, rule is not None))
        if rule is None:
            return AdminDecision(False, "live", AdminReason.UNCLASSIFIED, record=match)
        return AdminDecision(True, "live", AdminReason.CLASSIFIED, rule=rule, record=match)

    async def _from_cache(self, group_id: str, identity: str, cause: AdminReason) -> AdminDecision:
        try:
            record = await self.store.get(group_id)
        except StoreError as e:
            logger.error(f"Cache read for {group_id} failed, denying: {e}")
            return AdminDecision(False, "default", AdminReason.STORE_ERROR, fallback_cause=cause)
        if record is None:
            return AdminDecision(False, "default", AdminReason.NO_RECORD, fallback_cause=cause)
        if identity in record.admin_set:
            return AdminDecision(True, "cache", AdminReason.CACHED_ADMIN, fallback_cause=cause)
        return AdminDecision(False, "cache", AdminReason.CACHED_NON_ADMIN, fallback_cause=cause)

    async def is_admin(self, group_id: str, user_id: str) -> bool:
        decision = await self.resolve(group_id, user_id)
        cause = f" after {decision.fallback_cause.value}" if decision.fallback_cause else ""
        logger.info(
            f"Admin check {normalize(user_id)} in {group_id}: {decision.is_admin} "
            f"({decision.source}/{decision.reason.value}{cause}"
            f"{', rule ' + decision.rule if decision.rule else ''})"
        )
        return decision.is_admin

    async def is_owner(self, group_id: str, user_id: str) -> bool:
        """Owner check; falls back to the admin check while no owner is known.

        The stored owner is one identity of a participant that may carry
        several (phone and lid). When the caller's id differs, the live
        roster links the two.
        """
        try:
            record = await self.store.get(group_id)
        except StoreError as e:
            logger.error(f"Owner lookup for {group_id} failed, denying: {e}")
            return False
        if not record or not record.owner_phone:
            return await self.is_admin(group_id, user_id)

        identity = normalize(user_id)
        if identity == record.owner_phone:
            return True
        try:
            participants = await self.api.get_participants(group_id)
        except TransportError as e:
            logger.warning(f"Owner check for {identity} in {group_id} without live roster: {e}")
            return False
        match = next((p for p in participants if identity in participant_identities(p)), None)
        return match is not None and record.owner_phone in participant_identities(match)

    # ---------------- background self-heal ----------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _heal(self, group_id: str, identity: str, participants: List[Dict[str, Any]],
                    confirmed_admin: bool) -> None:
        try:
            if await self.store.get(group_id) is None:
                await self.store.create_if_absent(build_record_from_roster(group_id, participants=participants))
            if confirmed_admin:
                await self.store.add_admins(group_id, [identity])
                logger.debug(f"Self-healed {identity} as admin of {group_id}")
        except StoreError as e:
            logger.error(f"Background cache update for {group_id} failed: {e}")

    async def wait_for_background(self) -> None:
        """Wait until pending background cache writes have settled."""
        while self._background:
            await asyncio.gather(*list(self._background))


# ---------------- command gate ----------------

Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: Handler
    admin_only: bool = False
    group_only: bool = False
    description: str = ""
    rate_limited: bool = False
    # Extra per-invocation check, run after the gate and before the rate limit
    permission: Optional[Callable[..., Awaitable[bool]]] = None
    denied_reply: str = ACCESS_DENIED_MSG


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    reply: Optional[str] = None


async def check_access(spec: CommandSpec, chat_id: str, sender: str,
                       resolver: AuthorityResolver) -> GateResult:
    """Routing decision for a command invocation. Holds no state."""
    if (spec.group_only or spec.admin_only) and not is_group_chat(chat_id):
        return GateResult(False, GROUP_ONLY_MSG)
    if spec.admin_only and not await resolver.is_admin(chat_id, sender):
        return GateResult(False, ACCESS_DENIED_MSG)
    return GateResult(True)
