import asyncio

import pytest

from wagroupbot.auth import (
    ACCESS_DENIED_MSG,
    GROUP_ONLY_MSG,
    AdminReason,
    AuthorityResolver,
    CommandSpec,
    check_access,
)
from wagroupbot.events import ParticipantsChanged
from wagroupbot.state import GroupRecord
from wagroupbot.storage import GroupStore
from wagroupbot.sync import Synchronizer, build_record_from_roster

GROUP = "120363000000000001@g.us"
ROSTER = [
    {"id": "628111@c.us", "role": "superadmin"},
    {"id": "628222@c.us", "role": "participant"},
]


async def _noop(ctx):
    return "ran"


@pytest.mark.asyncio
async def test_transport_failure_without_record_denies(waha, resolver):
    waha.participants_status = 500
    decision = await resolver.resolve(GROUP, "628111@c.us")
    assert decision.is_admin is False
    assert decision.source == "default"
    assert decision.reason is AdminReason.NO_RECORD
    assert decision.fallback_cause is AdminReason.TRANSPORT_ERROR
    assert await resolver.is_admin(GROUP, "628111@c.us") is False
    assert waha.roster_calls == 6


@pytest.mark.asyncio
async def test_transport_failure_uses_cached_admins(waha, store, resolver):
    waha.participants_status = 503
    await store.add_admins(GROUP, ["628111"])
    decision = await resolver.resolve(GROUP, "628111@s.whatsapp.net")
    assert decision.is_admin is True
    assert decision.source == "cache"
    assert decision.reason is AdminReason.CACHED_ADMIN
    assert await resolver.is_admin(GROUP, "628222@c.us") is False


@pytest.mark.asyncio
async def test_live_admin_self_heals_and_seeds_record(waha, store, resolver):
    waha.participants[GROUP] = ROSTER
    decision = await resolver.resolve(GROUP, "628111@s.whatsapp.net")
    assert decision.is_admin is True
    assert decision.source == "live"
    assert decision.reason is AdminReason.CLASSIFIED
    assert decision.rule == "exact:role"

    await resolver.wait_for_background()
    record = await store.get(GROUP)
    assert "628111" in record.admin_set
    assert record.member_set == {"628111", "628222"}


@pytest.mark.asyncio
async def test_self_heal_updates_existing_record(waha, store, resolver):
    waha.participants[GROUP] = [{"id": "628333@c.us", "isAdmin": True}]
    await store.add_members(GROUP, ["628111"])
    assert await resolver.is_admin(GROUP, "628333@c.us")
    await resolver.wait_for_background()
    record = await store.get(GROUP)
    assert record.admin_set == {"628333"}
    assert record.member_set == {"628111", "628333"}


@pytest.mark.asyncio
async def test_live_non_admin_overrides_stale_cache(waha, store, resolver):
    waha.participants[GROUP] = ROSTER
    await store.add_admins(GROUP, ["628222"])
    decision = await resolver.resolve(GROUP, "628222@c.us")
    assert decision.is_admin is False
    assert decision.source == "live"
    assert decision.reason is AdminReason.UNCLASSIFIED
    await resolver.wait_for_background()


@pytest.mark.asyncio
async def test_absent_from_roster_falls_back_to_cache(waha, store, resolver):
    waha.participants[GROUP] = ROSTER
    await store.add_admins(GROUP, ["628444"])
    decision = await resolver.resolve(GROUP, "628444@c.us")
    assert decision.is_admin is True
    assert decision.source == "cache"
    assert decision.fallback_cause is AdminReason.ABSENT_FROM_ROSTER
    await resolver.wait_for_background()


@pytest.mark.asyncio
async def test_demote_and_remove_during_self_heal_both_land(waha, store, resolver):
    waha.participants[GROUP] = [
        {"id": "628111@c.us", "role": "admin"},
        {"id": "628222@c.us", "role": "participant"},
    ]
    await store.replace_roster(GroupRecord(id=GROUP, admin_set={"628222"}, member_set={"628111", "628333"}))
    sync = Synchronizer(store)

    decision, _, _ = await asyncio.gather(
        resolver.resolve(GROUP, "628111@c.us"),
        sync.apply(ParticipantsChanged(GROUP, "demote", [{"id": "628222@c.us"}])),
        sync.apply(ParticipantsChanged(GROUP, "remove", [{"id": "628333@c.us"}])),
    )
    await resolver.wait_for_background()

    assert decision.is_admin
    record = await store.get(GROUP)
    assert record.admin_set == {"628111"}
    assert record.member_set == {"628111", "628222"}


@pytest.mark.asyncio
async def test_demote_landing_before_pending_self_heal(waha, store, resolver):
    waha.participants[GROUP] = [{"id": "628111@c.us", "role": "admin"}]
    await store.replace_roster(GroupRecord(id=GROUP, admin_set={"628222"}, member_set={"628111"}))

    assert (await resolver.resolve(GROUP, "628111@c.us")).is_admin
    await Synchronizer(store).apply(ParticipantsChanged(GROUP, "demote", [{"id": "628222@c.us"}]))
    await resolver.wait_for_background()

    record = await store.get(GROUP)
    assert record.admin_set == {"628111"}
    assert "628222" in record.member_set


@pytest.mark.asyncio
async def test_unreadable_store_denies(waha, tmp_path):
    path = tmp_path / "groups.json"
    path.write_text("][")
    waha.participants_status = 500
    resolver = AuthorityResolver(waha.api, GroupStore(str(path)))
    decision = await resolver.resolve(GROUP, "628111@c.us")
    assert decision.is_admin is False
    assert decision.reason is AdminReason.STORE_ERROR


@pytest.mark.asyncio
async def test_owner_check(waha, store, resolver):
    waha.participants[GROUP] = ROSTER
    await store.replace_roster(GroupRecord(id=GROUP, owner_phone="628111", admin_set={"628111", "628222"}))
    assert await resolver.is_owner(GROUP, "628111@c.us")
    assert not await resolver.is_owner(GROUP, "628222@c.us")


@pytest.mark.asyncio
async def test_owner_with_lid_and_phone_matches_either_id(waha, store, resolver):
    lid_roster = [
        {"id": "1740@lid", "pn": "628111@s.whatsapp.net", "role": "superadmin"},
        {"id": "1650@lid", "pn": "628222@s.whatsapp.net", "role": "participant"},
    ]
    waha.participants[GROUP] = lid_roster
    await store.replace_roster(build_record_from_roster(GROUP, participants=lid_roster))
    assert (await store.get(GROUP)).owner_phone == "628111"

    assert await resolver.is_owner(GROUP, "628111@c.us")
    assert await resolver.is_owner(GROUP, "1740@lid")
    assert not await resolver.is_owner(GROUP, "1650@lid")


@pytest.mark.asyncio
async def test_owner_linked_by_lid_denied_during_outage(waha, store, resolver):
    await store.replace_roster(GroupRecord(id=GROUP, owner_phone="628111", admin_set={"628111", "1740"}))
    waha.participants_status = 500
    assert await resolver.is_owner(GROUP, "628111@c.us")
    assert not await resolver.is_owner(GROUP, "1740@lid")


@pytest.mark.asyncio
async def test_owner_check_without_owner_uses_admin(waha, resolver):
    waha.participants[GROUP] = ROSTER
    assert await resolver.is_owner(GROUP, "628111@c.us")
    assert not await resolver.is_owner(GROUP, "628222@c.us")
    await resolver.wait_for_background()


@pytest.mark.asyncio
async def test_gate_group_only_in_private_chat(resolver):
    spec = CommandSpec("tagall", _noop, group_only=True)
    gate = await check_access(spec, "628111@c.us", "628111@c.us", resolver)
    assert not gate.allowed
    assert gate.reply == GROUP_ONLY_MSG


@pytest.mark.asyncio
async def test_gate_open_command(resolver):
    gate = await check_access(CommandSpec("help", _noop), "628111@c.us", "628111@c.us", resolver)
    assert gate.allowed
    assert gate.reply is None


@pytest.mark.asyncio
async def test_gate_denies_non_admin_and_outage_identically(waha, resolver):
    spec = CommandSpec("kick", _noop, admin_only=True, group_only=True)
    waha.participants[GROUP] = ROSTER

    not_admin = await check_access(spec, GROUP, "628222@c.us", resolver)
    waha.participants_status = 500
    outage = await check_access(spec, "120363000000000009@g.us", "628111@c.us", resolver)

    assert not not_admin.allowed and not outage.allowed
    assert not_admin.reply == outage.reply == ACCESS_DENIED_MSG
    await resolver.wait_for_background()


@pytest.mark.asyncio
async def test_gate_allows_admin(waha, resolver):
    waha.participants[GROUP] = ROSTER
    gate = await check_access(CommandSpec("kick", _noop, admin_only=True), GROUP, "628111@c.us", resolver)
    assert gate.allowed
    await resolver.wait_for_background()
