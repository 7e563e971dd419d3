#!/usr/bin/env python3
"""
Bulk group sync script
Fetches every group the WAHA session belongs to and rebuilds the local
roster (admins/members) for each, keeping existing group settings.
Safe to run while the bot is up: both merge into the store file under a file lock.
"""

import asyncio
import sys

from wagroupbot import GroupStore, TransportError, WahaApi, make_session, sync_all_groups
from wagroupbot.config import BASE, GROUP_STORE_FILE, WAHA_SESSION


async def sync_groups() -> bool:
    """Sync all groups into the store file"""

    print(f"🔄 Syncing WhatsApp groups into {GROUP_STORE_FILE}...")
    print(f"📡 WAHA: {BASE} (session '{WAHA_SESSION}')\n")

    store = GroupStore(GROUP_STORE_FILE)
    store.load()
    session = make_session()

    try:
        report = await sync_all_groups(WahaApi(session), store)
    except TransportError as e:
        print(f"❌ Could not list groups: {e}")
        return False
    finally:
        await session.close()

    print(f"   ✅ Saved {report.saved}/{report.total} groups")
    for group_id, error in report.errors.items():
        print(f"   ❌ {group_id}: {error}")

    print("=" * 60)
    if report.failed:
        print(f"⚠️  {report.failed} groups failed to sync")
    else:
        print("🎉 All groups synced!")
    print("=" * 60)
    return report.failed == 0


if __name__ == "__main__":
    success = asyncio.run(sync_groups())
    sys.exit(0 if success else 1)
