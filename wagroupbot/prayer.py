"""
Prayer time reminders.

Daily times come from the Aladhan API for one configured city. A polling
loop sends each prayer's reminder once per day to every group that turned
reminders on with ``/set sholat on``.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import aiohttp
from cachetools import TTLCache

from .api import WahaApi
from .config import (
    PRAYER_API_URL,
    PRAYER_CITY,
    PRAYER_COUNTRY,
    PRAYER_POLL_SECS,
    PRAYER_TZ_LABEL,
    PRAYER_UTC_OFFSET,
    logger,
)
from .http import TransportError, fetch_json
from .storage import GroupStore, StoreError

PRAYERS = ("Fajr", "Dhuhr", "Asr", "Maghrib", "Isha")

PRAYER_NAMES_ID = {
    "Fajr": "Subuh",
    "Dhuhr": "Dzuhur",
    "Asr": "Ashar",
    "Maghrib": "Maghrib",
    "Isha": "Isya",
}

PRAYER_QUOTES = {
    "Fajr": '"Dan dirikanlah shalat di dua ujung hari (pagi dan petang) dan pada bagian permulaan malam." (QS. Hud: 114)',
    "Dhuhr": '"Sesungguhnya shalat itu adalah fardhu yang ditentukan waktunya atas orang-orang yang beriman." (QS. An-Nisa: 103)',
    "Asr": '"Peliharalah semua shalat (mu), terutama shalat wustha (ashar). Dan berdirilah untuk Allah dengan khusyuk." (QS. Al-Baqarah: 238)',
    "Maghrib": '"Maka sabarlah atas apa yang mereka katakan dan bertasbihlah dengan memuji Tuhanmu sebelum terbit matahari dan sebelum terbenamnya." (QS. Qaf: 39)',
    "Isha": '"Dan pada sebagian malam, maka kerjakanlah shalat tahajud sebagai tambahan bagimu." (QS. Al-Isra: 79)',
}

# Rough Jakarta averages, used when the API is unreachable
FALLBACK_TIMES = {
    "Fajr": "04:45",
    "Dhuhr": "12:00",
    "Asr": "15:30",
    "Maghrib": "18:05",
    "Isha": "19:20",
}

_DAYS_ID = ("Senin", "Selasa", "Rabu", "Kamis", "Jumat", "Sabtu", "Minggu")
_MONTHS_ID = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)

# A reminder is only sent within this long after its time, e.g. not hours late after a restart
DUE_WINDOW = timedelta(minutes=10)


def local_tz(offset_hours: float = PRAYER_UTC_OFFSET) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def _clean_time(raw: Any) -> Optional[str]:
    # Aladhan returns e.g. "04:39 (WIB)"
    token = str(raw or "").split(" ")[0]
    try:
        datetime.strptime(token, "%H:%M")
    except ValueError:
        return None
    return token


def fmt_date_id(day: date) -> str:
    return f"{_DAYS_ID[day.weekday()]}, {day.day} {_MONTHS_ID[day.month - 1]} {day.year}"


def fmt_prayer_reminder(prayer: str, at: str, day: date, tz_label: str = PRAYER_TZ_LABEL) -> str:
    name = PRAYER_NAMES_ID.get(prayer, prayer)
    return (
        f"🕌 *Waktunya Sholat {name}*\n\n"
        f"📅 {fmt_date_id(day)}\n"
        f"⏰ Waktu: {at} {tz_label}\n\n"
        f"{PRAYER_QUOTES.get(prayer, '')}\n\n"
        "Semoga sholat kita diterima oleh Allah SWT. 🤲"
    )


class PrayerTimeService:
    """Prayer times per date from the Aladhan API, cached for an hour."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str = PRAYER_API_URL,
                 city: str = PRAYER_CITY, country: str = PRAYER_COUNTRY):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.city = city
        self.country = country
        self._cache: TTLCache = TTLCache(maxsize=8, ttl=3600)
        # Fallbacks expire sooner so the API is tried again
        self._fallback: TTLCache = TTLCache(maxsize=8, ttl=300)

    async def get_times(self, day: date) -> Dict[str, str]:
        key = day.isoformat()
        cached = self._cache.get(key) or self._fallback.get(key)
        if cached is not None:
            return dict(cached)

        url = f"{self.base_url}/timingsByCity/{day.strftime('%d-%m-%Y')}"
        try:
            data = await fetch_json(self.session, url, params={"city": self.city, "country": self.country})
        except TransportError as e:
            logger.warning(f"⚠️ Prayer times for {key} unavailable, using fallback: {e}")
            self._fallback[key] = dict(FALLBACK_TIMES)
            return dict(FALLBACK_TIMES)

        block = data.get("data") if isinstance(data, dict) else None
        timings = block.get("timings") if isinstance(block, dict) else None
        if not isinstance(timings, dict):
            logger.warning(f"⚠️ Unexpected prayer times payload for {key}, using fallback")
            self._fallback[key] = dict(FALLBACK_TIMES)
            return dict(FALLBACK_TIMES)

        times = {p: _clean_time(timings.get(p)) or FALLBACK_TIMES[p] for p in PRAYERS}
        self._cache[key] = times
        logger.info(f"🕌 Prayer times for {key} in {self.city}: {times}")
        return dict(times)


def due_prayers(times: Dict[str, str], now: datetime, already_sent: Set[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Prayers whose time has come within ``DUE_WINDOW`` and were not sent today."""
    today = now.date().isoformat()
    due: List[Tuple[str, str]] = []
    for prayer in PRAYERS:
        at = _clean_time(times.get(prayer))
        if at is None or (today, prayer) in already_sent:
            continue
        hour, minute = (int(x) for x in at.split(":"))
        start = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if start <= now < start + DUE_WINDOW:
            due.append((prayer, at))
    return due


async def send_prayer_reminders(api: WahaApi, store: GroupStore, prayer: str, at: str,
                                day: date) -> Tuple[int, int]:
    """Send one prayer's reminder to every group with reminders on.

    Returns ``(sent, failed)``. A failing group does not stop the others.
    """
    active: List[str] = []
    for group_id in await store.list_ids():
        if (await store.get_settings(group_id)).prayer_reminder_enabled:
            active.append(group_id)
    if not active:
        logger.info(f"No groups with prayer reminders on for {prayer}")
        return 0, 0

    text = fmt_prayer_reminder(prayer, at, day)
    sent = failed = 0
    for group_id in active:
        try:
            await api.send_text(group_id, text)
            sent += 1
        except TransportError as e:
            logger.error(f"❌ {prayer} reminder to {group_id} failed: {e}")
            failed += 1
    logger.info(f"🕌 {prayer} reminder at {at}: {sent} sent, {failed} failed")
    return sent, failed


async def run_due_reminders(api: WahaApi, store: GroupStore, times: PrayerTimeService,
                            now: datetime, already_sent: Set[Tuple[str, str]]) -> List[str]:
    """One polling step. ``already_sent`` is updated in place and keeps only today."""
    today = now.date().isoformat()
    for key in [k for k in already_sent if k[0] != today]:
        already_sent.discard(key)

    fired: List[str] = []
    day_times = await times.get_times(now.date())
    for prayer, at in due_prayers(day_times, now, already_sent):
        await send_prayer_reminders(api, store, prayer, at, now.date())
        already_sent.add((today, prayer))
        fired.append(prayer)
    return fired


async def prayer_loop(api: WahaApi, store: GroupStore, times: PrayerTimeService,
                      stop_event: asyncio.Event, poll_secs: float = PRAYER_POLL_SECS,
                      tz: Optional[timezone] = None) -> None:
    tz = tz or local_tz()
    already_sent: Set[Tuple[str, str]] = set()
    logger.info(f"🕌 Prayer reminder loop started ({times.city}, every {poll_secs}s)")
    try:
        while not stop_event.is_set():
            try:
                await run_due_reminders(api, store, times, datetime.now(tz), already_sent)
            except StoreError as e:
                logger.error(f"Prayer reminders skipped, store unreadable: {e}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_secs)
            except asyncio.TimeoutError:
                pass
    finally:
        logger.info("Prayer reminder loop stopped")
