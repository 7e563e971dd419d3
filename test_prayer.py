import asyncio
from datetime import date, datetime, timedelta, timezone

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from wagroupbot.http import TransportError
from wagroupbot.prayer import (
    FALLBACK_TIMES,
    PrayerTimeService,
    due_prayers,
    fmt_date_id,
    fmt_prayer_reminder,
    prayer_loop,
    run_due_reminders,
    send_prayer_reminders,
)
from wagroupbot.state import GroupRecord

WIB = timezone(timedelta(hours=7))
DAY = date(2026, 10, 19)
TIMES = {"Fajr": "04:05", "Dhuhr": "11:40", "Asr": "14:55", "Maghrib": "17:50", "Isha": "19:00"}


class FakeAladhan:
    def __init__(self):
        self.calls = []
        self.status = 200

    async def timings(self, request: web.Request) -> web.Response:
        self.calls.append((request.match_info["day"], dict(request.query)))
        if self.status != 200:
            return web.Response(status=self.status, text="down")
        timings = {k: f"{v} (WIB)" for k, v in TIMES.items()}
        timings["Sunrise"] = "05:20 (WIB)"
        return web.json_response({"code": 200, "status": "OK", "data": {"timings": timings}})


class FixedTimes:
    city = "Jakarta"

    async def get_times(self, day):
        return dict(TIMES)


@pytest_asyncio.fixture
async def aladhan():
    fake = FakeAladhan()
    app = web.Application()
    app.router.add_get("/timingsByCity/{day}", fake.timings)
    server = TestServer(app)
    await server.start_server()
    session = aiohttp.ClientSession()
    fake.service = PrayerTimeService(
        session, str(server.make_url("/")).rstrip("/"), city="Jakarta", country="Indonesia"
    )
    yield fake
    await session.close()
    await server.close()


async def _groups(store):
    await store.replace_roster(GroupRecord(id="G1@g.us"))
    await store.update_settings("G1@g.us", prayer_reminder_enabled=True)
    await store.replace_roster(GroupRecord(id="G2@g.us"))
    await store.replace_roster(GroupRecord(id="G3@g.us"))
    await store.update_settings("G3@g.us", prayer_reminder_enabled=True)


def test_reminder_message():
    text = fmt_prayer_reminder("Fajr", "04:05", DAY, tz_label="WIB")
    assert text.startswith("🕌 *Waktunya Sholat Subuh*")
    assert "📅 Senin, 19 Oktober 2026" in text
    assert "⏰ Waktu: 04:05 WIB" in text
    assert text.endswith("Semoga sholat kita diterima oleh Allah SWT. 🤲")
    assert fmt_date_id(date(2026, 12, 27)) == "Minggu, 27 Desember 2026"


def test_due_prayers_window():
    at_maghrib = datetime(2026, 10, 19, 17, 52, tzinfo=WIB)
    assert due_prayers(TIMES, at_maghrib, set()) == [("Maghrib", "17:50")]
    assert due_prayers(TIMES, at_maghrib, {("2026-10-19", "Maghrib")}) == []
    assert due_prayers(TIMES, at_maghrib.replace(hour=17, minute=49), set()) == []
    assert due_prayers(TIMES, at_maghrib.replace(hour=18, minute=5), set()) == []
    assert due_prayers({"Fajr": "bogus"}, at_maghrib, set()) == []


@pytest.mark.asyncio
async def test_times_are_fetched_once_per_day(aladhan):
    assert await aladhan.service.get_times(DAY) == TIMES
    assert await aladhan.service.get_times(DAY) == TIMES
    assert aladhan.calls == [("19-10-2026", {"city": "Jakarta", "country": "Indonesia"})]


@pytest.mark.asyncio
async def test_times_fall_back_when_api_is_down(aladhan):
    aladhan.status = 404
    assert await aladhan.service.get_times(DAY) == FALLBACK_TIMES


@pytest.mark.asyncio
async def test_reminders_go_only_to_groups_that_enabled_them(waha, store):
    await _groups(store)
    assert await send_prayer_reminders(waha.api, store, "Asr", "14:55", DAY) == (2, 0)
    assert [m["chatId"] for m in waha.sent] == ["G1@g.us", "G3@g.us"]
    assert "Waktunya Sholat Ashar" in waha.sent[0]["text"]


@pytest.mark.asyncio
async def test_no_enabled_groups_sends_nothing(waha, store):
    await store.replace_roster(GroupRecord(id="G2@g.us"))
    assert await send_prayer_reminders(waha.api, store, "Isha", "19:00", DAY) == (0, 0)
    assert waha.sent == []


@pytest.mark.asyncio
async def test_failed_group_does_not_stop_others(waha, store, monkeypatch):
    await _groups(store)
    original = waha.api.send_text

    async def flaky(chat_id, text, **kwargs):
        if chat_id == "G1@g.us":
            raise TransportError("send failed", status=500)
        return await original(chat_id, text, **kwargs)

    monkeypatch.setattr(waha.api, "send_text", flaky)
    assert await send_prayer_reminders(waha.api, store, "Dhuhr", "11:40", DAY) == (1, 1)
    assert [m["chatId"] for m in waha.sent] == ["G3@g.us"]


@pytest.mark.asyncio
async def test_each_prayer_fires_once_per_day(waha, store):
    await _groups(store)
    sent = {("2026-10-18", "Fajr")}
    now = datetime(2026, 10, 19, 4, 6, tzinfo=WIB)

    assert await run_due_reminders(waha.api, store, FixedTimes(), now, sent) == ["Fajr"]
    assert await run_due_reminders(waha.api, store, FixedTimes(), now + timedelta(minutes=1), sent) == []
    assert sent == {("2026-10-19", "Fajr")}
    assert len(waha.sent) == 2


@pytest.mark.asyncio
async def test_loop_stops_on_event(waha, store):
    stop_event = asyncio.Event()
    task = asyncio.create_task(prayer_loop(waha.api, store, FixedTimes(), stop_event, poll_secs=60, tz=WIB))
    await asyncio.sleep(0)
    stop_event.set()
    await asyncio.wait_for(task, timeout=5)
    assert task.done()
