from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from aiohttp import web

from .api import WahaApi
from .auth import AuthorityResolver
from .commands import BotContext, dispatch
from .config import (
    BOT_PHONE_ID,
    GROUP_STORE_FILE,
    HOST,
    PORT,
    PRAYER_REMINDERS_ENABLED,
    TAGALL_LIMIT_PER_HOUR,
    logger,
)
from .events import IncomingMessage, ParticipantsChanged, UnknownEvent, decode_event
from .formatting import render_welcome
from .http import TransportError, make_session
from .identity import normalize, primary_identity, to_chat_id
from .prayer import PrayerTimeService, prayer_loop
from .ratelimit import RateLimiter
from .state import GroupSettings
from .storage import GroupStore
from .sync import Synchronizer

BOT_KEY = web.AppKey("bot", BotContext)
SYNC_KEY = web.AppKey("synchronizer", Synchronizer)
BOT_ID_KEY = web.AppKey("bot_id", str)


async def startup_health_check(api: WahaApi) -> bool:
    """Check the WAHA session on startup. Never fatal."""
    logger.info("🏥 Running startup health check...")
    try:
        status = await api.get_session_status()
    except TransportError as e:
        if e.status == 401:
            logger.error("❌ WAHA rejected the API key - check WAHA_API_KEY")
        elif e.status == 404:
            logger.error(f"❌ WAHA session '{api.waha_session}' not found")
        else:
            logger.error(f"❌ WAHA health check failed: {e}")
        return False
    logger.info(f"✅ WAHA session '{api.waha_session}' status: {status.get('status', 'unknown')}")
    return True


async def welcome_new_members(bot: BotContext, event: ParticipantsChanged, bot_id: str = "") -> int:
    """Greet joined participants when the group has welcome messages on."""
    record = await bot.store.get(event.group_id)
    settings = record.settings if record else GroupSettings()
    if not settings.welcome_enabled:
        return 0

    group_name = (record.name if record else "") or event.group_name
    me = normalize(bot_id)
    sent = 0
    for p in event.participants:
        ident = primary_identity(p)
        if not ident or ident == me:
            continue
        text = render_welcome(settings.welcome_message_template, group_name, ident)
        try:
            await bot.api.send_text(event.group_id, text, mentions=[to_chat_id(ident)])
            sent += 1
        except TransportError as e:
            logger.warning(f"Welcome for {ident} in {event.group_id} not sent: {e}")
    return sent


async def handle_event(request: web.Request) -> web.Response:
    try:
        data = await request.json()
    except ValueError:
        return web.json_response({"status": "invalid json"}, status=400)

    app = request.app
    bot = app[BOT_KEY]
    try:
        event = decode_event(data, app[BOT_ID_KEY] or None)
    except UnknownEvent as e:
        logger.debug(f"Ignoring webhook: {e}")
        return web.json_response({"status": "ignored"})

    try:
        if isinstance(event, IncomingMessage):
            status = await dispatch(bot, event) or "no command"
        else:
            await app[SYNC_KEY].apply(event)
            status = "synced"
            if isinstance(event, ParticipantsChanged) and event.action == "add":
                await welcome_new_members(bot, event, app[BOT_ID_KEY])
    except Exception:
        logger.exception(f"Failed to handle {data.get('event') if isinstance(data, dict) else 'webhook'}")
        return web.json_response({"status": "error"}, status=500)
    return web.json_response({"status": status})


async def handle_health(request: web.Request) -> web.Response:
    groups = await request.app[BOT_KEY].store.list_ids()
    return web.json_response({"status": "ok", "groups": len(groups)})


async def _services(app: web.Application) -> AsyncIterator[None]:
    session = make_session()
    store = GroupStore(GROUP_STORE_FILE)
    store.load()
    api = WahaApi(session)
    resolver = AuthorityResolver(api, store)
    app[BOT_KEY] = BotContext(api, store, resolver, RateLimiter(TAGALL_LIMIT_PER_HOUR))
    app[SYNC_KEY] = Synchronizer(store)
    await startup_health_check(api)

    stop_event = asyncio.Event()
    prayer_session = None
    prayer_task = None
    if PRAYER_REMINDERS_ENABLED:
        # Third-party API, no WAHA key
        prayer_session = make_session(api_key="")
        prayer_task = asyncio.create_task(
            prayer_loop(api, store, PrayerTimeService(prayer_session), stop_event)
        )
    yield
    stop_event.set()
    if prayer_task is not None:
        await prayer_task
        await prayer_session.close()
    await resolver.wait_for_background()
    await session.close()


def create_app(bot: Optional[BotContext] = None, bot_id: str = BOT_PHONE_ID) -> web.Application:
    """Webhook app. Without ``bot`` the services are built on startup from config."""
    app = web.Application()
    app[BOT_ID_KEY] = bot_id
    if bot is None:
        app.cleanup_ctx.append(_services)
    else:
        app[BOT_KEY] = bot
        app[SYNC_KEY] = Synchronizer(bot.store)
    app.router.add_post("/event", handle_event)
    app.router.add_get("/health", handle_health)
    return app


def main():
    logger.info(f"🚀 Starting webhook server on {HOST}:{PORT}")
    web.run_app(create_app(), host=HOST, port=PORT)
