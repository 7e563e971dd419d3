"""Shared fixtures: a local fake WAHA server and wired-up bot services."""

from typing import Any, Dict, List, Optional

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from wagroupbot.api import WahaApi
from wagroupbot.auth import AuthorityResolver
from wagroupbot.commands import BotContext
from wagroupbot.ratelimit import RateLimiter
from wagroupbot.storage import GroupStore

GROUP = "120363000000000001@g.us"


class FakeWaha:
    """In-process stand-in for the handful of WAHA endpoints the bot calls."""

    def __init__(self):
        self.participants: Dict[str, List[Dict[str, Any]]] = {}
        self.groups: Dict[str, Dict[str, Any]] = {}
        self.participants_status: Optional[int] = None
        self.roster_calls = 0
        self.sent: List[Dict[str, Any]] = []
        self.admins_only: Dict[str, bool] = {}
        self.removed: List[Dict[str, Any]] = []
        self.added: List[Dict[str, Any]] = []
        self.api: Optional[WahaApi] = None

    async def get_participants(self, request: web.Request) -> web.Response:
        self.roster_calls += 1
        if self.participants_status is not None:
            return web.Response(status=self.participants_status, text="unavailable")
        gid = request.match_info["gid"]
        if gid not in self.participants:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response(self.participants[gid])

    async def get_group(self, request: web.Request) -> web.Response:
        gid = request.match_info["gid"]
        if gid not in self.groups:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response(self.groups[gid])

    async def list_groups(self, request: web.Request) -> web.Response:
        return web.json_response(list(self.groups.values()))

    async def set_admins_only(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.admins_only[request.match_info["gid"]] = body["adminsOnly"]
        return web.json_response(True)

    async def change_participants(self, request: web.Request) -> web.Response:
        body = await request.json()
        entry = {"group": request.match_info["gid"], "participants": body["participants"]}
        (self.added if request.match_info["op"] == "add" else self.removed).append(entry)
        return web.json_response({"ok": True})

    async def send_text(self, request: web.Request) -> web.Response:
        self.sent.append(await request.json())
        return web.json_response({"id": f"msg-{len(self.sent)}"})

    async def session_status(self, request: web.Request) -> web.Response:
        return web.json_response({"name": request.match_info["session"], "status": "WORKING"})

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/sessions/{session}", self.session_status)
        app.router.add_post("/api/sendText", self.send_text)
        app.router.add_get("/api/{session}/groups", self.list_groups)
        app.router.add_get("/api/{session}/groups/{gid}", self.get_group)
        app.router.add_get("/api/{session}/groups/{gid}/participants", self.get_participants)
        app.router.add_post("/api/{session}/groups/{gid}/participants/{op}", self.change_participants)
        app.router.add_put(
            "/api/{session}/groups/{gid}/settings/security/messages-admin-only", self.set_admins_only
        )
        return app

    def texts(self) -> List[str]:
        return [m["text"] for m in self.sent]


@pytest_asyncio.fixture
async def waha():
    fake = FakeWaha()
    server = TestServer(fake.make_app())
    await server.start_server()
    session = aiohttp.ClientSession()
    base_url = str(server.make_url("/")).rstrip("/")
    fake.api = WahaApi(session, base_url, "default", max_attempts=3, base_delay=0)
    yield fake
    await session.close()
    await server.close()


@pytest.fixture
def store():
    return GroupStore()


@pytest.fixture
def resolver(waha, store):
    return AuthorityResolver(waha.api, store)


@pytest.fixture
def bot(waha, store, resolver):
    return BotContext(waha.api, store, resolver, RateLimiter(limit=2), mention_blacklist=["628999"])
