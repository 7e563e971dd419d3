from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from .config import BASE, WAHA_SESSION, logger
from .http import TransportError, fetch_json, request_json


class WahaApi:
    """The slice of the WAHA HTTP API the bot uses."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str = BASE,
                 waha_session: str = WAHA_SESSION, **retry: Any):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.waha_session = waha_session
        # Forwarded to request_json (max_attempts, base_delay, jitter)
        self.retry = retry

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/{self.waha_session}{path}"

    def _group_url(self, group_id: str, suffix: str = "") -> str:
        return self._url(f"/groups/{quote(group_id, safe='@.')}{suffix}")

    async def _call(self, method: str, url: str, **kwargs: Any) -> Any:
        return await request_json(self.session, method, url, **kwargs, **self.retry)

    # ---------------- groups ----------------

    async def get_participants(self, group_id: str) -> List[Dict[str, Any]]:
        data = await self._call("GET", self._group_url(group_id, "/participants"))
        if not isinstance(data, list):
            raise TransportError(
                f"Participants response for {group_id} is not a list",
                url=self._group_url(group_id, "/participants"),
            )
        return [p for p in data if isinstance(p, dict)]

    async def get_group(self, group_id: str) -> Dict[str, Any]:
        data = await self._call("GET", self._group_url(group_id))
        return data if isinstance(data, dict) else {}

    async def get_groups(self) -> List[Dict[str, Any]]:
        data = await self._call("GET", self._url("/groups"))
        if isinstance(data, dict):
            # Some WAHA engines answer with {group_id: group_info}
            data = [dict(v, id=v.get("id", k)) for k, v in data.items() if isinstance(v, dict)]
        return [g for g in data or [] if isinstance(g, dict)]

    async def set_messages_admin_only(self, group_id: str, admins_only: bool) -> bool:
        url = self._group_url(group_id, "/settings/security/messages-admin-only")
        result = await self._call("PUT", url, json={"adminsOnly": admins_only})
        if result is True:
            return True
        return isinstance(result, dict) and result.get("adminsOnly") is admins_only

    async def add_participants(self, group_id: str, chat_ids: List[str]) -> Any:
        logger.info(f"Adding {len(chat_ids)} participants to {group_id}")
        return await self._call(
            "POST",
            self._group_url(group_id, "/participants/add"),
            json={"participants": [{"id": cid} for cid in chat_ids]},
        )

    async def remove_participants(self, group_id: str, chat_ids: List[str]) -> Any:
        logger.info(f"Removing {len(chat_ids)} participants from {group_id}")
        return await self._call(
            "POST",
            self._group_url(group_id, "/participants/remove"),
            json={"participants": [{"id": cid} for cid in chat_ids]},
        )

    # ---------------- messages ----------------

    async def send_text(self, chat_id: str, text: str, reply_to: Optional[str] = None,
                        mentions: Optional[List[str]] = None) -> Any:
        return await self._call(
            "POST",
            f"{self.base_url}/api/sendText",
            json={
                "session": self.waha_session,
                "chatId": chat_id,
                "text": text,
                "reply_to": reply_to,
                "mentions": mentions or [],
            },
        )

    async def get_session_status(self) -> Dict[str, Any]:
        data = await fetch_json(self.session, f"{self.base_url}/api/sessions/{self.waha_session}")
        return data if isinstance(data, dict) else {}
