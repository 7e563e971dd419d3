"""Webhook payload decoding.

Raw webhook bodies are turned into one of a closed set of event types before
any business logic runs. Anything else raises :class:`UnknownEvent`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .identity import normalize, participant_identities

# WAHA uses join/leave in group.v2.participants
_ACTION_ALIASES = {
    "join": "add",
    "add": "add",
    "leave": "remove",
    "remove": "remove",
    "promote": "promote",
    "demote": "demote",
}


class UnknownEvent(ValueError):
    """Webhook payload that is not one of the known event shapes."""


@dataclass(frozen=True)
class BotJoinedGroup:
    group_id: str
    name: str = ""
    owner: str = ""
    participants: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ParticipantsChanged:
    group_id: str
    action: str
    participants: List[Dict[str, Any]] = field(default_factory=list)
    group_name: str = ""


@dataclass(frozen=True)
class BotRemovedFromGroup:
    group_id: str


@dataclass(frozen=True)
class IncomingMessage:
    chat_id: str
    sender: str
    text: str
    message_id: Optional[str] = None
    from_me: bool = False


Event = Union[BotJoinedGroup, ParticipantsChanged, BotRemovedFromGroup, IncomingMessage]


def _participant_list(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    out: List[Dict[str, Any]] = []
    for p in raw:
        if isinstance(p, Mapping):
            out.append(dict(p))
        elif isinstance(p, str) and p.strip():
            out.append({"id": p.strip()})
    return out


def _group_block(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    group = payload.get("group")
    return group if isinstance(group, Mapping) else payload


def _group_id(block: Mapping[str, Any]) -> str:
    gid = block.get("id")
    if isinstance(gid, Mapping):
        gid = gid.get("_serialized")
    if not isinstance(gid, str) or not gid.strip():
        raise UnknownEvent("Group event without a group id")
    return gid.strip()


def _lists_bot(participants: List[Dict[str, Any]], bot_id: Optional[str]) -> bool:
    bot = normalize(bot_id)
    return bool(bot) and any(bot in participant_identities(p) for p in participants)


def _decode_join(payload: Mapping[str, Any]) -> BotJoinedGroup:
    block = _group_block(payload)
    owner = block.get("owner") or block.get("ownerJid") or ""
    return BotJoinedGroup(
        group_id=_group_id(block),
        name=str(block.get("subject") or block.get("name") or ""),
        owner=normalize(owner) if isinstance(owner, str) else "",
        participants=_participant_list(block.get("participants")),
    )


def _decode_participants(payload: Mapping[str, Any], bot_id: Optional[str]):
    block = _group_block(payload)
    group_id = _group_id(block)
    raw_action = str(payload.get("type") or payload.get("action") or "").strip().lower()
    action = _ACTION_ALIASES.get(raw_action)
    if action is None:
        raise UnknownEvent(f"Unknown participants action {raw_action!r} for {group_id}")
    participants = _participant_list(payload.get("participants"))
    if action == "remove" and _lists_bot(participants, bot_id):
        return BotRemovedFromGroup(group_id=group_id)
    return ParticipantsChanged(
        group_id=group_id,
        action=action,
        participants=participants,
        group_name=str(block.get("subject") or block.get("name") or ""),
    )


def _decode_message(payload: Mapping[str, Any]) -> IncomingMessage:
    chat_id = payload.get("from")
    if not isinstance(chat_id, str) or not chat_id:
        raise UnknownEvent("Message event without a chat id")
    sender = payload.get("participant") or payload.get("author") or chat_id
    message_id = payload.get("id")
    if isinstance(message_id, Mapping):
        message_id = message_id.get("_serialized")
    return IncomingMessage(
        chat_id=chat_id,
        sender=str(sender),
        text=str(payload.get("body") or ""),
        message_id=message_id if isinstance(message_id, str) else None,
        from_me=payload.get("fromMe") is True,
    )


def decode_event(data: Any, bot_id: Optional[str] = None) -> Event:
    """Decode a webhook body into a typed event.

    ``bot_id`` is the bot's own identity; when absent the payload's ``me.id``
    is used. It is needed to tell the bot leaving a group from anyone else.
    """
    if not isinstance(data, Mapping):
        raise UnknownEvent("Webhook body is not an object")
    kind = data.get("event")
    payload = data.get("payload")
    if not isinstance(payload, Mapping):
        raise UnknownEvent(f"Event {kind!r} without an object payload")

    if bot_id is None:
        me = data.get("me")
        if isinstance(me, Mapping) and isinstance(me.get("id"), str):
            bot_id = me["id"]

    if kind == "group.v2.join":
        return _decode_join(payload)
    if kind == "group.v2.participants":
        return _decode_participants(payload, bot_id)
    if kind == "group.v2.leave":
        return BotRemovedFromGroup(group_id=_group_id(_group_block(payload)))
    if kind in ("message", "message.any"):
        return _decode_message(payload)
    raise UnknownEvent(f"Unsupported event type {kind!r}")
