from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .api import WahaApi
from .auth import AuthorityResolver, CommandSpec, check_access
from .config import MENTION_BLACKLIST, TOXIC_FILTER_ENABLED, logger
from .events import IncomingMessage
from .formatting import (
    SET_USAGE,
    fmt_admin_decision,
    fmt_help,
    fmt_mentions,
    fmt_settings,
    mention_targets,
)
from .http import TransportError
from .identity import is_group_chat, normalize, to_chat_id
from .moderation import TOXIC_WARNING_MSG, check_toxic, default_toxic_words
from .ratelimit import RateLimiter
from .state import TagAllScope
from .storage import GroupStore, StoreError
from .sync import build_record_from_roster

RATE_LIMITED_MSG = "⏳ This command was used too often. Try again later."
TAGALL_DENIED_MSG = "❌ Sorry, you are not allowed to use /tagall in this group."
GROUP_INFO_FAILED_MSG = "❌ Could not load this group's info. Try again later."


@dataclass
class BotContext:
    """Services shared by every command invocation."""
    api: WahaApi
    store: GroupStore
    resolver: AuthorityResolver
    limiter: RateLimiter
    mention_blacklist: List[str] = field(default_factory=lambda: sorted(MENTION_BLACKLIST))
    # Empty disables the group message filter
    toxic_words: List[str] = field(
        default_factory=lambda: default_toxic_words() if TOXIC_FILTER_ENABLED else []
    )


@dataclass
class CommandContext:
    bot: BotContext
    chat_id: str
    sender: str
    text: str
    args: List[str]
    message_id: Optional[str] = None

    async def reply(self, text: str, mentions: Optional[List[str]] = None) -> Any:
        return await self.bot.api.send_text(self.chat_id, text, reply_to=self.message_id, mentions=mentions)


def parse_command(text: str) -> Optional[Tuple[str, List[str]]]:
    """Split ``/name@bot arg1 arg2`` into ("name", ["arg1", "arg2"])."""
    text = (text or "").strip()
    if not text.startswith("/") or len(text) < 2:
        return None
    head, *args = text.split()
    name = head[1:].split("@", 1)[0].lower()
    return (name, args) if name else None


def _on_off(value: str) -> Optional[bool]:
    return {"on": True, "off": False}.get(value.lower())


def _numbers_from_args(args: List[str]) -> List[str]:
    raw = " ".join(args).replace(",", " ").split()
    return [to_chat_id(n) for n in raw if normalize(n)]


async def _ensure_group_record(ctx: CommandContext) -> bool:
    """Create the local record from live group info when it is missing."""
    store, api = ctx.bot.store, ctx.bot.api
    if await store.get(ctx.chat_id) is not None:
        return True
    try:
        info = await api.get_group(ctx.chat_id)
        participants = info.get("participants")
        if not isinstance(participants, list):
            participants = await api.get_participants(ctx.chat_id)
    except TransportError as e:
        logger.warning(f"Could not bootstrap {ctx.chat_id} from group info: {e}")
        return False
    owner = info.get("owner") or info.get("ownerJid") or ""
    await store.create_if_absent(build_record_from_roster(
        ctx.chat_id,
        str(info.get("subject") or info.get("name") or ""),
        owner if isinstance(owner, str) else "",
        participants,
    ))
    return True


# ---------------- handlers ----------------

async def help_cmd(ctx: CommandContext) -> str:
    await ctx.reply(fmt_help((s.name, s.description, s.admin_only) for s in COMMANDS.values()))
    return "help sent"


async def settings_cmd(ctx: CommandContext) -> str:
    record = await ctx.bot.store.get(ctx.chat_id)
    settings = await ctx.bot.store.get_settings(ctx.chat_id)
    await ctx.reply(fmt_settings(record.name if record else "", settings))
    return "settings shown"


async def set_cmd(ctx: CommandContext) -> str:
    args = ctx.args
    if len(args) < 2:
        await ctx.reply(SET_USAGE)
        return "usage shown"

    setting, value = args[0].lower(), args[1]
    changes: Dict[str, Any] = {}
    if setting == "welcome" and value.lower() == "message":
        parts = ctx.text.strip().split(None, 3)
        if len(parts) < 4:
            await ctx.reply(SET_USAGE)
            return "usage shown"
        changes["welcome_message_template"] = parts[3].strip()
    elif setting == "welcome" and _on_off(value) is not None:
        changes["welcome_enabled"] = _on_off(value)
    elif setting in ("sholat", "prayer") and _on_off(value) is not None:
        changes["prayer_reminder_enabled"] = _on_off(value)
    elif setting == "tagall" and value.lower() in {s.value for s in TagAllScope}:
        changes["tag_all_scope"] = TagAllScope(value.lower())
    else:
        await ctx.reply(SET_USAGE)
        return "usage shown"

    if not await _ensure_group_record(ctx):
        await ctx.reply(GROUP_INFO_FAILED_MSG)
        return "group info unavailable"

    await ctx.bot.store.update_settings(ctx.chat_id, **changes)
    shown = {k: (v.value if isinstance(v, TagAllScope) else v) for k, v in changes.items()}
    await ctx.reply("✅ Settings updated: " + ", ".join(f"{k} = {v}" for k, v in shown.items()))
    return "settings updated"


async def _may_tagall(ctx: CommandContext) -> bool:
    try:
        scope = (await ctx.bot.store.get_settings(ctx.chat_id)).tag_all_scope
    except StoreError as e:
        logger.error(f"Settings for {ctx.chat_id} unreadable, assuming admin scope: {e}")
        scope = TagAllScope.ADMIN
    if scope is TagAllScope.MEMBER:
        return True
    if scope is TagAllScope.OWNER:
        return await ctx.bot.resolver.is_owner(ctx.chat_id, ctx.sender)
    return await ctx.bot.resolver.is_admin(ctx.chat_id, ctx.sender)


async def tagall_cmd(ctx: CommandContext) -> str:
    try:
        participants = await ctx.bot.api.get_participants(ctx.chat_id)
    except TransportError as e:
        logger.error(f"/tagall roster fetch for {ctx.chat_id} failed: {e}")
        await ctx.reply(GROUP_INFO_FAILED_MSG)
        return "roster unavailable"

    targets = mention_targets(participants, ctx.bot.mention_blacklist)
    if not targets:
        await ctx.reply("🤷 Nobody to mention.")
        return "nobody to mention"
    note = " ".join(ctx.args)
    text = f"{note}\n\n{fmt_mentions(targets)}" if note else fmt_mentions(targets)
    await ctx.bot.api.send_text(ctx.chat_id, text, mentions=[to_chat_id(t) for t in targets])
    return "mention sent"


async def kick_cmd(ctx: CommandContext) -> str:
    targets = _numbers_from_args(ctx.args)
    if not targets:
        await ctx.reply("⚠️ Usage: /kick <phone number>\nExample: /kick 628123456789")
        return "invalid format"
    try:
        await ctx.bot.api.remove_participants(ctx.chat_id, targets)
    except TransportError as e:
        logger.error(f"/kick in {ctx.chat_id} failed: {e}")
        await ctx.reply("❌ Failed to remove member.")
        return "kick failed"
    await ctx.reply(f"✅ Removed {', '.join(normalize(t) for t in targets)} from the group.")
    return "kicked"


async def add_cmd(ctx: CommandContext) -> str:
    targets = _numbers_from_args(ctx.args)
    if not targets:
        await ctx.reply("⚠️ Usage: /add <number1,number2>\nExample: /add 628123456789,628987654321")
        return "invalid format"
    try:
        await ctx.bot.api.add_participants(ctx.chat_id, targets)
    except TransportError as e:
        logger.error(f"/add in {ctx.chat_id} failed: {e}")
        await ctx.reply("❌ Failed to add members.")
        return "add failed"
    await ctx.reply(f"✅ Added {', '.join(normalize(t) for t in targets)} to the group.")
    return "added"


async def _set_admins_only(ctx: CommandContext, admins_only: bool) -> str:
    try:
        ok = await ctx.bot.api.set_messages_admin_only(ctx.chat_id, admins_only)
    except TransportError as e:
        logger.error(f"Messages-admin-only={admins_only} for {ctx.chat_id} failed: {e}")
        ok = False
    if not ok:
        await ctx.reply("❌ Failed to change who can send messages.")
        return "group setting failed"
    if admins_only:
        await ctx.reply("🔒 Group closed. Only admins can send messages now.")
        return "group closed"
    await ctx.reply("🔓 Group opened. Everyone can send messages now.")
    return "group opened"


async def closegroup_cmd(ctx: CommandContext) -> str:
    return await _set_admins_only(ctx, True)


async def opengroup_cmd(ctx: CommandContext) -> str:
    return await _set_admins_only(ctx, False)


async def debugadmin_cmd(ctx: CommandContext) -> str:
    decision = await ctx.bot.resolver.resolve(ctx.chat_id, ctx.sender)
    await ctx.reply(fmt_admin_decision(normalize(ctx.sender), decision))
    return "debug sent"


COMMANDS: Dict[str, CommandSpec] = {
    spec.name: spec
    for spec in (
        CommandSpec("help", help_cmd, description="Show this help"),
        CommandSpec("settings", settings_cmd, group_only=True, description="Show group settings"),
        CommandSpec("tagall", tagall_cmd, group_only=True, rate_limited=True, permission=_may_tagall,
                    denied_reply=TAGALL_DENIED_MSG, description="Mention every group member"),
        CommandSpec("debugadmin", debugadmin_cmd, group_only=True, description="Check your admin status"),
        CommandSpec("set", set_cmd, admin_only=True, group_only=True, description="Change group settings"),
        CommandSpec("kick", kick_cmd, admin_only=True, group_only=True, description="<number> - Remove a member"),
        CommandSpec("add", add_cmd, admin_only=True, group_only=True, description="<n1,n2> - Add members"),
        CommandSpec("closegroup", closegroup_cmd, admin_only=True, group_only=True,
                    description="Only admins can send messages"),
        CommandSpec("opengroup", opengroup_cmd, admin_only=True, group_only=True,
                    description="Everyone can send messages"),
    )
}


async def dispatch(bot: BotContext, message: IncomingMessage) -> Optional[str]:
    """Screen group messages for toxic words, then run the command in ``message``, if any.

    Returns a short status.
    """
    if message.from_me:
        return None
    if is_group_chat(message.chat_id):
        found = check_toxic(message.text, bot.toxic_words)
        if found:
            logger.info(f"🚫 Toxic message from {normalize(message.sender)} in {message.chat_id}: {found}")
            await bot.api.send_text(message.chat_id, TOXIC_WARNING_MSG, reply_to=message.message_id)
            return "toxic message blocked"
    parsed = parse_command(message.text)
    if parsed is None:
        return None
    name, args = parsed
    spec = COMMANDS.get(name)
    if spec is None:
        return None

    ctx = CommandContext(bot, message.chat_id, message.sender, message.text, args, message.message_id)
    gate = await check_access(spec, ctx.chat_id, ctx.sender, bot.resolver)
    if not gate.allowed:
        logger.info(f"/{name} denied for {normalize(ctx.sender)} in {ctx.chat_id}")
        await ctx.reply(gate.reply)
        return "access denied"
    if spec.permission is not None and not await spec.permission(ctx):
        logger.info(f"/{name} not permitted for {normalize(ctx.sender)} in {ctx.chat_id}")
        await ctx.reply(spec.denied_reply)
        return "not authorized"
    if spec.rate_limited and not bot.limiter.hit((ctx.chat_id, name)):
        await ctx.reply(RATE_LIMITED_MSG)
        return "rate limited"

    logger.info(f"/{name} from {normalize(ctx.sender)} in {ctx.chat_id}")
    return await spec.handler(ctx)
