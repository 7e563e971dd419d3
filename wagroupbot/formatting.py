from __future__ import annotations

from typing import Any, Iterable, List, Tuple

from .identity import normalize, primary_identity
from .state import GroupSettings


def _on_off(flag: bool) -> str:
    return "✅ on" if flag else "❌ off"


def fmt_help(commands: Iterable[Tuple[str, str, bool]]) -> str:
    """Help text from (name, description, admin_only) triples."""
    general: List[str] = []
    admin: List[str] = []
    for name, description, admin_only in commands:
        line = f"/{name} - {description}" if description else f"/{name}"
        (admin if admin_only else general).append(line)

    parts = ["🤖 *Bot Commands*", "", "📋 *General*", *general]
    if admin:
        parts += ["", "👑 *Admin Only*", *admin]
    return "\n".join(parts)


def fmt_settings(group_name: str, settings: GroupSettings) -> str:
    return "\n".join([
        f"⚙️ *Settings for {group_name or 'this group'}*",
        "",
        f"👋 Welcome message: {_on_off(settings.welcome_enabled)}",
        f"📝 Welcome template: {settings.welcome_message_template}",
        f"📣 /tagall allowed for: {settings.tag_all_scope.value}",
        f"🕌 Prayer reminder: {_on_off(settings.prayer_reminder_enabled)}",
    ])


SET_USAGE = "\n".join([
    "⚙️ *Group Settings*",
    "",
    "Usage:",
    "• /set welcome on|off - Toggle welcome messages",
    "• /set welcome message <text> - Template, supports {group} and {user}",
    "• /set tagall admin|member|owner - Who can use /tagall",
    "• /set sholat on|off - Toggle prayer reminders",
])


def mention_targets(participants: Iterable[Any], blacklist: Iterable[str] = ()) -> List[str]:
    """Bare ids to mention, without duplicates or blacklisted numbers."""
    blocked = {normalize(b) for b in blacklist}
    out: List[str] = []
    seen = set()
    for p in participants:
        ident = primary_identity(p)
        if not ident or ident in blocked or ident in seen:
            continue
        seen.add(ident)
        out.append(ident)
    return out


def fmt_mentions(targets: Iterable[str]) -> str:
    return " ".join(f"@{t}" for t in targets)


def render_welcome(template: str, group_name: str, user: str) -> str:
    """Fill ``{group}`` and ``{user}``; other braces are left alone."""
    return template.replace("{group}", group_name or "the group").replace("{user}", normalize(user))


def fmt_admin_decision(identity: str, decision: Any) -> str:
    lines = [
        "🔍 *Admin check*",
        f"User: {identity}",
        f"Admin: {'yes' if decision.is_admin else 'no'}",
        f"Source: {decision.source} ({decision.reason.value})",
    ]
    if decision.fallback_cause is not None:
        lines.append(f"Live roster: {decision.fallback_cause.value}")
    if decision.rule:
        lines.append(f"Matched rule: {decision.rule}")
    return "\n".join(lines)

