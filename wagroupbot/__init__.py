"""WhatsApp group-management bot package.

Modules:
- config: environment and constants
- http: session and request helpers with retry/backoff
- api: WAHA API surface
- identity: participant id normalization
- classifier: admin detection on raw participant records
- state: group record and settings types
- storage: persisted group store
- events: webhook payload decoding
- sync: lifecycle events to store, bulk group sync
- auth: admin authority resolution and command gate
- ratelimit: in-memory command rate limiting
- formatting: message building utilities
- moderation: toxic-word filter for group messages
- prayer: prayer times and group reminders
- commands: command handlers and dispatch
- app: webhook server bootstrap and wiring

Public facade (re-export) for tests and callers.
"""

from .config import Config, BASE, WAHA_SESSION, BOT_PHONE_ID, GROUP_STORE_FILE
from .http import TransportError, make_session, fetch_json, request_json, build_headers
from .api import WahaApi
from .identity import normalize, participant_identities, primary_identity, to_chat_id, is_group_chat
from .classifier import classify, match_admin_rule, is_owner_record
from .state import GroupRecord, GroupSettings, TagAllScope
from .storage import GroupStore, StoreError, GroupNotFoundError
from .events import (
    BotJoinedGroup,
    ParticipantsChanged,
    BotRemovedFromGroup,
    IncomingMessage,
    UnknownEvent,
    decode_event,
)
from .sync import Synchronizer, SyncReport, build_record_from_roster, sync_all_groups
from .auth import (
    AdminDecision,
    AdminReason,
    AuthorityResolver,
    CommandSpec,
    GateResult,
    check_access,
    ACCESS_DENIED_MSG,
    GROUP_ONLY_MSG,
)
from .ratelimit import RateLimiter
from .moderation import check_toxic, default_toxic_words
from .prayer import PrayerTimeService, prayer_loop, send_prayer_reminders
from .commands import BotContext, CommandContext, COMMANDS, dispatch, parse_command
from .app import create_app, main, startup_health_check

__all__ = [
    # Config / HTTP / API
    "Config", "BASE", "WAHA_SESSION", "BOT_PHONE_ID", "GROUP_STORE_FILE",
    "TransportError", "make_session", "fetch_json", "request_json", "build_headers", "WahaApi",
    # Identity / classification
    "normalize", "participant_identities", "primary_identity", "to_chat_id", "is_group_chat",
    "classify", "match_admin_rule", "is_owner_record",
    # State / storage
    "GroupRecord", "GroupSettings", "TagAllScope", "GroupStore", "StoreError", "GroupNotFoundError",
    # Events / sync
    "BotJoinedGroup", "ParticipantsChanged", "BotRemovedFromGroup", "IncomingMessage", "UnknownEvent",
    "decode_event", "Synchronizer", "SyncReport", "build_record_from_roster", "sync_all_groups",
    # Auth / commands / app
    "AdminDecision", "AdminReason", "AuthorityResolver", "CommandSpec", "GateResult", "check_access",
    "ACCESS_DENIED_MSG", "GROUP_ONLY_MSG", "RateLimiter",
    # Moderation / prayer reminders
    "check_toxic", "default_toxic_words", "PrayerTimeService", "prayer_loop", "send_prayer_reminders",
    "BotContext", "CommandContext", "COMMANDS", "dispatch", "parse_command",
    "create_app", "main", "startup_health_check",
]
