import os
import logging
from typing import Set

from dotenv import load_dotenv


def load_env() -> None:
    """Load environment variables from a .env file if available."""
    load_dotenv()


# Load env early
load_env()

# Logging configuration
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, log_level, logging.INFO),
)
logger = logging.getLogger("wagroupbot")

# Reduce noisy libraries
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
logging.getLogger("aiohttp.client").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_csv(raw: str | None) -> Set[str]:
    if not raw:
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


class Config:
    """Application configuration loaded from environment variables."""

    # WAHA (WhatsApp HTTP API) connection
    WAHA_BASE_URL: str = os.getenv("WAHA_BASE_URL", "http://localhost:3000").strip().rstrip("/")
    WAHA_API_KEY: str = os.getenv("WAHA_API_KEY", "").strip()
    WAHA_SESSION: str = os.getenv("WAHA_SESSION", "default").strip()

    # The bot's own WhatsApp id, used to detect "bot removed from group"
    BOT_PHONE_ID: str = os.getenv("BOT_PHONE_ID", "").strip()

    # Persisted group roster/settings
    GROUP_STORE_FILE: str = os.getenv("GROUP_STORE_FILE", "group_store.json")

    # Transport retry policy (delay = base * 2^attempt)
    HTTP_MAX_ATTEMPTS: int = int(os.getenv("HTTP_MAX_ATTEMPTS", "3"))
    HTTP_BACKOFF_BASE: float = float(os.getenv("HTTP_BACKOFF_BASE", "1.0"))
    HTTP_TIMEOUT_SECS: float = float(os.getenv("HTTP_TIMEOUT_SECS", "25"))

    # Webhook server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))

    # /tagall spam protection, per chat per hour
    TAGALL_LIMIT_PER_HOUR: int = int(os.getenv("TAGALL_LIMIT_PER_HOUR", "5"))

    # Numbers never mentioned by /tagall
    MENTION_BLACKLIST: Set[str] = parse_csv(os.getenv("MENTION_BLACKLIST"))

    # Group message moderation: extra words on top of the built-in list
    TOXIC_FILTER_ENABLED: bool = os.getenv("TOXIC_FILTER_ENABLED", "true").strip().lower() in ("1", "true", "yes", "on")
    TOXIC_WORDS: Set[str] = {w.lower() for w in parse_csv(os.getenv("TOXIC_WORDS"))}

    # Prayer reminders (times from Aladhan, local clock at PRAYER_UTC_OFFSET hours)
    PRAYER_REMINDERS_ENABLED: bool = os.getenv("PRAYER_REMINDERS_ENABLED", "true").strip().lower() in ("1", "true", "yes", "on")
    PRAYER_API_URL: str = os.getenv("PRAYER_API_URL", "https://api.aladhan.com/v1").strip().rstrip("/")
    PRAYER_CITY: str = os.getenv("PRAYER_CITY", "Jakarta").strip()
    PRAYER_COUNTRY: str = os.getenv("PRAYER_COUNTRY", "Indonesia").strip()
    PRAYER_UTC_OFFSET: float = float(os.getenv("PRAYER_UTC_OFFSET", "7"))
    PRAYER_TZ_LABEL: str = os.getenv("PRAYER_TZ_LABEL", "WIB").strip()
    PRAYER_POLL_SECS: int = int(os.getenv("PRAYER_POLL_SECS", "30"))

    @classmethod
    def validate_config(cls) -> None:
        if cls.HTTP_MAX_ATTEMPTS < 1:
            raise ValueError("HTTP_MAX_ATTEMPTS must be at least 1")
        if cls.HTTP_BACKOFF_BASE < 0:
            raise ValueError("HTTP_BACKOFF_BASE must not be negative")
        if cls.TAGALL_LIMIT_PER_HOUR < 1:
            raise ValueError("TAGALL_LIMIT_PER_HOUR must be at least 1")
        if cls.PRAYER_POLL_SECS < 1:
            raise ValueError("PRAYER_POLL_SECS must be at least 1")
        if not -12 <= cls.PRAYER_UTC_OFFSET <= 14:
            raise ValueError("PRAYER_UTC_OFFSET must be between -12 and 14")
        if not cls.WAHA_API_KEY:
            logger.warning("WAHA_API_KEY not configured - platform calls may be rejected")
        if not cls.BOT_PHONE_ID:
            logger.warning("BOT_PHONE_ID not configured - relying on webhook 'me' field to detect removal")

    @classmethod
    def get_api_base_url(cls) -> str:
        logger.info(f"Using WAHA endpoint: {cls.WAHA_BASE_URL} (session '{cls.WAHA_SESSION}')")
        return cls.WAHA_BASE_URL


# Initialize and expose commonly used constants
config = Config()
config.validate_config()
BASE = config.get_api_base_url()
WAHA_API_KEY = config.WAHA_API_KEY
WAHA_SESSION = config.WAHA_SESSION
BOT_PHONE_ID = config.BOT_PHONE_ID
GROUP_STORE_FILE = config.GROUP_STORE_FILE

HTTP_MAX_ATTEMPTS = config.HTTP_MAX_ATTEMPTS
HTTP_BACKOFF_BASE = config.HTTP_BACKOFF_BASE
HTTP_TIMEOUT_SECS = config.HTTP_TIMEOUT_SECS

HOST = config.HOST
PORT = config.PORT
TAGALL_LIMIT_PER_HOUR = config.TAGALL_LIMIT_PER_HOUR
MENTION_BLACKLIST = config.MENTION_BLACKLIST

TOXIC_FILTER_ENABLED = config.TOXIC_FILTER_ENABLED
TOXIC_WORDS = config.TOXIC_WORDS

PRAYER_REMINDERS_ENABLED = config.PRAYER_REMINDERS_ENABLED
PRAYER_API_URL = config.PRAYER_API_URL
PRAYER_CITY = config.PRAYER_CITY
PRAYER_COUNTRY = config.PRAYER_COUNTRY
PRAYER_UTC_OFFSET = config.PRAYER_UTC_OFFSET
PRAYER_TZ_LABEL = config.PRAYER_TZ_LABEL
PRAYER_POLL_SECS = config.PRAYER_POLL_SECS
