"""Application configuration — environment variables and derived constants.

Loads the bot token, Bot API server and webhook settings from the environment
via ``python-dotenv``.  All values are resolved at import time so ``main`` can
``from config import …`` without repeated lookups.  Library code never imports
this module; ``main`` passes the values into constructors.
"""

# ── stdlib ───────────────────────────────────────────────────────────────────
import os

# ── third-party ──────────────────────────────────────────────────────────────
from dotenv import load_dotenv

# ── core ─────────────────────────────────────────────────────────────────────
from core.logger import CourierLogger

# ── Environment bootstrap ────────────────────────────────────────────────────
load_dotenv()

# ── Logger (used for startup diagnostics at the bottom of this module) ───────
logger = CourierLogger.get_logger()


# ── Helper functions (private) ───────────────────────────────────────────────


def _env_bool(name: str, default: bool) -> bool:
    """Interpret ``1/true/yes/on`` (any case) as True and ``0/false/no/off`` as False."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    logger.warning("Unrecognised boolean in environment, using default", extra={"variable": name, "value": raw, "default": default})
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Unrecognised integer in environment, using default", extra={"variable": name, "value": raw, "default": default})
        return default


# ── Public constants ─────────────────────────────────────────────────────────

BOT_TOKEN: str | None = os.environ.get("BOT_TOKEN")
API_BASE: str = os.environ.get("API_BASE", "https://api.telegram.org").rstrip("/")

# Webhook mode is selected when WEBHOOK_HOST is set (e.g. "https://bot.example.com").
WEBHOOK_HOST: str | None = os.environ.get("WEBHOOK_HOST") or None
WEBHOOK_PATH: str = os.environ.get("WEBHOOK_PATH", "/webhook")
WEBAPP_HOST: str = os.environ.get("WEBAPP_HOST", "0.0.0.0")
WEBAPP_PORT: int = _env_int("WEBAPP_PORT", 8443)
SSL_CERT_PATH: str | None = os.environ.get("SSL_CERT_PATH") or None
SSL_KEY_PATH: str | None = os.environ.get("SSL_KEY_PATH") or None

SYNCHRONOUS: bool = _env_bool("SYNCHRONOUS", True)
WELCOME: bool = _env_bool("WELCOME", True)
STATE_FILE: str = os.environ.get("STATE_FILE", "data/states.json")


# ── Startup diagnostics ─────────────────────────────────────────────────────

if BOT_TOKEN:
    logger.info("Config loaded — BOT_TOKEN is set", extra={"api_base": API_BASE})
else:
    logger.warning("Config loaded — BOT_TOKEN is NOT set")

if WEBHOOK_HOST:
    logger.info("Webhook mode configured", extra={"webhook_host": WEBHOOK_HOST, "webhook_path": WEBHOOK_PATH, "port": WEBAPP_PORT})
else:
    logger.info("Long-polling mode configured")
