"""Telegram Bot API SDK — Pydantic models, the transport client, and exceptions.

Usage::

    from sdk import BotClient, APIException
    from sdk.models import Message, Update
"""

from sdk.client import BotClient, check_token
from sdk.exceptions import APIException, DecodeError, InvalidToken, TransportError
from sdk.server import PRODUCTION_SERVER, TelegramAPIServer

__all__ = [
    "BotClient",
    "check_token",
    "APIException",
    "DecodeError",
    "InvalidToken",
    "TransportError",
    "PRODUCTION_SERVER",
    "TelegramAPIServer",
]
