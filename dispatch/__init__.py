"""Dispatch engine — routing, handler registries, middleware, delivery drivers.

This package may import from ``core/`` and ``sdk/``.

Usage::

    from dispatch import Dispatcher, PollingConfig
    from dispatch.filters import Command

    dp = Dispatcher(BotClient(token))

    @dp.message_handler(Command("start"))
    async def start(message, ctx):
        await asyncio.to_thread(ctx.client.send_message, message.chat.id, "hi")

    dp.run_polling(PollingConfig())
"""

from dispatch.context import HandlerContext
from dispatch.dispatcher import Dispatcher, DispatcherConfig
from dispatch.errors import (
    DispatcherError,
    MiddlewareRejection,
    ModeConflictError,
    StateCorrelationError,
    UnsupportedUpdateKind,
)
from dispatch.lifecycle import Mode
from dispatch.middleware import Stage
from dispatch.polling import PollingConfig
from dispatch.router import ROUTING_ORDER, UpdateKind
from dispatch.webhook import WebhookConfig

__all__ = [
    "HandlerContext",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherError",
    "MiddlewareRejection",
    "ModeConflictError",
    "StateCorrelationError",
    "UnsupportedUpdateKind",
    "Mode",
    "Stage",
    "PollingConfig",
    "ROUTING_ORDER",
    "UpdateKind",
    "WebhookConfig",
]
