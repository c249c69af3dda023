"""Webhook delivery driver built on :mod:`aiohttp.web`.

Telegram POSTs one JSON-encoded update per request.  The server decodes it,
puts it on the dispatcher queue and answers ``200`` immediately; handler
failures after that point are reported through logging, never as HTTP errors.
Malformed bodies get ``400 {"error": "<message>"}``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import ssl
from typing import Optional

from aiohttp import web

from core.logger import CourierLogger
from sdk.exceptions import DecodeError
from sdk.models import Update, decode_update

logger = CourierLogger.get_logger("webhook")

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


@dataclasses.dataclass(frozen=True, slots=True)
class WebhookConfig:
    """Settings for :meth:`dispatch.dispatcher.Dispatcher.start_webhook`.

    ``url`` is the public HTTPS address registered with ``setWebhook``;
    ``path`` is the route served locally (usually the path part of ``url``).
    """

    url: str
    path: str = "/webhook"
    host: str = "0.0.0.0"
    port: int = 8443
    certificate: Optional[str] = None
    private_key: Optional[str] = None
    secret_token: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[tuple[str, ...]] = None
    drop_pending_updates: bool = False
    safe_exit: bool = True


def _json_error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


class WebhookServer:
    """HTTP endpoint feeding decoded updates into *queue*."""

    def __init__(self, queue: asyncio.Queue[Update], config: WebhookConfig) -> None:
        self.queue = queue
        self.config = config
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(self.config.path, self.handle_update)
        app.router.add_get("/health", self.health_check)
        return app

    async def handle_update(self, request: web.Request) -> web.Response:
        if self.config.secret_token and request.headers.get(SECRET_HEADER) != self.config.secret_token:
            logger.warning("Rejected webhook request with a bad secret token", extra={"remote": request.remote})
            return _json_error("invalid secret token", status=403)

        body = await request.read()
        try:
            update = decode_update(body)
        except DecodeError as exc:
            logger.warning("Rejected undecodable webhook body", extra={"remote": request.remote, "error": str(exc)})
            return _json_error(str(exc), status=400)

        self.queue.put_nowait(update)
        logger.debug("Webhook update enqueued", extra={"update_id": update.update_id})
        return web.Response(status=200)

    async def health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    def _ssl_context(self) -> ssl.SSLContext | None:
        if not self.config.certificate:
            return None
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.load_cert_chain(self.config.certificate, self.config.private_key)
        return context

    async def start(self) -> None:
        """Bind the HTTP(S) listener."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port, ssl_context=self._ssl_context())
        await site.start()
        logger.info(
            "Webhook server listening",
            extra={"host": self.config.host, "port": self.config.port, "path": self.config.path, "tls": bool(self.config.certificate)},
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Webhook server stopped")
