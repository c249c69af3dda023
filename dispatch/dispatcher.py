"""Update dispatcher: routing, the consumption loop and delivery lifecycle.

The :class:`Dispatcher` owns one handler registry per update kind, the update
queue fed by the active delivery driver (long polling or webhook), and the
conversation state store.  A single consumer task drains the queue in FIFO
order and routes each update through :meth:`Dispatcher.process_one_update`.

Each delivery cycle gets a fresh queue.  Updates still queued when the cycle
stops are dropped (their offsets are already acknowledged); the update being
handled at that moment is given up to ``shutdown_timeout`` to finish.

Known limitation: in synchronous mode a handler that never returns blocks the
consumer, and with it every later update.
"""

from __future__ import annotations

import asyncio
import dataclasses
import signal
from typing import Any, Coroutine

from core.fsm import State, resolve_state
from core.identity import get_chat_and_user
from core.logger import CourierLogger
from core.storage import BaseStorage, MemoryStorage
from sdk.client import BotClient
from sdk.exceptions import TransportError
from sdk.models import (
    CallbackQuery,
    ChatJoinRequest,
    ChatMemberUpdated,
    ChosenInlineResult,
    InlineQuery,
    Message,
    Poll,
    PollAnswer,
    ShippingQuery,
    Update,
)

from dispatch.context import HandlerContext
from dispatch.errors import StateCorrelationError, UnsupportedUpdateKind
from dispatch.lifecycle import LifecycleCallback, LifecycleManager, Mode
from dispatch.middleware import MiddlewareFunc, Stage
from dispatch.polling import Poller, PollingConfig
from dispatch.registry import HandlerRegistry
from dispatch.router import UpdateKind, classify
from dispatch.supervisor import ErrorHandler, TaskSupervisor
from dispatch.webhook import WebhookConfig, WebhookServer

logger = CourierLogger.get_logger("dispatcher")

_EXIT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclasses.dataclass(frozen=True, slots=True)
class DispatcherConfig:
    """Immutable dispatcher settings.

    ``synchronous`` awaits every handler (and lifecycle callback) inline;
    otherwise each runs as a supervised task.  ``welcome`` calls ``getMe`` on
    startup and logs who the bot is.  ``shutdown_timeout`` bounds how long
    shutdown waits for running handler tasks.
    """

    synchronous: bool = True
    welcome: bool = False
    shutdown_timeout: float | None = 10.0


class Dispatcher:
    """Routes updates to handlers and runs the polling/webhook lifecycle."""

    def __init__(
        self,
        client: BotClient,
        storage: BaseStorage | None = None,
        config: DispatcherConfig | None = None,
    ) -> None:
        self.client = client
        self.storage: BaseStorage = storage if storage is not None else MemoryStorage()
        self.config = config or DispatcherConfig()
        self.lifecycle = LifecycleManager()
        self.supervisor = TaskSupervisor(synchronous=self.config.synchronous)
        self._queue: asyncio.Queue[Update] | None = None
        self._stop_event: asyncio.Event | None = None
        self._in_flight: asyncio.Task[None] | None = None
        self._signal_loop: asyncio.AbstractEventLoop | None = None

        self.message_handler: HandlerRegistry[Message] = HandlerRegistry(UpdateKind.MESSAGE)
        self.edited_message_handler: HandlerRegistry[Message] = HandlerRegistry(UpdateKind.EDITED_MESSAGE)
        self.channel_post_handler: HandlerRegistry[Message] = HandlerRegistry(UpdateKind.CHANNEL_POST)
        self.edited_channel_post_handler: HandlerRegistry[Message] = HandlerRegistry(UpdateKind.EDITED_CHANNEL_POST)
        self.inline_query_handler: HandlerRegistry[InlineQuery] = HandlerRegistry(UpdateKind.INLINE_QUERY)
        self.chosen_inline_result_handler: HandlerRegistry[ChosenInlineResult] = HandlerRegistry(UpdateKind.CHOSEN_INLINE_RESULT)
        self.callback_query_handler: HandlerRegistry[CallbackQuery] = HandlerRegistry(UpdateKind.CALLBACK_QUERY)
        self.shipping_query_handler: HandlerRegistry[ShippingQuery] = HandlerRegistry(UpdateKind.SHIPPING_QUERY)
        self.poll_handler: HandlerRegistry[Poll] = HandlerRegistry(UpdateKind.POLL)
        self.poll_answer_handler: HandlerRegistry[PollAnswer] = HandlerRegistry(UpdateKind.POLL_ANSWER)
        self.my_chat_member_handler: HandlerRegistry[ChatMemberUpdated] = HandlerRegistry(UpdateKind.MY_CHAT_MEMBER)
        self.chat_member_handler: HandlerRegistry[ChatMemberUpdated] = HandlerRegistry(UpdateKind.CHAT_MEMBER)
        self.chat_join_request_handler: HandlerRegistry[ChatJoinRequest] = HandlerRegistry(UpdateKind.CHAT_JOIN_REQUEST)

        self.registries: dict[UpdateKind, HandlerRegistry[Any]] = {
            registry.kind: registry
            for registry in (
                self.message_handler,
                self.edited_message_handler,
                self.channel_post_handler,
                self.edited_channel_post_handler,
                self.inline_query_handler,
                self.chosen_inline_result_handler,
                self.callback_query_handler,
                self.shipping_query_handler,
                self.poll_handler,
                self.poll_answer_handler,
                self.my_chat_member_handler,
                self.chat_member_handler,
                self.chat_join_request_handler,
            )
        }

    # ------------------------------------------------------------------
    #  Registration
    # ------------------------------------------------------------------

    def register_middleware(
        self,
        func: MiddlewareFunc,
        stage: Stage = Stage.PROCESS,
        kinds: tuple[UpdateKind, ...] | None = None,
    ) -> MiddlewareFunc:
        """Attach *func* to the chains of *kinds* (default: every registry)."""
        for kind in kinds or tuple(self.registries):
            self.registries[kind].register_middleware(func, stage)
        return func

    def on_startup(self, callback: LifecycleCallback, *, polling: bool = True, webhook: bool = True) -> LifecycleCallback:
        return self.lifecycle.on_startup(callback, polling=polling, webhook=webhook)

    def on_shutdown(self, callback: LifecycleCallback, *, polling: bool = True, webhook: bool = True) -> LifecycleCallback:
        return self.lifecycle.on_shutdown(callback, polling=polling, webhook=webhook)

    def errors_handler(self, handler: ErrorHandler) -> ErrorHandler:
        """Register ``handler(exc, context)`` for failed handlers and callbacks."""
        return self.supervisor.add_error_handler(handler)

    # ------------------------------------------------------------------
    #  Routing
    # ------------------------------------------------------------------

    async def process_one_update(self, update: Update) -> int:
        """Route *update* to the registry of its kind.

        Returns the number of handlers invoked.

        Raises:
            UnsupportedUpdateKind: If the update has no known payload; no
                middleware or handler runs in that case.
        """
        kind = classify(update)
        ctx = HandlerContext.for_update(self, update, kind)
        logger.debug("Processing update", extra={"update_id": update.update_id, "kind": kind.value, "chat_id": ctx.chat_id, "user_id": ctx.user_id})
        return await self.registries[kind].notify(update, ctx, self.supervisor)

    async def feed_update(self, update: Update) -> None:
        """Process *update*, logging instead of raising."""
        try:
            await self.process_one_update(update)
        except UnsupportedUpdateKind as exc:
            logger.warning("Unsupported update skipped", extra={"update_id": exc.update_id})
        except Exception:
            logger.exception("Update processing failed", extra={"update_id": update.update_id})

    async def _consume(self, queue: asyncio.Queue[Update]) -> None:
        while True:
            update = await queue.get()
            self._in_flight = asyncio.create_task(self.feed_update(update), name=f"update-{update.update_id}")
            try:
                await asyncio.shield(self._in_flight)
            finally:
                self._in_flight = None
                queue.task_done()

    # ------------------------------------------------------------------
    #  Conversation state
    # ------------------------------------------------------------------

    @staticmethod
    def _correlate(update: Update) -> tuple[int | None, int | None]:
        chat_id, user_id = get_chat_and_user(update)
        if chat_id is None and user_id is None:
            raise StateCorrelationError(f"update {update.update_id} belongs to no chat or user")
        return chat_id, user_id

    def get_state(self, update: Update) -> str | None:
        chat_id, user_id = self._correlate(update)
        return self.storage.get_state(chat_id, user_id)

    async def set_state(self, update: Update, state: State | str) -> None:
        """Store *state* for the conversation *update* belongs to."""
        chat_id, user_id = self._correlate(update)
        await self.storage.set_state(chat_id, user_id, resolve_state(state))

    async def reset_state(self, update: Update) -> None:
        chat_id, user_id = self._correlate(update)
        await self.storage.reset_state(chat_id, user_id)

    # ------------------------------------------------------------------
    #  Remote helpers
    # ------------------------------------------------------------------

    async def reset_webhook(self, check: bool = True) -> bool:
        """Delete the remote webhook.  With *check*, only when one is set.

        Returns True if ``deleteWebhook`` was called.
        """
        if check:
            info = await asyncio.to_thread(self.client.get_webhook_info)
            if not info.url:
                return False
        await asyncio.to_thread(self.client.delete_webhook)
        logger.info("Webhook reset")
        return True

    async def skip_updates(self) -> int | None:
        """Acknowledge everything pending; return the offset to resume from."""
        pending = await asyncio.to_thread(self.client.get_updates, -1, None, 1)
        if not pending:
            return None
        last_id = pending[-1].get("update_id") if isinstance(pending[-1], dict) else None
        if not isinstance(last_id, int):
            return None
        logger.info("Skipped pending updates", extra={"last_update_id": last_id})
        return last_id + 1

    async def welcome(self) -> None:
        if not self.config.welcome:
            return
        try:
            me = await asyncio.to_thread(self.client.get_me)
        except TransportError as exc:
            logger.warning("getMe failed during startup", extra={"error": str(exc)})
            return
        logger.info("Bot started", extra={"bot_id": me.id, "username": me.username})

    # ------------------------------------------------------------------
    #  Signals
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Ask the running delivery loop to shut down."""
        if self._stop_event is None or not self.lifecycle.active:
            logger.debug("stop() called while not running")
            return
        self._stop_event.set()

    def _on_signal(self, signum: int) -> None:
        logger.warning("Received exit signal, shutting down", extra={"signal": signal.Signals(signum).name})
        self.stop()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            for sig in _EXIT_SIGNALS:
                loop.add_signal_handler(sig, self._on_signal, sig)
        except (NotImplementedError, RuntimeError) as exc:
            logger.warning("Safe exit unavailable on this platform", extra={"error": str(exc)})
            return
        self._signal_loop = loop

    def _remove_signal_handlers(self) -> None:
        if self._signal_loop is None:
            return
        for sig in _EXIT_SIGNALS:
            self._signal_loop.remove_signal_handler(sig)
        self._signal_loop = None

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------

    async def start_polling(self, config: PollingConfig | None = None) -> None:
        """Run long polling until :meth:`stop` (or an exit signal).

        Raises:
            ModeConflictError: If a webhook (or another polling cycle) is active.
        """
        config = config or PollingConfig()
        self.lifecycle.enter(Mode.POLLING)
        stop = self._stop_event = asyncio.Event()
        queue: asyncio.Queue[Update] = asyncio.Queue()
        self._queue = queue
        try:
            if config.safe_exit:
                self._install_signal_handlers()
            await self.lifecycle.run("startup", Mode.POLLING, self, self.supervisor)
            await self.welcome()
            if config.reset_webhook:
                await self.reset_webhook(check=True)
            if config.skip_updates:
                resume_at = await self.skip_updates()
                if resume_at is not None and resume_at > config.offset:
                    config = dataclasses.replace(config, offset=resume_at)
            poller = Poller(self.client, queue, config)
            await self._serve(poller.run(), "poller", queue, stop)
        finally:
            await self._shutdown()

    async def start_webhook(self, config: WebhookConfig) -> None:
        """Register the webhook and serve it until :meth:`stop` (or an exit signal).

        Raises:
            ModeConflictError: If polling (or another webhook) is active.
            TransportError: If ``setWebhook`` fails; it is not retried.
        """
        self.lifecycle.enter(Mode.WEBHOOK)
        stop = self._stop_event = asyncio.Event()
        queue: asyncio.Queue[Update] = asyncio.Queue()
        self._queue = queue
        try:
            await asyncio.to_thread(
                self.client.set_webhook,
                config.url,
                max_connections=config.max_connections,
                allowed_updates=list(config.allowed_updates) if config.allowed_updates is not None else None,
                drop_pending_updates=config.drop_pending_updates or None,
                secret_token=config.secret_token,
            )
            await self.lifecycle.run("startup", Mode.WEBHOOK, self, self.supervisor)
            await self.welcome()
            if config.safe_exit:
                self._install_signal_handlers()
            await self._serve(self._run_webhook_server(WebhookServer(queue, config)), "webhook", queue, stop)
        finally:
            await self._shutdown()

    def run_polling(self, config: PollingConfig | None = None) -> None:
        """Blocking entry point for :meth:`start_polling`."""
        asyncio.run(self.start_polling(config))

    def run_webhook(self, config: WebhookConfig) -> None:
        """Blocking entry point for :meth:`start_webhook`."""
        asyncio.run(self.start_webhook(config))

    @staticmethod
    async def _run_webhook_server(server: WebhookServer) -> None:
        await server.start()
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    async def _serve(
        self,
        driver: Coroutine[Any, Any, None],
        name: str,
        queue: asyncio.Queue[Update],
        stop: asyncio.Event,
    ) -> None:
        """Run *driver* and the consumer until *stop* is set or either dies.

        The update being handled when the loop ends is awaited (bounded by
        ``shutdown_timeout``) rather than cancelled.
        """
        tasks = {
            asyncio.create_task(driver, name=name),
            asyncio.create_task(self._consume(queue), name="consumer"),
            asyncio.create_task(stop.wait(), name="stop"),
        }
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        in_flight = self._in_flight
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if in_flight is not None:
            await self._finish_in_flight(in_flight)
        for task in done:
            if task.get_name() != "stop" and not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]

    async def _finish_in_flight(self, task: asyncio.Task[None]) -> None:
        _, still_running = await asyncio.wait({task}, timeout=self.config.shutdown_timeout)
        if still_running:
            logger.warning("Cancelled update still being handled at shutdown", extra={"task": task.get_name()})
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _shutdown(self) -> None:
        """Reset the remote subscription, run shutdown callbacks, close the store.

        Runs once per delivery cycle, even when startup failed midway.
        """
        if not self.lifecycle.active:
            return
        mode = self.lifecycle.begin_shutdown()
        logger.info("Stopping dispatcher", extra={"mode": mode.value})
        self._remove_signal_handlers()
        self._drop_queued()
        try:
            try:
                await self.reset_webhook(check=True)
            except TransportError as exc:
                logger.warning("Could not reset webhook during shutdown", extra={"error": str(exc)})
            await self.lifecycle.run("shutdown", mode, self, self.supervisor)
            await self.supervisor.join(self.config.shutdown_timeout)
        finally:
            try:
                await self.storage.close()
            except Exception:
                logger.exception("Closing the state store failed")
            self._stop_event = None
            self.lifecycle.finish_shutdown()

    def _drop_queued(self) -> int:
        """Discard this cycle's queue; return how many updates it still held."""
        queue, self._queue = self._queue, None
        dropped = queue.qsize() if queue is not None else 0
        if dropped:
            logger.warning("Dropping queued updates at shutdown", extra={"dropped": dropped})
        return dropped
