"""Tests for the Dispatcher: routing, state, lifecycle and safe exit."""

import asyncio
import signal
import sys
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.fsm import State, StatesGroup
from core.storage import MemoryStorage
from dispatch.dispatcher import Dispatcher, DispatcherConfig
from dispatch.errors import ModeConflictError, StateCorrelationError, UnsupportedUpdateKind
from dispatch.filters import Regexp
from dispatch.lifecycle import Mode
from dispatch.middleware import Stage
from dispatch.polling import PollingConfig
from dispatch.webhook import WebhookConfig
from sdk.exceptions import TransportError
from sdk.models import Update, User, WebhookInfo


# ── Fixtures ─────────────────────────────────────────────────────────────────


def message_update(text: str = "hi", update_id: int = 1) -> Update:
    return Update.model_validate({
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "date": 0,
            "chat": {"id": 100, "type": "private"},
            "from": {"id": 42, "is_bot": False, "first_name": "Ada"},
            "text": text,
        },
    })


def callback_update(update_id: int = 2) -> Update:
    return Update.model_validate({
        "update_id": update_id,
        "callback_query": {
            "id": "cb",
            "from": {"id": 42, "is_bot": False, "first_name": "Ada"},
            "chat_instance": "ci",
            "data": "x",
        },
    })


def poll_answer_update(update_id: int = 3) -> Update:
    return Update.model_validate({
        "update_id": update_id,
        "poll_answer": {"poll_id": "p", "user": {"id": 42, "is_bot": False, "first_name": "Ada"}, "option_ids": [0]},
    })


def fake_client(webhook_url: str = "") -> MagicMock:
    client = MagicMock()
    client.fetch_updates.return_value = []
    client.get_updates.return_value = []
    client.get_webhook_info.return_value = WebhookInfo(url=webhook_url)
    client.delete_webhook.return_value = True
    client.set_webhook.return_value = True
    client.get_me.return_value = User(id=1, is_bot=True, first_name="Courier", username="courier_bot")
    return client


def scripted(*results):
    """``fetch_updates`` stand-in: returns (or raises) *results* in turn, then empty batches."""
    pending = list(results)

    def fetch(*args, **kwargs):
        if not pending:
            return []
        result = pending.pop(0)
        if isinstance(result, Exception):
            raise result
        return result
    return fetch


FAST_POLLING = PollingConfig(timeout=0, relax=0.01, error_sleep=0.01, safe_exit=False)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class Chat(StatesGroup):
    greeting = State()


@pytest.fixture()
def dp():
    return Dispatcher(fake_client())


# ── Routing ──────────────────────────────────────────────────────────────────


class TestRouting:

    @pytest.mark.asyncio
    async def test_update_reaches_only_its_registry(self, dp: Dispatcher) -> None:
        on_message, on_callback = AsyncMock(), AsyncMock()
        dp.message_handler.register(on_message)
        dp.callback_query_handler.register(on_callback)

        await dp.process_one_update(callback_update())
        on_callback.assert_awaited_once()
        on_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsupported_update_runs_nothing(self, dp: Dispatcher) -> None:
        pre, handler = AsyncMock(), AsyncMock()
        dp.register_middleware(pre, Stage.PRE)
        dp.message_handler.register(handler)

        with pytest.raises(UnsupportedUpdateKind) as exc_info:
            await dp.process_one_update(Update(update_id=9))
        assert exc_info.value.update_id == 9
        pre.assert_not_called()
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_feed_update_swallows_unsupported(self, dp: Dispatcher) -> None:
        await dp.feed_update(Update(update_id=9))

    @pytest.mark.asyncio
    async def test_message_scenario(self, dp: Dispatcher) -> None:
        received: list = []

        @dp.message_handler()
        async def echo(message, ctx):
            received.append(message.text)

        assert await dp.process_one_update(message_update("hi")) == 1
        assert received == ["hi"]

    @pytest.mark.asyncio
    async def test_regexp_scenario(self, dp: Dispatcher) -> None:
        start, fallback = AsyncMock(), AsyncMock()
        dp.message_handler.register(start, Regexp("^/start"))
        dp.message_handler.register(fallback)

        await dp.process_one_update(message_update("hello"))
        start.assert_not_called()
        fallback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unregistered_handler_never_runs(self, dp: Dispatcher) -> None:
        handler = AsyncMock()
        token = dp.poll_answer_handler.register(handler)
        dp.poll_answer_handler.unregister(token)

        assert await dp.process_one_update(poll_answer_update()) == 0
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_middleware_scoped_to_kinds(self, dp: Dispatcher) -> None:
        pre = AsyncMock()
        dp.register_middleware(pre, Stage.PRE, kinds=(dp.callback_query_handler.kind,))

        await dp.process_one_update(message_update())
        pre.assert_not_called()
        await dp.process_one_update(callback_update())
        pre.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_carries_correlation(self, dp: Dispatcher) -> None:
        seen: list = []

        @dp.message_handler()
        async def handler(message, ctx):
            seen.append((ctx.chat_id, ctx.user_id, ctx.update.update_id))

        await dp.process_one_update(message_update(update_id=5))
        assert seen == [(100, 42, 5)]

    @pytest.mark.asyncio
    async def test_errors_handler_receives_failures(self, dp: Dispatcher) -> None:
        errors: list = []
        dp.errors_handler(lambda exc, ctx: errors.append((type(exc), ctx.update.update_id)))
        dp.message_handler.register(AsyncMock(side_effect=KeyError("x")))

        await dp.process_one_update(message_update(update_id=4))
        assert errors == [(KeyError, 4)]


# ── Conversation state ───────────────────────────────────────────────────────


class TestState:

    @pytest.mark.asyncio
    async def test_set_and_reset_through_context(self, dp: Dispatcher) -> None:
        @dp.message_handler()
        async def handler(message, ctx):
            await ctx.set_state(Chat.greeting)

        update = message_update()
        await dp.process_one_update(update)
        assert dp.get_state(update) == "Chat:greeting"
        assert dp.storage.get_state(100, 42) == "Chat:greeting"

        await dp.reset_state(update)
        assert dp.get_state(update) is None

    @pytest.mark.asyncio
    async def test_uncorrelated_update_raises(self, dp: Dispatcher) -> None:
        with pytest.raises(StateCorrelationError):
            await dp.set_state(Update(update_id=1), "x")


# ── Lifecycle ────────────────────────────────────────────────────────────────


class TestPollingLifecycle:

    @pytest.mark.asyncio
    async def test_polled_updates_are_processed_in_order(self) -> None:
        client = fake_client()
        client.fetch_updates.side_effect = scripted([message_update("a", 5), message_update("b", 6), message_update("c", 7)])
        dp = Dispatcher(client)
        received: list = []

        @dp.message_handler()
        async def handler(message, ctx):
            received.append(message.text)

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await wait_until(lambda: len(received) == 3)
        await wait_until(lambda: client.fetch_updates.call_count >= 2)
        dp.stop()
        await task

        assert received == ["a", "b", "c"]
        assert client.fetch_updates.call_args_list[1].args[0] == 8
        assert dp.lifecycle.mode is Mode.IDLE

    @pytest.mark.asyncio
    async def test_startup_and_shutdown_callbacks(self) -> None:
        dp = Dispatcher(fake_client())
        startup, shutdown, webhook_only = AsyncMock(), AsyncMock(), AsyncMock()
        dp.on_startup(startup)
        dp.on_shutdown(shutdown)
        dp.on_startup(webhook_only, polling=False)

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await wait_until(lambda: startup.await_count == 1)
        dp.stop()
        await task

        startup.assert_awaited_once_with(dp)
        shutdown.assert_awaited_once_with(dp)
        webhook_only.assert_not_called()

    @pytest.mark.asyncio
    async def test_safe_exit_closes_storage_once(self) -> None:
        storage = MemoryStorage()
        storage.close = AsyncMock()
        dp = Dispatcher(fake_client(), storage=storage)

        task = asyncio.create_task(dp.start_polling(PollingConfig(timeout=0, relax=0.01, safe_exit=True)))
        await wait_until(lambda: dp._signal_loop is not None)
        dp._on_signal(signal.SIGINT)
        await task

        storage.close.assert_awaited_once()
        assert dp._signal_loop is None
        assert dp.lifecycle.mode is Mode.IDLE

        dp.stop()  # no-op once idle
        storage.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_can_restart_after_shutdown(self) -> None:
        dp = Dispatcher(fake_client())
        for _ in range(2):
            task = asyncio.create_task(dp.start_polling(FAST_POLLING))
            await wait_until(lambda: dp.lifecycle.mode is Mode.POLLING)
            dp.stop()
            await task
        assert dp.lifecycle.mode is Mode.IDLE

    def test_run_polling_twice_on_fresh_loops(self) -> None:
        cycles: list = []
        received: list = []

        def fetch(offset, *args, **kwargs):
            if len(cycles) == 2 and not received:
                return [message_update("again", 9)]
            return []

        client = fake_client()
        client.fetch_updates.side_effect = fetch
        dp = Dispatcher(client)

        async def stop_first_cycle(dispatcher):
            cycles.append(dispatcher.lifecycle.mode)
            if len(cycles) == 1:
                asyncio.get_running_loop().call_later(0.05, dispatcher.stop)

        @dp.message_handler()
        async def handler(message, ctx):
            received.append(message.text)
            ctx.dispatcher.stop()

        dp.on_startup(stop_first_cycle)
        dp.run_polling(FAST_POLLING)
        dp.run_polling(FAST_POLLING)

        assert cycles == [Mode.POLLING, Mode.POLLING]
        assert received == ["again"]
        assert dp.lifecycle.mode is Mode.IDLE

    @pytest.mark.asyncio
    async def test_stop_finishes_current_update_and_drops_the_rest(self) -> None:
        client = fake_client()
        client.fetch_updates.side_effect = scripted([message_update("a", 1), message_update("b", 2), message_update("c", 3)])
        storage = MemoryStorage()
        dp = Dispatcher(client, storage=storage)
        started = asyncio.Event()
        received: list = []
        finished: list = []

        @dp.message_handler()
        async def slow(message, ctx):
            received.append(message.text)
            started.set()
            await asyncio.sleep(0.05)
            finished.append((message.text, storage.closed))

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await asyncio.wait_for(started.wait(), timeout=2)
        dp.stop()
        await task
        assert finished == [("a", False)]
        assert dp._queue is None

        calls = client.fetch_updates.call_count
        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await wait_until(lambda: client.fetch_updates.call_count >= calls + 2)
        dp.stop()
        await task
        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_current_update_cancelled_after_shutdown_timeout(self) -> None:
        client = fake_client()
        client.fetch_updates.side_effect = scripted([message_update()])
        dp = Dispatcher(client, config=DispatcherConfig(shutdown_timeout=0.05))
        started = asyncio.Event()
        outcome: list = []

        @dp.message_handler()
        async def stuck(message, ctx):
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                outcome.append("cancelled")
                raise

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await asyncio.wait_for(started.wait(), timeout=2)
        dp.stop()
        await asyncio.wait_for(task, timeout=2)

        assert outcome == ["cancelled"]
        assert dp.lifecycle.mode is Mode.IDLE

    @pytest.mark.asyncio
    async def test_skip_updates_moves_offset(self) -> None:
        client = fake_client()
        client.get_updates.return_value = [{"update_id": 41}]
        dp = Dispatcher(client)

        config = PollingConfig(timeout=0, relax=0.01, skip_updates=True, safe_exit=False)
        task = asyncio.create_task(dp.start_polling(config))
        await wait_until(lambda: client.fetch_updates.called)
        dp.stop()
        await task

        assert client.get_updates.call_args.args == (-1, None, 1)
        assert client.fetch_updates.call_args_list[0].args[0] == 42

    @pytest.mark.asyncio
    async def test_shutdown_resets_existing_webhook(self) -> None:
        client = fake_client(webhook_url="https://example.com/hook")
        dp = Dispatcher(client)

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await wait_until(lambda: dp.lifecycle.mode is Mode.POLLING)
        dp.stop()
        await task

        client.delete_webhook.assert_called_once()

    @pytest.mark.asyncio
    async def test_startup_failure_still_shuts_down(self) -> None:
        client = fake_client()
        client.get_webhook_info.side_effect = TransportError("offline")
        storage = MemoryStorage()
        dp = Dispatcher(client, storage=storage)

        with pytest.raises(TransportError):
            await dp.start_polling(PollingConfig(reset_webhook=True, safe_exit=False))
        assert storage.closed is True
        assert dp.lifecycle.mode is Mode.IDLE
        client.fetch_updates.assert_not_called()

    @pytest.mark.asyncio
    async def test_welcome_calls_get_me(self) -> None:
        client = fake_client()
        dp = Dispatcher(client, config=DispatcherConfig(welcome=True))

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await wait_until(lambda: client.get_me.called)
        dp.stop()
        await task

    @pytest.mark.asyncio
    async def test_concurrent_handlers_finish_before_storage_closes(self) -> None:
        client = fake_client()
        client.fetch_updates.side_effect = scripted([message_update()])
        storage = MemoryStorage()
        dp = Dispatcher(client, storage=storage, config=DispatcherConfig(synchronous=False))
        started = asyncio.Event()
        finished: list = []

        @dp.message_handler()
        async def slow(message, ctx):
            started.set()
            await asyncio.sleep(0.05)
            finished.append(storage.closed)

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await asyncio.wait_for(started.wait(), timeout=2)
        dp.stop()
        await task

        assert finished == [False]
        assert storage.closed is True


class TestModeExclusivity:

    @pytest.mark.asyncio
    async def test_webhook_while_polling(self) -> None:
        client = fake_client()
        dp = Dispatcher(client)

        task = asyncio.create_task(dp.start_polling(FAST_POLLING))
        await wait_until(lambda: dp.lifecycle.mode is Mode.POLLING)
        with pytest.raises(ModeConflictError):
            await dp.start_webhook(WebhookConfig(url="https://example.com/hook", safe_exit=False))
        client.set_webhook.assert_not_called()
        assert dp.lifecycle.mode is Mode.POLLING

        dp.stop()
        await task

    @pytest.mark.asyncio
    async def test_polling_while_webhook(self) -> None:
        client = fake_client()
        dp = Dispatcher(client)

        with patch("dispatch.dispatcher.WebhookServer") as server_cls:
            server_cls.return_value.start = AsyncMock()
            server_cls.return_value.stop = AsyncMock()
            task = asyncio.create_task(dp.start_webhook(WebhookConfig(url="https://example.com/hook", safe_exit=False)))
            await wait_until(lambda: server_cls.return_value.start.await_count == 1)

            with pytest.raises(ModeConflictError):
                await dp.start_polling(FAST_POLLING)
            client.fetch_updates.assert_not_called()
            assert dp.lifecycle.mode is Mode.WEBHOOK

            dp.stop()
            await task

        client.set_webhook.assert_called_once()
        assert client.set_webhook.call_args.args[0] == "https://example.com/hook"
        server_cls.return_value.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_set_webhook_surfaces(self) -> None:
        client = fake_client()
        client.set_webhook.side_effect = TransportError("bad url")
        dp = Dispatcher(client)

        with pytest.raises(TransportError):
            await dp.start_webhook(WebhookConfig(url="https://example.com/hook", safe_exit=False))
        assert dp.lifecycle.mode is Mode.IDLE
