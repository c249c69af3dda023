import asyncio

from config import (
    API_BASE,
    BOT_TOKEN,
    SSL_CERT_PATH,
    SSL_KEY_PATH,
    STATE_FILE,
    SYNCHRONOUS,
    WEBAPP_HOST,
    WEBAPP_PORT,
    WEBHOOK_HOST,
    WEBHOOK_PATH,
    WELCOME,
)
from core.fsm import State, StatesGroup
from core.logger import CourierLogger
from core.storage import JSONStorage
from dispatch import Dispatcher, DispatcherConfig, HandlerContext, PollingConfig, WebhookConfig
from dispatch.filters import Command, StateFilter
from sdk.client import BotClient
from sdk.models import Message
from sdk.server import TelegramAPIServer

logger = CourierLogger.get_logger()


class Greeting(StatesGroup):
    waiting_for_name = State()


def build_dispatcher() -> Dispatcher:
    """Wire the client, state store and demo handlers together."""
    client = BotClient(BOT_TOKEN or "", server=TelegramAPIServer.from_base(API_BASE))
    storage = JSONStorage(STATE_FILE)
    dp = Dispatcher(client, storage=storage, config=DispatcherConfig(synchronous=SYNCHRONOUS, welcome=WELCOME))

    async def reply(ctx: HandlerContext, chat_id: int, text: str) -> None:
        await asyncio.to_thread(ctx.client.send_message, chat_id, text)

    @dp.message_handler(Command("start"))
    async def handle_start(message: Message, ctx: HandlerContext) -> None:
        """Handle /start: ask for a name and remember that we are waiting."""
        logger.info("User invoked /start", extra={"chat_id": ctx.chat_id, "user_id": ctx.user_id})
        await ctx.set_state(Greeting.waiting_for_name)
        await reply(ctx, message.chat.id, "👋 Hi! What should I call you?")

    @dp.message_handler(StateFilter(storage, None), ~Command("start"))
    async def handle_echo(message: Message, ctx: HandlerContext) -> None:
        if message.text:
            await reply(ctx, message.chat.id, message.text)

    @dp.message_handler(StateFilter(storage, Greeting.waiting_for_name), ~Command("start"))
    async def handle_name(message: Message, ctx: HandlerContext) -> None:
        await ctx.reset_state()
        await reply(ctx, message.chat.id, f"Nice to meet you, {message.text or 'stranger'}!")

    async def on_shutdown(dispatcher: Dispatcher) -> None:
        logger.info("Shutdown hook ran", extra={"handled_failures": dispatcher.supervisor.failures})

    dp.on_shutdown(on_shutdown)
    return dp


def main() -> None:
    """Start the demo bot by webhook when WEBHOOK_HOST is set, else by long polling."""
    if not BOT_TOKEN:
        raise EnvironmentError("BOT_TOKEN environment variable is not set or is empty.")

    dp = build_dispatcher()
    if WEBHOOK_HOST:
        logger.info("Courier bot is running. Serving webhook...")
        dp.run_webhook(
            WebhookConfig(
                url=f"{WEBHOOK_HOST.rstrip('/')}{WEBHOOK_PATH}",
                path=WEBHOOK_PATH,
                host=WEBAPP_HOST,
                port=WEBAPP_PORT,
                certificate=SSL_CERT_PATH,
                private_key=SSL_KEY_PATH,
            )
        )
    else:
        logger.info("Courier bot is running. Polling for updates...")
        dp.run_polling(PollingConfig(reset_webhook=True))


if __name__ == "__main__":
    main()
