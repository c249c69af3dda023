"""Per-update handler context.

Every middleware and handler invocation receives the update it belongs to and
the conversation it was correlated with.  Nothing is read back from shared
dispatcher state, so handlers spawned concurrently never observe a later
update.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

from core.fsm import State
from core.identity import get_chat_and_user
from sdk.client import BotClient
from sdk.models import Update

from dispatch.router import UpdateKind

if TYPE_CHECKING:
    from dispatch.dispatcher import Dispatcher


@dataclasses.dataclass(frozen=True, slots=True)
class HandlerContext:
    """What a handler knows about the update it is processing.

    ``data`` is a scratch dict shared by the middlewares and handlers of one
    update (for example an auth middleware can store the resolved account).
    """

    dispatcher: Dispatcher
    update: Update
    kind: UpdateKind
    chat_id: int | None
    user_id: int | None
    data: dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def for_update(cls, dispatcher: Dispatcher, update: Update, kind: UpdateKind) -> HandlerContext:
        chat_id, user_id = get_chat_and_user(update)
        return cls(dispatcher=dispatcher, update=update, kind=kind, chat_id=chat_id, user_id=user_id)

    @property
    def client(self) -> BotClient:
        return self.dispatcher.client

    @property
    def state(self) -> str | None:
        """Current conversation state, read from the dispatcher's store."""
        return self.dispatcher.get_state(self.update)

    async def set_state(self, state: State | str) -> None:
        await self.dispatcher.set_state(self.update, state)

    async def reset_state(self) -> None:
        await self.dispatcher.reset_state(self.update)
