"""Middleware chains — interceptors run around handler dispatch.

Each handler registry owns one :class:`MiddlewareChain`.  Middlewares are
coroutine functions ``async def mw(update, ctx) -> None`` tagged with a
:class:`Stage`:

* ``PRE``: once per update, before any filter is evaluated.
* ``PROCESS``: before each handler whose filters passed.  Raising
  :class:`~dispatch.errors.MiddlewareRejection` skips that handler only
  (throttling, auth gates).
* ``POST``: once per update, after every handler was processed.

Example::

    async def only_admins(update, ctx):
        if ctx.user_id not in ADMINS:
            raise MiddlewareRejection("not an admin")

    dp.message_handler.register_middleware(only_admins, Stage.PROCESS)
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Awaitable, Callable

from sdk.models import Update

if TYPE_CHECKING:
    from dispatch.context import HandlerContext

MiddlewareFunc = Callable[[Update, "HandlerContext"], Awaitable[None]]


class Stage(enum.Enum):
    PRE = "pre"
    PROCESS = "process"
    POST = "post"


class MiddlewareChain:
    """Ordered middlewares, grouped by stage."""

    def __init__(self) -> None:
        self._chain: dict[Stage, list[MiddlewareFunc]] = {stage: [] for stage in Stage}

    def register(self, func: MiddlewareFunc, stage: Stage = Stage.PROCESS) -> MiddlewareFunc:
        """Append *func* to the *stage* chain and return it."""
        self._chain[stage].append(func)
        return func

    def unregister(self, func: MiddlewareFunc, stage: Stage | None = None) -> bool:
        """Remove *func* from *stage* (or from every stage).  Returns True if found."""
        found = False
        for s in ([stage] if stage is not None else list(Stage)):
            if func in self._chain[s]:
                self._chain[s].remove(func)
                found = True
        return found

    def middlewares(self, stage: Stage) -> tuple[MiddlewareFunc, ...]:
        return tuple(self._chain[stage])

    async def trigger(self, stage: Stage, update: Update, ctx: HandlerContext) -> None:
        """Run the *stage* chain in order.  The first exception stops it and propagates."""
        for func in self._chain[stage]:
            await func(update, ctx)

    def __len__(self) -> int:
        return sum(len(funcs) for funcs in self._chain.values())
