"""Handler registries — one per update kind.

Design:
- ``Handler`` is a :class:`Protocol` parameterised by the payload type, so a
  ``HandlerRegistry[Message]`` only accepts callbacks taking a ``Message``.
  The router narrows the update before calling, which rules out signature
  mismatches at type-check time instead of at dispatch time.
- ``HandlerEntry`` is an immutable (callback, filters) pair identified by the
  opaque ``HandlerToken`` returned from :meth:`HandlerRegistry.register`.
- Insertion order is dispatch priority.

Usage::

    @dp.message_handler(Regexp(r"^/start"))
    async def on_start(message: Message, ctx: HandlerContext) -> None: ...

    token = dp.poll_handler.register(on_poll)
    dp.poll_handler.unregister(token)
"""

from __future__ import annotations

import dataclasses
import itertools
from typing import (
    TYPE_CHECKING,
    Callable,
    Generic,
    Protocol,
    TypeVar,
)

from core.logger import CourierLogger
from sdk.models import Update

from dispatch.errors import MiddlewareRejection
from dispatch.filters import Filter, as_filter, check_all
from dispatch.middleware import MiddlewareChain, MiddlewareFunc, Stage
from dispatch.router import UpdateKind, payload_of
from dispatch.supervisor import TaskSupervisor

if TYPE_CHECKING:
    from dispatch.context import HandlerContext

logger = CourierLogger.get_logger("registry")

# ── Type variables ───────────────────────────────────────────────────────────

T = TypeVar("T")  # payload type of one registry
T_contra = TypeVar("T_contra", contravariant=True)


# ── Handler protocol ─────────────────────────────────────────────────────────

class Handler(Protocol[T_contra]):
    """Callback receiving the narrowed payload and its context."""
    async def __call__(self, event: T_contra, ctx: HandlerContext, /) -> None: ...  # noqa: E704


# ── Registry entry ───────────────────────────────────────────────────────────

@dataclasses.dataclass(frozen=True, slots=True)
class HandlerToken:
    """Opaque registration handle; pass it back to ``unregister``."""
    kind: UpdateKind
    seq: int


@dataclasses.dataclass(frozen=True, slots=True)
class HandlerEntry(Generic[T]):
    """A registered callback and the filters that gate it (all must pass)."""
    token: HandlerToken
    callback: Handler[T]
    filters: tuple[Filter, ...] = ()

    @property
    def name(self) -> str:
        return getattr(self.callback, "__qualname__", repr(self.callback))

    def check(self, update: Update) -> bool:
        return check_all(self.filters, update)


# ── Generic registry ─────────────────────────────────────────────────────────

class HandlerRegistry(Generic[T]):
    """Ordered handlers and the middleware chain of one update kind."""

    def __init__(self, kind: UpdateKind) -> None:
        self.kind = kind
        self.middleware = MiddlewareChain()
        self._entries: dict[HandlerToken, HandlerEntry[T]] = {}
        self._seq = itertools.count(1)

    # ── registration ─────────────────────────────────────────────────────

    def register(self, callback: Handler[T], *filters: Filter | Callable[[Update], bool]) -> HandlerToken:
        """Append *callback* gated by *filters* and return its token."""
        token = HandlerToken(self.kind, next(self._seq))
        entry = HandlerEntry(token=token, callback=callback, filters=tuple(as_filter(f) for f in filters))
        self._entries[token] = entry
        logger.debug("Handler registered", extra={"kind": self.kind.value, "handler": entry.name, "filter_count": len(entry.filters)})
        return token

    def __call__(self, *filters: Filter | Callable[[Update], bool]) -> Callable[[Handler[T]], Handler[T]]:
        """Decorator form of :meth:`register`.

        Example::

            @dp.callback_query_handler(Regexp("^vote:"))
            async def on_vote(query: CallbackQuery, ctx: HandlerContext) -> None: ...
        """
        def decorator(func: Handler[T]) -> Handler[T]:
            self.register(func, *filters)
            return func
        return decorator

    def unregister(self, token: HandlerToken) -> bool:
        """Remove the entry registered under *token*.  Returns True if it existed."""
        entry = self._entries.pop(token, None)
        if entry is None:
            return False
        logger.debug("Handler unregistered", extra={"kind": self.kind.value, "handler": entry.name})
        return True

    def register_middleware(self, func: MiddlewareFunc, stage: Stage = Stage.PROCESS) -> MiddlewareFunc:
        return self.middleware.register(func, stage)

    # ── lookup helpers ───────────────────────────────────────────────────

    def entries(self) -> tuple[HandlerEntry[T], ...]:
        """Return a snapshot of the entries in dispatch order."""
        return tuple(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    # ── dispatch ─────────────────────────────────────────────────────────

    async def notify(self, update: Update, ctx: HandlerContext, supervisor: TaskSupervisor) -> int:
        """Run the pipeline for *update* and return how many handlers were invoked.

        A failing filter, middleware or callback only affects its own entry;
        the remaining entries are still processed.
        """
        payload: T = payload_of(update, self.kind)
        log_extra = {"update_id": update.update_id, "kind": self.kind.value}

        try:
            await self.middleware.trigger(Stage.PRE, update, ctx)
        except Exception:
            logger.exception("Pre-middleware failed", extra=log_extra)

        invoked = 0
        for entry in self.entries():
            try:
                if not entry.check(update):
                    continue
            except Exception:
                logger.exception("Filter raised, skipping handler", extra={**log_extra, "handler": entry.name})
                continue

            try:
                await self.middleware.trigger(Stage.PROCESS, update, ctx)
            except MiddlewareRejection as exc:
                logger.info("Handler skipped by middleware", extra={**log_extra, "handler": entry.name, "reason": str(exc)})
                continue
            except Exception:
                logger.exception("Process-middleware failed, skipping handler", extra={**log_extra, "handler": entry.name})
                continue

            await supervisor.submit(
                entry.callback(payload, ctx),
                name=f"{self.kind.value}:{entry.name}:{update.update_id}",
                context=ctx,
            )
            invoked += 1

        try:
            await self.middleware.trigger(Stage.POST, update, ctx)
        except Exception:
            logger.exception("Post-middleware failed", extra=log_extra)

        return invoked
