"""Delivery-mode state machine and startup/shutdown callbacks.

Modes move ``IDLE → POLLING | WEBHOOK → SHUTTING_DOWN → IDLE``.  Polling and
webhook delivery are mutually exclusive on one dispatcher; a new cycle may
start once the previous one returned to ``IDLE``.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Awaitable, Callable

from core.logger import CourierLogger

from dispatch.errors import DispatcherError, ModeConflictError
from dispatch.supervisor import TaskSupervisor

if TYPE_CHECKING:
    from dispatch.dispatcher import Dispatcher

logger = CourierLogger.get_logger("lifecycle")

LifecycleCallback = Callable[["Dispatcher"], Awaitable[None]]


class Mode(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    WEBHOOK = "webhook"
    SHUTTING_DOWN = "shutting_down"

    def __str__(self) -> str:
        return self.value


_DELIVERY_MODES = (Mode.POLLING, Mode.WEBHOOK)


class LifecycleManager:
    """Tracks the active delivery mode and owns the per-mode callback lists."""

    def __init__(self) -> None:
        self.mode = Mode.IDLE
        self._startup: dict[Mode, list[LifecycleCallback]] = {m: [] for m in _DELIVERY_MODES}
        self._shutdown: dict[Mode, list[LifecycleCallback]] = {m: [] for m in _DELIVERY_MODES}

    # ── registration ─────────────────────────────────────────────────────

    def on_startup(self, callback: LifecycleCallback, *, polling: bool = True, webhook: bool = True) -> LifecycleCallback:
        """Run *callback* when the selected delivery modes start."""
        self._add(self._startup, callback, polling, webhook, "startup")
        return callback

    def on_shutdown(self, callback: LifecycleCallback, *, polling: bool = True, webhook: bool = True) -> LifecycleCallback:
        """Run *callback* when the selected delivery modes shut down."""
        self._add(self._shutdown, callback, polling, webhook, "shutdown")
        return callback

    @staticmethod
    def _add(table: dict[Mode, list[LifecycleCallback]], callback: LifecycleCallback, polling: bool, webhook: bool, phase: str) -> None:
        if not polling and not webhook:
            logger.warning(
                "Lifecycle callback registered for no mode; it will never run",
                extra={"phase": phase, "callback": getattr(callback, "__qualname__", repr(callback))},
            )
            return
        if polling:
            table[Mode.POLLING].append(callback)
        if webhook:
            table[Mode.WEBHOOK].append(callback)

    def callbacks(self, phase: str, mode: Mode) -> tuple[LifecycleCallback, ...]:
        table = self._startup if phase == "startup" else self._shutdown
        return tuple(table.get(mode, ()))

    # ── transitions ──────────────────────────────────────────────────────

    @property
    def active(self) -> bool:
        return self.mode in _DELIVERY_MODES

    def enter(self, mode: Mode) -> None:
        """Switch from ``IDLE`` to *mode*.

        Raises:
            ModeConflictError: If another delivery mode (or this one) is active.
        """
        if mode not in _DELIVERY_MODES:
            raise ValueError(f"{mode} is not a delivery mode")
        if self.mode is not Mode.IDLE:
            raise ModeConflictError(self.mode, mode)
        self.mode = mode
        logger.info("Delivery mode entered", extra={"mode": mode.value})

    def begin_shutdown(self) -> Mode:
        """Move to ``SHUTTING_DOWN`` and return the mode being left."""
        if not self.active:
            raise DispatcherError(f"cannot shut down from {self.mode}")
        previous = self.mode
        self.mode = Mode.SHUTTING_DOWN
        return previous

    def finish_shutdown(self) -> None:
        self.mode = Mode.IDLE
        logger.info("Dispatcher idle")

    # ── execution ────────────────────────────────────────────────────────

    async def run(self, phase: str, mode: Mode, dispatcher: Dispatcher, supervisor: TaskSupervisor) -> None:
        """Run the *phase* callbacks of *mode*, inline or concurrently per *supervisor*."""
        for callback in self.callbacks(phase, mode):
            name = f"{phase}:{mode.value}:{getattr(callback, '__qualname__', 'callback')}"
            await supervisor.submit(callback(dispatcher), name=name, context=dispatcher)
