"""Supervised execution of handler and lifecycle callbacks.

In synchronous mode a submitted coroutine is awaited inline; in concurrent
mode it becomes a tracked :class:`asyncio.Task`.  Either way an exception is
logged and reported to the registered error handlers instead of being lost,
and :meth:`TaskSupervisor.join` lets shutdown wait for in-flight work.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine

from core.logger import CourierLogger

logger = CourierLogger.get_logger("supervisor")

ErrorHandler = Callable[[BaseException, Any], None]


class TaskSupervisor:
    """Runs callbacks inline or as tracked tasks and reports their failures."""

    def __init__(self, synchronous: bool = True) -> None:
        self.synchronous = synchronous
        self._tasks: set[asyncio.Task[Any]] = set()
        self._error_handlers: list[ErrorHandler] = []
        self.failures = 0

    def add_error_handler(self, handler: ErrorHandler) -> ErrorHandler:
        """Register ``handler(exc, context)``; called for every failed callback."""
        self._error_handlers.append(handler)
        return handler

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def submit(self, coro: Coroutine[Any, Any, Any], name: str, context: Any = None) -> None:
        """Run *coro* according to the synchronicity setting.

        Never raises on behalf of *coro*; failures go to :meth:`report`.
        """
        if self.synchronous:
            try:
                await coro
            except Exception as exc:
                self.report(exc, name, context)
            return

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, context))

    def _on_done(self, task: asyncio.Task[Any], context: Any) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            self.report(exc, task.get_name(), context)

    def report(self, exc: BaseException, name: str, context: Any = None) -> None:
        """Log *exc* and hand it to every error handler."""
        self.failures += 1
        logger.error(
            "Callback failed",
            extra={"task": name, "error": repr(exc)},
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        for handler in self._error_handlers:
            try:
                handler(exc, context)
            except Exception:
                logger.exception("Error handler failed", extra={"task": name})

    async def join(self, timeout: float | None = None) -> None:
        """Wait for tracked tasks; cancel whatever is still running after *timeout*."""
        if not self._tasks:
            return
        tasks = set(self._tasks)
        logger.info("Waiting for running handlers", extra={"count": len(tasks), "timeout": timeout})
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled handlers still running at shutdown", extra={"count": len(still_running)})
            await asyncio.gather(*still_running, return_exceptions=True)
