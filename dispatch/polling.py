"""Long-polling delivery driver.

The :class:`Poller` repeatedly calls the transport's ``fetch_updates`` and
feeds the dispatcher queue.  The offset advances past every update handed to
the queue, so an update is requested at most once: a crash between enqueue
and processing loses it rather than replaying it.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import List, Optional, Protocol, Sequence

from core.logger import CourierLogger
from sdk.exceptions import DecodeError, TransportError
from sdk.models import Update

logger = CourierLogger.get_logger("polling")


class UpdateSource(Protocol):
    """The slice of :class:`sdk.client.BotClient` the poller needs."""

    def fetch_updates(
        self,
        offset: int,
        limit: int = 0,
        timeout: int = 0,
        allowed_updates: Optional[List[str]] = None,
    ) -> Sequence[Update]: ...  # noqa: E704


@dataclasses.dataclass(frozen=True, slots=True)
class PollingConfig:
    """Settings for :meth:`dispatch.dispatcher.Dispatcher.start_polling`.

    ``relax`` and ``error_sleep`` are in seconds; ``timeout`` is the server-side
    long-poll timeout.  ``limit=0`` leaves the batch size to the server.
    """

    offset: int = 0
    limit: int = 0
    timeout: int = 20
    allowed_updates: Optional[tuple[str, ...]] = None
    relax: float = 1.0
    error_sleep: float = 5.0
    reset_webhook: bool = False
    skip_updates: bool = False
    safe_exit: bool = True


class Poller:
    """Fetches batches and enqueues updates not yet acknowledged by the offset."""

    def __init__(self, source: UpdateSource, queue: asyncio.Queue[Update], config: PollingConfig) -> None:
        self.source = source
        self.queue = queue
        self.config = config
        self.offset = config.offset

    async def poll_once(self) -> int:
        """Run one fetch cycle and return the number of updates enqueued.

        Raises:
            TransportError: If the fetch failed.
            DecodeError: If the batch as a whole could not be decoded.
        """
        allowed = list(self.config.allowed_updates) if self.config.allowed_updates is not None else None
        updates = await asyncio.to_thread(
            self.source.fetch_updates,
            self.offset,
            self.config.limit,
            self.config.timeout,
            allowed,
        )
        enqueued = 0
        for update in updates:
            if update.update_id < self.offset:
                logger.debug("Dropping already acknowledged update", extra={"update_id": update.update_id, "offset": self.offset})
                continue
            self.offset = update.update_id + 1
            self.queue.put_nowait(update)
            enqueued += 1
        if enqueued:
            logger.debug("Enqueued updates", extra={"count": enqueued, "offset": self.offset})
        return enqueued

    async def run(self) -> None:
        """Poll until cancelled.  Fetch failures are logged and retried forever."""
        logger.info("Polling started", extra={"offset": self.offset, "timeout": self.config.timeout})
        try:
            while True:
                if self.config.relax:
                    await asyncio.sleep(self.config.relax)
                try:
                    await self.poll_once()
                except (TransportError, DecodeError) as exc:
                    logger.warning(
                        "Error while getting updates, backing off",
                        extra={"error": str(exc), "error_sleep": self.config.error_sleep, "offset": self.offset},
                    )
                    await asyncio.sleep(self.config.error_sleep)
        finally:
            logger.info("Polling stopped", extra={"offset": self.offset})
