"""Errors raised by the dispatch engine."""

from __future__ import annotations

from typing import Any


class DispatcherError(Exception):
    """Base class for dispatch engine errors."""


class UnsupportedUpdateKind(DispatcherError):
    """The update carries none of the payloads the router knows about.

    Logged by the consumption loop; there is nothing to retry.
    """

    def __init__(self, update_id: int | None = None) -> None:
        self.update_id = update_id
        super().__init__(
            f"update {update_id} has no supported payload; "
            "the Bot API may be newer than this library"
        )


class ModeConflictError(DispatcherError):
    """Polling and webhook delivery were requested on the same dispatcher."""

    def __init__(self, active: Any, requested: Any) -> None:
        self.active = active
        self.requested = requested
        super().__init__(
            f"cannot start {requested} while {active} is active: "
            "polling and webhook are mutually exclusive"
        )


class MiddlewareRejection(DispatcherError):
    """Raised by a PROCESS-stage middleware to skip the current handler."""


class StateCorrelationError(DispatcherError):
    """No chat or user could be derived from an update for a state operation."""
