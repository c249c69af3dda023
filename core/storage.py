"""Conversation state stores.

A store maps a ``(chat_id, user_id)`` conversation to a state name.  Reads are
synchronous and served from memory so filters can consult them without
awaiting; writes are coroutines because durable stores persist on every change.
"""

from __future__ import annotations

import abc
import asyncio
import json
import os
import tempfile

from core.identity import state_key
from core.logger import CourierLogger

logger = CourierLogger.get_logger("storage")


class BaseStorage(abc.ABC):
    """Interface every state store implements."""

    @abc.abstractmethod
    def get_state(self, chat_id: int | None, user_id: int | None) -> str | None:
        """Return the current state of the conversation, or ``None``."""

    @abc.abstractmethod
    async def set_state(self, chat_id: int | None, user_id: int | None, state: str) -> None:
        """Associate *state* with the conversation."""

    @abc.abstractmethod
    async def reset_state(self, chat_id: int | None, user_id: int | None) -> None:
        """Forget the conversation's state."""

    @abc.abstractmethod
    async def clear(self) -> None:
        """Forget every conversation."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources.  Called once, during dispatcher shutdown."""


class MemoryStorage(BaseStorage):
    """Process-local store; everything is lost on exit."""

    def __init__(self) -> None:
        self._states: dict[str, str] = {}
        self.closed = False

    def get_state(self, chat_id: int | None, user_id: int | None) -> str | None:
        return self._states.get(state_key(chat_id, user_id))

    async def set_state(self, chat_id: int | None, user_id: int | None, state: str) -> None:
        self._states[state_key(chat_id, user_id)] = state

    async def reset_state(self, chat_id: int | None, user_id: int | None) -> None:
        self._states.pop(state_key(chat_id, user_id), None)

    async def clear(self) -> None:
        self._states.clear()

    async def close(self) -> None:
        self._states.clear()
        self.closed = True


class JSONStorage(BaseStorage):
    """Store backed by a local JSON flat-file.

    The whole mapping is kept in memory and rewritten atomically (temp file
    plus :func:`os.replace`) after every change, guarded by an asyncio lock.
    """

    def __init__(self, path: str = "data/states.json") -> None:
        self.path = path
        self._lock = asyncio.Lock()
        self._states: dict[str, str] = self._load()
        logger.info("Loaded conversation states", extra={"path": path, "state_count": len(self._states)})

    def _load(self) -> dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            logger.critical("Invalid JSON in state file", extra={"path": self.path, "error": str(exc)})
            raise ValueError(f"Invalid JSON in state file '{self.path}': {exc}")
        if not isinstance(data, dict):
            raise ValueError(f"State file '{self.path}' must contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def get_state(self, chat_id: int | None, user_id: int | None) -> str | None:
        return self._states.get(state_key(chat_id, user_id))

    async def set_state(self, chat_id: int | None, user_id: int | None, state: str) -> None:
        self._states[state_key(chat_id, user_id)] = state
        await self._save()

    async def reset_state(self, chat_id: int | None, user_id: int | None) -> None:
        if self._states.pop(state_key(chat_id, user_id), None) is not None:
            await self._save()

    async def clear(self) -> None:
        self._states.clear()
        await self._save()

    async def close(self) -> None:
        await self._save()
        logger.info("State store closed", extra={"path": self.path, "state_count": len(self._states)})

    async def _save(self) -> None:
        """Write states to disk atomically, guarded by an asyncio lock."""
        async with self._lock:
            await asyncio.to_thread(self._save_sync, dict(self._states))

    def _save_sync(self, snapshot: dict[str, str]) -> None:
        dir_name = os.path.dirname(self.path) or "."
        os.makedirs(dir_name, exist_ok=True)
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=dir_name, delete=False, suffix=".tmp", encoding="utf-8"
            ) as tmp:
                json.dump(snapshot, tmp, indent=2)
                tmp_path = tmp.name
            os.replace(tmp_path, self.path)
            logger.debug("Persisted states to disk", extra={"path": self.path, "state_count": len(snapshot)})
        except OSError as exc:
            logger.error("Failed to persist states", extra={"path": self.path, "error": str(exc)})
            raise
