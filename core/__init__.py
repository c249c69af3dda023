"""Core services — logging, conversation correlation, state stores, FSM helpers.

This package may import from ``sdk/`` only.  It must NEVER import from ``dispatch/``.
"""

from core.fsm import State, StatesGroup
from core.identity import get_chat_and_user, state_key
from core.logger import CourierLogger
from core.storage import BaseStorage, JSONStorage, MemoryStorage

__all__ = [
    "State",
    "StatesGroup",
    "get_chat_and_user",
    "state_key",
    "CourierLogger",
    "BaseStorage",
    "JSONStorage",
    "MemoryStorage",
]
