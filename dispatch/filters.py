"""Handler filters.

A filter is any object with a pure ``check(update) -> bool`` method.  Filters
attached to one handler form a conjunction; :class:`BaseFilter` subclasses
also compose with ``&``, ``|`` and ``~``::

    dp.message_handler.register(on_start, Command("start") & ~StateFilter(storage, None))

Plain callables are accepted wherever a filter is, via :func:`as_filter`.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, Protocol, runtime_checkable

from core.fsm import State, resolve_state
from core.identity import get_chat_and_user
from core.storage import BaseStorage
from sdk.models import Update


@runtime_checkable
class Filter(Protocol):
    """Anything that can accept or reject an update."""

    def check(self, update: Update) -> bool: ...  # noqa: E704


class BaseFilter:
    """Base class providing the composition operators."""

    def check(self, update: Update) -> bool:
        raise NotImplementedError

    def __and__(self, other: Filter | Callable[[Update], bool]) -> AndFilter:
        return AndFilter(self, as_filter(other))

    def __or__(self, other: Filter | Callable[[Update], bool]) -> OrFilter:
        return OrFilter(self, as_filter(other))

    def __invert__(self) -> NotFilter:
        return NotFilter(self)


class FuncFilter(BaseFilter):
    """Adapts a ``Callable[[Update], bool]`` to the filter interface."""

    def __init__(self, func: Callable[[Update], bool]) -> None:
        self.func = func

    def check(self, update: Update) -> bool:
        return bool(self.func(update))

    def __repr__(self) -> str:
        return f"FuncFilter({getattr(self.func, '__name__', self.func)!r})"


class AndFilter(BaseFilter):
    """Passes iff every member passes; stops at the first rejection."""

    def __init__(self, *filters: Filter) -> None:
        self.filters = filters

    def check(self, update: Update) -> bool:
        return all(f.check(update) for f in self.filters)


class OrFilter(BaseFilter):
    """Passes iff any member passes; stops at the first acceptance."""

    def __init__(self, *filters: Filter) -> None:
        self.filters = filters

    def check(self, update: Update) -> bool:
        return any(f.check(update) for f in self.filters)


class NotFilter(BaseFilter):
    def __init__(self, inner: Filter) -> None:
        self.inner = inner

    def check(self, update: Update) -> bool:
        return not self.inner.check(update)


def as_filter(obj: Filter | Callable[[Update], bool]) -> Filter:
    """Return *obj* as a filter, wrapping bare callables.

    Raises:
        TypeError: If *obj* is neither a filter nor callable.
    """
    if isinstance(obj, Filter):
        return obj
    if callable(obj):
        return FuncFilter(obj)
    raise TypeError(f"{obj!r} is not a filter: expected a check() method or a callable")


def check_all(filters: Iterable[Filter], update: Update) -> bool:
    """Conjunction used by handler entries."""
    return all(f.check(update) for f in filters)


def extract_text(update: Update) -> str | None:
    """Return the primary text of *update*, or ``None`` if it has none.

    Messages contribute their text, callback queries their data and polls
    their question.
    """
    message = (
        update.message
        or update.edited_message
        or update.channel_post
        or update.edited_channel_post
    )
    if message is not None:
        return message.text
    if update.callback_query is not None:
        return update.callback_query.data
    if update.poll is not None:
        return update.poll.question
    return None


class Regexp(BaseFilter):
    """Matches when *pattern* finds a non-empty match in the update's text."""

    def __init__(self, pattern: str | re.Pattern[str], flags: int = 0) -> None:
        if isinstance(pattern, re.Pattern):
            self.pattern = pattern
        else:
            self.pattern = re.compile(pattern, flags)

    def check(self, update: Update) -> bool:
        text = extract_text(update)
        if text is None:
            return False
        match = self.pattern.search(text)
        return match is not None and match.group(0) != ""

    def __repr__(self) -> str:
        return f"Regexp({self.pattern.pattern!r})"


class Command(BaseFilter):
    """Matches messages starting with ``/<command>`` (optionally ``@botname``).

    ``prefixes`` defaults to ``"/"``; commands compare case-insensitively
    unless ``ignore_case`` is False.
    """

    def __init__(self, *commands: str, prefixes: str = "/", ignore_case: bool = True) -> None:
        if not commands:
            raise ValueError("Command filter needs at least one command")
        self.ignore_case = ignore_case
        self.prefixes = prefixes
        self.commands = {c.lstrip(prefixes).lower() if ignore_case else c.lstrip(prefixes) for c in commands}

    def check(self, update: Update) -> bool:
        message = update.message or update.edited_message or update.channel_post or update.edited_channel_post
        if message is None or not message.text:
            return False
        parts = message.text.split(maxsplit=1)
        if not parts:
            return False
        head = parts[0]
        if head[0] not in self.prefixes:
            return False
        command = head[1:].split("@", 1)[0]
        if self.ignore_case:
            command = command.lower()
        return command in self.commands

    def __repr__(self) -> str:
        return f"Command({', '.join(sorted(self.commands))})"


class StateFilter(BaseFilter):
    """Gates on the conversation state held in *storage*.

    ``"*"`` accepts any state (including none); ``None`` accepts only
    conversations without a state.
    """

    def __init__(self, storage: BaseStorage, *states: State | str | None) -> None:
        if not states:
            raise ValueError("StateFilter needs at least one state")
        self.storage = storage
        self.states = {None if s is None else resolve_state(s) for s in states}

    def check(self, update: Update) -> bool:
        if "*" in self.states:
            return True
        chat_id, user_id = get_chat_and_user(update)
        if chat_id is None and user_id is None:
            return None in self.states
        return self.storage.get_state(chat_id, user_id) in self.states
