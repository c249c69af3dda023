"""Finite-state-machine helpers for multi-step conversations.

Usage::

    class Order(StatesGroup):
        waiting_for_address = State()
        waiting_for_payment = State()

    await ctx.set_state(Order.waiting_for_address)
    # stored as "Order:waiting_for_address"
"""

from __future__ import annotations


class State:
    """One named state; its stored form is ``"<group>:<name>"``."""

    def __init__(self, name: str | None = None, group: str | None = None) -> None:
        self.name = name
        self.group = group

    def __set_name__(self, owner: type, attr: str) -> None:
        if self.name is None:
            self.name = attr
        if self.group is None:
            self.group = owner.__name__

    @property
    def full_state(self) -> str:
        if self.name is None:
            raise ValueError("State has no name; declare it inside a StatesGroup or pass one")
        if self.group:
            return f"{self.group}:{self.name}"
        return self.name

    def __str__(self) -> str:
        return self.full_state

    def __repr__(self) -> str:
        return f"<State {self.full_state!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, State):
            return self.full_state == other.full_state
        if isinstance(other, str):
            return self.full_state == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.full_state)


class StatesGroup:
    """Namespace for related :class:`State` attributes."""

    @classmethod
    def states(cls) -> tuple[State, ...]:
        """Return the group's states in declaration order."""
        return tuple(v for v in vars(cls).values() if isinstance(v, State))

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(s.full_state for s in cls.states())


def resolve_state(state: State | str) -> str:
    """Return the stored string form of *state*."""
    if isinstance(state, State):
        return state.full_state
    return state
