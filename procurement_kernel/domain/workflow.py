"""
State machine declarations for orders, purchases and bons.

These are plain frozen values.  Each module declares its workflow once,
and the lifecycle services ask it two things: is this action legal from
the entity's current state, and which capability does the actor need.
Evaluating guards is the services' job; a failed one surfaces as
``GuardViolation`` carrying the guard's name.

Nothing here touches the store, the clock or the database.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """Named precondition, e.g. ``no_active_purchase``."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    # required_capability None: gated by identity (the order's creator) rather than role
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    required_capability: str | None = None


@dataclass(frozen=True)
class Workflow:
    """States and legal moves of one entity kind.

    Construction fails with ValueError when a transition names an unknown
    state, the initial state is not declared, or a terminal state has a
    way out.
    """

    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} is not declared")
        undeclared = {s for t in self.transitions for s in (t.from_state, t.to_state)} - known
        undeclared |= set(self.terminal_states) - known
        if undeclared:
            raise ValueError(f"{self.name}: undeclared states {sorted(undeclared)}")
        leaving = {t.from_state for t in self.transitions if t.from_state in self.terminal_states}
        if leaving:
            raise ValueError(f"{self.name}: terminal states with outgoing transitions {sorted(leaving)}")

    def find_transition(self, action: str, from_state: str) -> Transition | None:
        """Return the transition for ``action`` out of ``from_state``, if any."""
        for t in self.transitions:
            if t.action == action and t.from_state == from_state:
                return t
        return None

    def allowed_actions(self, from_state: str) -> tuple[str, ...]:
        """Actions that may fire from ``from_state``, in declaration order."""
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == from_state and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)

    def source_states(self, action: str) -> tuple[str, ...]:
        """States from which ``action`` is legal."""
        return tuple(t.from_state for t in self.transitions if t.action == action)
