"""The authenticated caller of a lifecycle transition."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Who is firing a transition.

    ``role`` is resolved to capabilities through the engine configuration;
    ``department`` scopes department notifications.  Authentication happens
    upstream: the engine trusts the Actor it is given.
    """
    actor_id: str
    role: str
    department: str | None = None
    display_name: str = ""
