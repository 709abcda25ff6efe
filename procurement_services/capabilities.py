"""
procurement_services.capabilities -- capability enforcement at the transition boundary.

Responsibility:
    Check that an actor's role grants the capability a transition requires.
    The role -> capability map comes from EngineConfig; nothing here is
    hard-coded per role.

Invariants:
    - Checked exactly once per transition, inside the engine, before any
      read-modify-write.
    - The engine does not resolve identity: the caller supplies the Actor.
"""

from __future__ import annotations

from procurement_config.schema import EngineConfig
from procurement_kernel.exceptions import GuardViolation
from procurement_modules.actors import Actor

CAPABILITY_GUARD = "has_capability"


def check_capability(
    config: EngineConfig,
    actor: Actor,
    required_capability: str,
) -> tuple[bool, str]:
    """Check whether the actor's role grants ``required_capability``.

    Returns:
        (allowed, reason). reason is empty when allowed, or a short message
        when denied.
    """
    if not actor.role:
        return (False, "actor has no role")
    granted = config.capabilities_for(actor.role)
    if not granted:
        return (False, f"role '{actor.role}' is not configured")
    if required_capability not in granted:
        return (
            False,
            f"capability '{required_capability}' not granted to role '{actor.role}'",
        )
    return (True, "")


def require_capability(
    config: EngineConfig,
    actor: Actor,
    required_capability: str,
    *,
    transition: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    current_state: str | None = None,
) -> None:
    """Raise GuardViolation unless the actor holds ``required_capability``."""
    allowed, reason = check_capability(config, actor, required_capability)
    if not allowed:
        raise GuardViolation(
            transition,
            CAPABILITY_GUARD,
            reason,
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=current_state,
        )
