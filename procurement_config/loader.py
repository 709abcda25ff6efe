"""
YAML to ``EngineConfig``.

Runtime callers go through ``procurement_config.get_active_config()``;
tests hand ``parse_engine_config`` small inline documents.  Parsing is
strict: a role granting a capability nobody checks, a negative low-stock
threshold or a non-positive sequence width is a ``ValueError`` rather
than a silently repaired default.  A missing file or broken YAML raises
whatever ``open`` or PyYAML raise; a missing required section is a
``KeyError``.

The checksum of the raw document identifies the configuration a
running engine was built from.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import (
    KNOWN_CAPABILITIES,
    WILDCARD,
    EngineConfig,
    IdFormat,
    NotificationRouting,
    RoleBinding,
)
from procurement_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Parsed document; an empty file reads as ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_role_bindings(data: dict[str, Any]) -> tuple[RoleBinding, ...]:
    """Parse the ``roles`` mapping of role name -> capability list."""
    if not data:
        raise ValueError("Configuration must declare at least one role")
    bindings = []
    for role, caps in data.items():
        caps = frozenset(caps or ())
        unknown = caps - KNOWN_CAPABILITIES - {WILDCARD}
        if unknown:
            raise ValueError(f"Role {role!r} has unknown capabilities: {sorted(unknown)}")
        bindings.append(RoleBinding(role=str(role), capabilities=caps))
    return tuple(sorted(bindings, key=lambda b: b.role))


def parse_threshold(value: Any) -> Decimal:
    try:
        threshold = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid low-stock threshold: {value!r}") from e
    if not threshold.is_finite() or threshold < 0:
        raise ValueError(f"Low-stock threshold must be >= 0, got {value!r}")
    return threshold


def parse_id_format(data: dict[str, Any]) -> IdFormat:
    fmt = IdFormat(**data)
    if fmt.sequence_width < 1:
        raise ValueError("ids.sequence_width must be >= 1")
    return fmt


def parse_notification_routing(data: dict[str, Any]) -> NotificationRouting:
    routing = NotificationRouting(**data)
    if routing.max_delivery_attempts < 1:
        raise ValueError("notifications.max_delivery_attempts must be >= 1")
    return routing


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Parse a complete EngineConfig from a loaded YAML document."""
    inventory = data.get("inventory", {})
    reception = data.get("reception", {})
    concurrency = data.get("concurrency", {})

    lock_timeout = float(concurrency.get("lock_timeout_seconds", 5.0))
    if lock_timeout <= 0:
        raise ValueError("concurrency.lock_timeout_seconds must be > 0")

    return EngineConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        role_bindings=parse_role_bindings(data["roles"]),
        vendor_role=data.get("vendor_role", "Vendor"),
        default_low_stock_threshold=parse_threshold(
            inventory.get("default_low_stock_threshold", "10")
        ),
        fractional_units=frozenset(
            inventory.get("fractional_units", ("kg", "g", "l", "L", "ml"))
        ),
        lock_timeout_seconds=lock_timeout,
        require_discrepancy_acknowledgment=bool(
            reception.get("require_discrepancy_acknowledgment", True)
        ),
        id_format=parse_id_format(data.get("ids", {})),
        notifications=parse_notification_routing(data.get("notifications", {})),
        checksum=compute_checksum(data),
    )


def load_engine_config(path: Path | str) -> EngineConfig:
    """Load and parse an EngineConfig from a YAML file."""
    return parse_engine_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the document, independent of key order."""
    return hash_payload(data)
