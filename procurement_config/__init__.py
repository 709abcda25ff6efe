"""
procurement_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the one way services obtain configuration at runtime:
    ``get_active_config()``.  Returns a frozen ``EngineConfig``.

Architecture position:
    Configuration sits above ``procurement_kernel`` and below
    ``procurement_services``.  The kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- the file named by ``PROCUREMENT_CONFIG`` (or
      the explicit path) does not exist.
    - ``ValueError`` / ``KeyError`` -- malformed configuration.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PROCUREMENT_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each engine instance to the exact configuration that
    governed its capability checks.
"""

from __future__ import annotations

import os
from pathlib import Path

from procurement_config.loader import load_engine_config
from procurement_config.schema import EngineConfig
from procurement_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_ENV_VAR = "PROCUREMENT_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineConfig:
    """Load the active configuration.

    Resolution order: ``config_path`` argument, then the ``PROCUREMENT_CONFIG``
    environment variable, then the shipped ``defaults.yaml``.
    """
    if config_path is not None:
        path, source = Path(config_path), "argument"
    elif os.environ.get(CONFIG_ENV_VAR):
        path, source = Path(os.environ[CONFIG_ENV_VAR]), "environment"
    else:
        path, source = DEFAULT_CONFIG_PATH, "defaults"

    config = load_engine_config(path)

    logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PROCUREMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": source,
            "path": str(path),
            "role_count": len(config.role_bindings),
        },
    )
    return config


__all__ = ["EngineConfig", "get_active_config", "load_engine_config"]
