"""
approval_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads the YAML file or
    the configuration environment variables directly.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``; the orchestrator hands configured values
    (sequence prefix, stage specs) to kernel services.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The returned ``EngineConfig`` has passed route, threshold and role
      validation.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``ValueError`` -- validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``engine_config_loaded`` log entry with the source path and checksum.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from approval_config.loader import load_engine_config
from approval_config.schema import (
    EngineConfig,
    RouteStageDef,
    RoutingConfig,
    SequenceConfig,
    StorageConfig,
)

_logger = logging.getLogger("approval_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "engine.yaml"

CONFIG_PATH_ENV = "APPROVAL_ENGINE_CONFIG"
DATABASE_URL_ENV = "APPROVAL_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``path`` argument, then
    ``APPROVAL_ENGINE_CONFIG``, then the packaged defaults.
    ``APPROVAL_DATABASE_URL`` overrides ``storage.database_url``.

    Non-goals:
        This function does NOT cache; callers hold the returned config.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = load_engine_config(resolved)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = replace(config, storage=replace(config.storage, database_url=database_url))

    _logger.info(
        "engine_config_loaded",
        extra={
            "source": str(resolved),
            "checksum": config.checksum,
            "route_count": len(config.routing.routes),
            "threshold_count": len(config.routing.thresholds),
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "RouteStageDef",
    "RoutingConfig",
    "SequenceConfig",
    "StorageConfig",
    "get_active_config",
]
