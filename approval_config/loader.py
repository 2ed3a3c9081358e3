"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into the frozen dataclasses of
``approval_config.schema``.  The single public entry point for runtime
config is ``approval_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with descriptive messages; no silent
  defaults for malformed values.
* Every route stage references only declared thresholds and known roles.
* Every built-in route, with all optional stages included, is a valid
  stage list (non-empty, named, gap-free).
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    EngineConfig,
    RouteStageDef,
    RoutingConfig,
    SequenceConfig,
    StorageConfig,
)
from approval_kernel.domain.routing import StageSpec, validate_stage_specs
from approval_kernel.exceptions import InvalidStageSpecError
from approval_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_amount(value: Any, name: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Threshold {name!r} is not a number: {value!r}") from exc
    if amount < 0:
        raise ValueError(f"Threshold {name!r} must be non-negative")
    return amount


def parse_sequence(data: dict[str, Any]) -> SequenceConfig:
    prefix = str(data.get("prefix", "WFMT"))
    min_width = int(data.get("min_width", 3))
    offset = int(data.get("utc_offset_minutes", 0))
    if not prefix:
        raise ValueError("sequence.prefix must be non-empty")
    if min_width < 1:
        raise ValueError("sequence.min_width must be at least 1")
    if not -720 <= offset <= 840:
        raise ValueError("sequence.utc_offset_minutes must be between -720 and 840")
    return SequenceConfig(prefix=prefix, min_width=min_width, utc_offset_minutes=offset)


def parse_route_stage(
    data: dict[str, Any],
    order: int,
    thresholds: dict[str, Decimal],
    route_name: str,
) -> RouteStageDef:
    include_above = data.get("include_above")
    if include_above is not None and include_above not in thresholds:
        raise ValueError(
            f"Route {route_name!r} stage {data.get('name')!r} references "
            f"unknown threshold {include_above!r}"
        )
    try:
        spec = StageSpec.from_dict(data, stage_order=order)
    except InvalidStageSpecError as exc:
        raise ValueError(f"Route {route_name!r}: {exc.reason}") from exc
    return RouteStageDef(spec=spec, include_above=include_above)


def parse_routing(data: dict[str, Any]) -> RoutingConfig:
    thresholds = {
        str(name): parse_amount(value, name)
        for name, value in (data.get("thresholds") or {}).items()
    }

    routes: dict[str, tuple[RouteStageDef, ...]] = {}
    for route_name, stages in (data.get("routes") or {}).items():
        if not isinstance(stages, list):
            raise ValueError(f"Route {route_name!r} must be a list of stages")
        defs = tuple(
            parse_route_stage(stage, index, thresholds, route_name)
            for index, stage in enumerate(stages, start=1)
        )
        try:
            validate_stage_specs([d.spec for d in defs])
        except InvalidStageSpecError as exc:
            raise ValueError(f"Route {route_name!r}: {exc.reason}") from exc
        if all(d.include_above is not None for d in defs):
            raise ValueError(f"Route {route_name!r} needs at least one unconditional stage")
        routes[str(route_name)] = defs

    return RoutingConfig(
        thresholds=thresholds,
        routes=routes,
        default_currency=str(data.get("default_currency", "IDR")),
    )


def parse_storage(data: dict[str, Any]) -> StorageConfig:
    return StorageConfig(
        database_url=str(data.get("database_url", StorageConfig.database_url)),
        pool_size=int(data.get("pool_size", StorageConfig.pool_size)),
        max_overflow=int(data.get("max_overflow", StorageConfig.max_overflow)),
        pool_timeout_seconds=int(
            data.get("pool_timeout_seconds", StorageConfig.pool_timeout_seconds)
        ),
        statement_timeout_seconds=int(
            data.get("statement_timeout_seconds", StorageConfig.statement_timeout_seconds)
        ),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration document."""
    return hash_payload(data)


def parse_engine_config(data: dict[str, Any], source: str | None = None) -> EngineConfig:
    """Parse a raw document into an ``EngineConfig``."""
    return EngineConfig(
        sequence=parse_sequence(data.get("sequence") or {}),
        routing=parse_routing(data.get("routing") or {}),
        storage=parse_storage(data.get("storage") or {}),
        checksum=compute_checksum(data),
        source=source,
    )


def load_engine_config(path: Path) -> EngineConfig:
    """Load and parse one engine configuration file."""
    return parse_engine_config(load_yaml_file(path), source=str(path))
