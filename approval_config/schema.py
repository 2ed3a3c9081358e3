"""
Engine configuration schema.

Frozen dataclasses the YAML file is parsed into.  ``EngineConfig`` is the
runtime artifact returned by ``approval_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta, timezone
from decimal import Decimal
from typing import Mapping

from approval_kernel.domain.routing import StageSpec, renumber
from approval_kernel.exceptions import NoDefaultRouteError

# ---------------------------------------------------------------------------
# Sequence numbers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SequenceConfig:
    """Format of request identifiers: ``PREFIX-TYPE-YYMMDD-NNN``."""

    prefix: str = "WFMT"
    min_width: int = 3
    # Offset of the office calendar that YYMMDD follows.
    utc_offset_minutes: int = 0

    @property
    def business_tz(self) -> timezone:
        return timezone(timedelta(minutes=self.utc_offset_minutes))


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RouteStageDef:
    """One stage of a built-in route.

    ``include_above`` names a threshold; the stage is part of the route only
    when the estimated amount is strictly above that threshold.
    """

    spec: StageSpec
    include_above: str | None = None


@dataclass(frozen=True)
class RoutingConfig:
    thresholds: Mapping[str, Decimal] = field(default_factory=dict)
    routes: Mapping[str, tuple[RouteStageDef, ...]] = field(default_factory=dict)
    default_currency: str = "IDR"

    def has_route(self, request_type: str) -> bool:
        return request_type in self.routes

    def build_stages(
        self,
        request_type: str,
        amount: Decimal | None,
    ) -> tuple[StageSpec, ...]:
        """
        Stage specs of the built-in route for ``request_type``.

        Raises:
            NoDefaultRouteError: No built-in route exists for the type.
        """
        route = self.routes.get(request_type)
        if route is None:
            raise NoDefaultRouteError(request_type)

        included = []
        for stage in route:
            if stage.include_above is not None:
                threshold = self.thresholds[stage.include_above]
                if amount is None or amount <= threshold:
                    continue
            included.append(stage.spec)
        return renumber(included)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageConfig:
    database_url: str = "sqlite:///approval_engine.db"
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout_seconds: int = 30
    statement_timeout_seconds: int = 15


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""

    sequence: SequenceConfig
    routing: RoutingConfig
    storage: StorageConfig
    checksum: str = ""
    source: str | None = None
