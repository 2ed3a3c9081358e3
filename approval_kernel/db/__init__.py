"""Database layer - engine, base classes and portable column types."""

from approval_kernel.db.base import UUID, Amount, Base, UTCDateTime, UUIDString
from approval_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    session_scope,
    translate_storage_errors,
)

__all__ = [
    "Amount",
    "Base",
    "UTCDateTime",
    "UUID",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "translate_storage_errors",
]
