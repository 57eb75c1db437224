"""Database layer - engine, base classes, units of work, immutability."""

from fulfillment_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from fulfillment_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from fulfillment_kernel.db.unit_of_work import retry_on_contention, unit_of_work

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "session_scope",
    "unit_of_work",
    "retry_on_contention",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
