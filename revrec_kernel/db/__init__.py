"""Database layer - engine, base classes and immutability enforcement."""

from revrec_kernel.db.base import UUID, Base, EnumString, TrackedBase, UUIDString
from revrec_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "UUID",
    "Base",
    "TrackedBase",
    "EnumString",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
]
