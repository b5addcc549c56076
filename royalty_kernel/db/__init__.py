"""Database layer for the royalty kernel."""

from royalty_kernel.db.base import Base, TrackedBase, UUIDString
from royalty_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_config,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_config",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
