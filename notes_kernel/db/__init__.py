"""Database layer - engine, base classes, types and immutability guards."""

from notes_kernel.db.base import UUID, Base, UUIDString
from notes_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from notes_kernel.db.types import ContentHash, Money, Percentage, round_money

__all__ = [
    "Base",
    "ContentHash",
    "Money",
    "Percentage",
    "UUID",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "round_money",
    "session_scope",
]
