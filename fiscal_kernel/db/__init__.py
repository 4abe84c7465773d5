"""Database layer - engine, base classes and column types."""

from fiscal_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from fiscal_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from fiscal_kernel.db.types import Amount, CfopCode, Sequence, round_ledger

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "Amount",
    "CfopCode",
    "Sequence",
    "round_ledger",
]
