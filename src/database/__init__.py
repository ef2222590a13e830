"""
Database package for the reconciler state store.
"""

from .manager import DatabaseManager, OperationRecord, SessionRecord
from .schema import create_state_db

__all__ = [
    "DatabaseManager",
    "OperationRecord",
    "SessionRecord",
    "create_state_db",
]
