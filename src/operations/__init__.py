"""
Operational helpers: rollback sessions and soft delete.
"""

from .rollback import (
    ACTIVE,
    COMPLETED,
    DELETE,
    MOVE,
    RENAME,
    ROLLED_BACK,
    TAG,
    TRASH,
    CompensatingAction,
    RollbackManager,
    RollbackSession,
    RollbackStats,
)
from .soft_delete import DELETION_MODES, SoftDeleter, SoftDeleteResult

__all__ = [
    "ACTIVE",
    "COMPLETED",
    "ROLLED_BACK",
    "MOVE",
    "TRASH",
    "RENAME",
    "TAG",
    "DELETE",
    "CompensatingAction",
    "RollbackManager",
    "RollbackSession",
    "RollbackStats",
    "DELETION_MODES",
    "SoftDeleter",
    "SoftDeleteResult",
]
