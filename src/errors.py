"""
Error taxonomy for the drive reconciler.

Every failure raised by the engine belongs to one category:

* transient-remote: timeouts, rate limits and 5xx responses that survived the
  retry budget.
* remote: a non-retryable rejection from the Drive API.
* capacity: a metadata patch that exceeds the remote size limit. Recovered
  locally by degrading to a minimal patch.
* structural: corrupt local state (manifest, cache) or an impossible tree.
* session: misuse of rollback sessions or an incomplete rollback replay.
* merge: a merge group that could not be finished or verified.

Idempotency conflicts are resolved by read-before-write and are reported as
skips, never raised.
"""

from __future__ import annotations

from typing import Iterable, Optional


class ReconcilerError(RuntimeError):
    """Base class for all engine errors."""

    category = "unknown"


class RemoteError(ReconcilerError):
    """A Drive call failed. Carries the operation and the target id."""

    category = "remote"

    def __init__(
        self,
        operation: str,
        target_id: Optional[str],
        message: str,
        status: Optional[int] = None,
    ) -> None:
        self.operation = operation
        self.target_id = target_id
        self.status = status
        detail = f"{operation}({target_id or '-'})"
        if status is not None:
            detail += f" status={status}"
        super().__init__(f"{detail}: {message}")


class RemoteCallError(RemoteError):
    """Non-retryable remote failure (not found, permission denied, bad request)."""


class TransientRemoteError(RemoteError):
    """Timeout, rate limit or server error that exhausted the retry budget."""

    category = "transient-remote"

    def __init__(
        self,
        operation: str,
        target_id: Optional[str],
        message: str,
        status: Optional[int] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(operation, target_id, message, status=status)
        self.attempts = attempts


class CapacityError(ReconcilerError):
    category = "capacity"


class MetadataSizeLimitError(CapacityError):
    """The remote rejected a metadata patch because it is too large."""

    def __init__(self, target_id: str, message: str) -> None:
        self.target_id = target_id
        super().__init__(f"update_metadata({target_id}): {message}")


class StructuralError(ReconcilerError):
    category = "structural"


class ManifestCorruptError(StructuralError):
    """A persisted manifest or mapping store could not be parsed."""

    def __init__(self, path, reason: str) -> None:
        self.path = path
        super().__init__(f"Corrupt state file {path}: {reason}")


class CacheCorruptError(StructuralError):
    """The hierarchy cache exists but cannot be parsed."""


class CacheMissingError(StructuralError):
    """Cache-only mode was requested but no cache exists."""


class TreeShapeError(StructuralError):
    """A folder listing does not form a tree (duplicate id, cycle)."""


class SessionError(ReconcilerError):
    category = "session"


class SessionNotFoundError(SessionError):
    pass


class SessionNotActiveError(SessionError):
    """An append or rollback targeted a session in a terminal state."""


class RollbackIncompleteError(SessionError):
    """Some compensating actions could not be applied."""

    def __init__(self, session_id: str, pending_operation_ids: Iterable[int]) -> None:
        self.session_id = session_id
        self.pending_operation_ids = list(pending_operation_ids)
        super().__init__(
            f"Rollback of session {session_id} incomplete; "
            f"{len(self.pending_operation_ids)} operation(s) remain: {self.pending_operation_ids}"
        )


class OpenSessionsError(SessionError):
    """Active sessions from an earlier run exist and resuming was not confirmed."""


class MergeError(ReconcilerError):
    category = "merge"


class VerificationError(MergeError):
    """A source folder is not safe to remove after its children were moved."""


class MergeIncompleteError(MergeError):
    """One or more duplicate groups were abandoned mid-merge."""

    def __init__(self, report, cause: Optional[BaseException] = None) -> None:
        self.report = report
        self.cause = cause
        session_state = "open" if report.session_open else "closed"
        super().__init__(
            f"Merge incomplete: merged={report.merged_groups} abandoned={report.abandoned_groups} "
            f"not_started={report.skipped_groups} session={report.session_id or '-'} ({session_state})"
        )


def classify_error(exc: BaseException) -> str:
    """Return the taxonomy category for any exception."""
    if isinstance(exc, ReconcilerError):
        return exc.category
    return "unknown"
