"""
Rollback sessions: durable logs of compensating actions for Drive mutations.

A session is opened before a multi-step operation, every remote mutation is
appended to it before the call is issued, and the session is completed only
when the whole operation succeeds. Replay walks the log newest first and marks
each compensated operation as reversed, so an interrupted replay can be
resumed without undoing anything twice.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from cloud.protocol import DriveClient
from database import DatabaseManager, OperationRecord, SessionRecord
from errors import (
    ReconcilerError,
    RollbackIncompleteError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from utils import ProgressCounter

ACTIVE = "active"
COMPLETED = "completed"
ROLLED_BACK = "rolled_back"

MOVE = "move"
TRASH = "trash"
RENAME = "rename"
TAG = "tag"
DELETE = "delete"

PENDING_STATUSES = ("pending", "failed")


@dataclass(frozen=True)
class CompensatingAction:
    """Enough information to undo one primitive remote mutation."""

    action_type: str
    item_id: str
    item_name: str = ""
    source_parent_id: Optional[str] = None
    target_parent_id: Optional[str] = None
    previous_name: Optional[str] = None
    details: dict = field(default_factory=dict)

    @property
    def reversible(self) -> bool:
        return self.action_type != DELETE

    @classmethod
    def move(cls, item_id: str, item_name: str, from_parent_id: str, to_parent_id: str) -> "CompensatingAction":
        return cls(MOVE, item_id, item_name, source_parent_id=from_parent_id, target_parent_id=to_parent_id)

    @classmethod
    def trash(cls, item_id: str, item_name: str, parent_id: Optional[str] = None) -> "CompensatingAction":
        return cls(TRASH, item_id, item_name, source_parent_id=parent_id)

    @classmethod
    def rename(cls, item_id: str, previous_name: str, new_name: str) -> "CompensatingAction":
        return cls(RENAME, item_id, new_name, previous_name=previous_name)

    @classmethod
    def tag(cls, item_id: str, item_name: str, property_keys: list[str]) -> "CompensatingAction":
        return cls(TAG, item_id, item_name, details={"properties": list(property_keys)})

    @classmethod
    def delete(cls, item_id: str, item_name: str, parent_id: Optional[str] = None) -> "CompensatingAction":
        return cls(DELETE, item_id, item_name, source_parent_id=parent_id)


@dataclass(frozen=True)
class RollbackSession:
    session_id: str
    label: str
    status: str
    created_at: str
    finished_at: Optional[str]
    operations: list[OperationRecord] = field(default_factory=list)

    @property
    def pending_operations(self) -> list[OperationRecord]:
        return [op for op in self.operations if op.status in PENDING_STATUSES]


@dataclass
class RollbackStats:
    """Summary of one replay attempt."""

    session_id: str
    reversed: int = 0
    already_reversed: int = 0
    irreversible: int = 0
    failed: int = 0
    remaining: list[int] = field(default_factory=list)
    status: str = ACTIVE
    dry_run: bool = False


class RollbackManager:
    """Create, append to, commit and replay rollback sessions stored in SQLite."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        client: Optional[DriveClient] = None,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        continue_on_error: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.db_manager = db_manager
        self.client = client
        self.logger = logger or logging.getLogger("drive_reconciler")
        self.movement_logger = movement_logger or logging.getLogger("drive_reconciler.movement")
        self.max_retries = max(int(max_retries), 1)
        self.retry_delay_seconds = float(retry_delay_seconds)
        self.continue_on_error = continue_on_error
        self.sleep = sleep
        self._append_lock = threading.Lock()

    def create_session(self, label: str) -> RollbackSession:
        session_id = f"rb_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        record = self.db_manager.insert_session(session_id, label)
        self.logger.info("Rollback session %s opened (%s)", session_id, label)
        return _to_session(record, [])

    def append_operation(self, session_id: str, action: CompensatingAction) -> int:
        """Append a compensating action. Only active sessions accept appends."""
        with self._append_lock:
            record = self._require_session(session_id)
            if record.status != ACTIVE:
                raise SessionNotActiveError(
                    f"Session {session_id} is {record.status}; cannot append {action.action_type}"
                )
            return self.db_manager.insert_operation(
                session_id,
                action_type=action.action_type,
                item_id=action.item_id,
                item_name=action.item_name,
                source_parent_id=action.source_parent_id,
                target_parent_id=action.target_parent_id,
                previous_name=action.previous_name,
                reversible=action.reversible,
                details=action.details,
            )

    def complete_session(self, session_id: str) -> None:
        """Commit point: the log is kept for audit but no longer replayed by default."""
        with self._append_lock:
            record = self._require_session(session_id)
            if record.status != ACTIVE:
                raise SessionNotActiveError(f"Session {session_id} is already {record.status}")
            self.db_manager.update_session_status(session_id, COMPLETED)
        counts = self.db_manager.operation_status_summary(session_id)
        self.logger.info("Rollback session %s completed with %s operation(s)", session_id, sum(counts.values()))

    def get_session(self, session_id: str) -> RollbackSession:
        record = self._require_session(session_id)
        return _to_session(record, self.db_manager.list_operations(session_id))

    def list_sessions(self, status: Optional[str] = None) -> list[RollbackSession]:
        return [_to_session(record, []) for record in self.db_manager.list_sessions(status=status)]

    def list_open_sessions(self) -> list[RollbackSession]:
        return self.list_sessions(status=ACTIVE)

    def rollback_session(self, session_id: str, dry_run: bool = False, force: bool = False) -> RollbackStats:
        """Replay the session log newest first.

        Raises RollbackIncompleteError when any operation is left un-reversed; the
        session then stays active so the replay can be retried.
        """
        record = self._require_session(session_id)
        stats = RollbackStats(session_id=session_id, status=record.status, dry_run=dry_run)
        if record.status == ROLLED_BACK:
            self.logger.info("Session %s already rolled back", session_id)
            return stats
        if record.status == COMPLETED and not force:
            raise SessionNotActiveError(
                f"Session {session_id} was completed; pass force=True to undo a committed session"
            )
        if not dry_run and self.client is None:
            raise SessionNotActiveError("Rollback requires a Drive client")

        operations = self.db_manager.list_operations(session_id, newest_first=True)
        pending = [op for op in operations if op.status in PENDING_STATUSES]
        stats.already_reversed = sum(1 for op in operations if op.status == "reversed")
        stats.irreversible = sum(1 for op in operations if op.status == "irreversible")
        if stats.irreversible:
            self.logger.warning(
                "Session %s has %s non-reversible operation(s); they are skipped", session_id, stats.irreversible
            )
        counter = ProgressCounter(f"Rollback {session_id}", total=len(pending), every=25).start()
        halted = False
        for op in pending:
            if halted:
                stats.remaining.append(op.operation_id)
                continue
            if dry_run:
                self.logger.info("[dry-run] Would %s", _describe_reverse(op))
                stats.remaining.append(op.operation_id)
                continue
            error = self._apply_with_retry(op)
            if error is None:
                stats.reversed += 1
                self.db_manager.update_operation_status(op.operation_id, "reversed", attempts=op.attempts + 1)
            else:
                stats.failed += 1
                stats.remaining.append(op.operation_id)
                self.db_manager.update_operation_status(
                    op.operation_id, "failed", error_message=str(error), attempts=op.attempts + 1
                )
                self.logger.error("Rollback step failed: %s (%s)", _describe_reverse(op), error)
                halted = not self.continue_on_error
            counter.advance()
        counter.complete(note=f"reversed={stats.reversed} failed={stats.failed}")

        if dry_run:
            return stats
        if stats.remaining:
            self.db_manager.update_session_status(
                session_id, record.status, last_error=f"{len(stats.remaining)} operation(s) not reversed"
            )
            raise RollbackIncompleteError(session_id, stats.remaining)
        self.db_manager.update_session_status(session_id, ROLLED_BACK)
        stats.status = ROLLED_BACK
        self.logger.info(
            "Session %s rolled back: reversed=%s already_reversed=%s irreversible=%s",
            session_id,
            stats.reversed,
            stats.already_reversed,
            stats.irreversible,
        )
        return stats

    def _apply_with_retry(self, op: OperationRecord) -> Optional[Exception]:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                self._apply(op)
                self.movement_logger.info("ROLLBACK %s", _describe_reverse(op))
                return None
            except ReconcilerError as exc:
                last_error = exc
                if attempt < self.max_retries:
                    delay = self.retry_delay_seconds * attempt
                    self.logger.warning(
                        "Rollback of op %s failed (attempt %s/%s), retrying in %.1fs: %s",
                        op.operation_id,
                        attempt,
                        self.max_retries,
                        delay,
                        exc,
                    )
                    self.sleep(delay)
        return last_error

    def _apply(self, op: OperationRecord) -> None:
        if op.action_type == MOVE:
            if not op.source_parent_id:
                raise SessionNotActiveError(f"Move operation {op.operation_id} has no original parent")
            self.client.move_item(op.item_id, op.source_parent_id)
        elif op.action_type == TRASH:
            self.client.untrash_item(op.item_id)
        elif op.action_type == RENAME:
            self.client.update_metadata(op.item_id, {"name": op.previous_name})
        elif op.action_type == TAG:
            keys = op.details.get("properties", [])
            self.client.update_metadata(op.item_id, {"appProperties": {key: None for key in keys}})
        else:
            raise SessionNotActiveError(f"Operation {op.operation_id} ({op.action_type}) cannot be reversed")

    def _require_session(self, session_id: str) -> SessionRecord:
        record = self.db_manager.get_session(session_id)
        if record is None:
            raise SessionNotFoundError(f"Rollback session {session_id} not found")
        return record


def _to_session(record: SessionRecord, operations: list[OperationRecord]) -> RollbackSession:
    return RollbackSession(
        session_id=record.session_id,
        label=record.label,
        status=record.status,
        created_at=record.created_at,
        finished_at=record.finished_at,
        operations=operations,
    )


def _describe_reverse(op: OperationRecord) -> str:
    if op.action_type == MOVE:
        return f"move {op.item_id} ({op.item_name}) back {op.target_parent_id} -> {op.source_parent_id}"
    if op.action_type == TRASH:
        return f"untrash {op.item_id} ({op.item_name})"
    if op.action_type == RENAME:
        return f"rename {op.item_id} {op.item_name!r} -> {op.previous_name!r}"
    if op.action_type == TAG:
        return f"clear soft-delete tags on {op.item_id} ({op.item_name})"
    return f"{op.action_type} {op.item_id}"
