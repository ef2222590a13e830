"""
SQLite access layer for reconciler runs and rollback sessions.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .schema import create_state_db

SESSION_COLUMNS = "session_id, label, status, created_at, finished_at, last_error"
OPERATION_COLUMNS = (
    "id, session_id, sequence, action_type, item_id, item_name, source_parent_id, "
    "target_parent_id, previous_name, reversible, status, attempts, created_at, reversed_at, "
    "error_message, details_json"
)


@dataclass(frozen=True)
class SessionRecord:
    """Persisted rollback session header."""

    session_id: str
    label: str
    status: str
    created_at: str
    finished_at: Optional[str]
    last_error: Optional[str]


@dataclass(frozen=True)
class OperationRecord:
    """Persisted compensating action belonging to a session."""

    operation_id: int
    session_id: str
    sequence: int
    action_type: str
    item_id: str
    item_name: str
    source_parent_id: Optional[str]
    target_parent_id: Optional[str]
    previous_name: Optional[str]
    reversible: bool
    status: str
    attempts: int
    created_at: str
    reversed_at: Optional[str]
    error_message: Optional[str]
    details: dict = field(default_factory=dict)


class DatabaseManager:
    """Manage the state connection and common queries."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._state_conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Create database file and tables."""
        create_state_db(self.db_path)

    def connect(self) -> None:
        """Open the database connection if it is not already open."""
        if self._state_conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._state_conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._state_conn.execute("PRAGMA journal_mode=WAL;")

    def close(self) -> None:
        """Close the open database connection."""
        with self._lock:
            if self._state_conn is not None:
                self._state_conn.close()
                self._state_conn = None

    # Runs

    def start_operation(self, operation_type: str, details: Optional[str] = None) -> str:
        """Insert a run record and return the generated operation ID."""
        with self._lock:
            self.connect()
            operation_id = f"{operation_type}_{datetime.utcnow().strftime('%Y%m%d_%H%M%S_%f')}"
            self._state_conn.execute(
                """
                INSERT INTO operations (
                    operation_id, operation_type, status, started_at, details
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (operation_id, operation_type, "in_progress", datetime.utcnow().isoformat(), details),
            )
            self._state_conn.commit()
            return operation_id

    def complete_operation(
        self, operation_id: str, status: str = "completed", details: Optional[str] = None
    ) -> None:
        """Mark a run as completed or failed."""
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                UPDATE operations
                SET status = ?, finished_at = ?, details = COALESCE(?, details)
                WHERE operation_id = ?
                """,
                (status, datetime.utcnow().isoformat(), details, operation_id),
            )
            self._state_conn.commit()

    def list_incomplete_operations(self) -> list[tuple[str, str, str]]:
        """Return run records that are still in progress."""
        with self._lock:
            self.connect()
            cursor = self._state_conn.execute(
                """
                SELECT operation_id, operation_type, started_at
                FROM operations
                WHERE status = 'in_progress'
                ORDER BY started_at DESC
                """
            )
            return list(cursor.fetchall())

    # Rollback sessions

    def insert_session(self, session_id: str, label: str) -> SessionRecord:
        with self._lock:
            self.connect()
            created_at = datetime.utcnow().isoformat()
            self._state_conn.execute(
                """
                INSERT INTO rollback_sessions (session_id, label, status, created_at)
                VALUES (?, ?, 'active', ?)
                """,
                (session_id, label, created_at),
            )
            self._state_conn.commit()
        return SessionRecord(
            session_id=session_id,
            label=label,
            status="active",
            created_at=created_at,
            finished_at=None,
            last_error=None,
        )

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            self.connect()
            row = self._state_conn.execute(
                f"SELECT {SESSION_COLUMNS} FROM rollback_sessions WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        return _session_from_row(row) if row else None

    def list_sessions(self, status: Optional[str] = None, limit: Optional[int] = None) -> list[SessionRecord]:
        """List sessions newest first, optionally filtered by status."""
        query = f"SELECT {SESSION_COLUMNS} FROM rollback_sessions"
        params: list = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            self.connect()
            rows = self._state_conn.execute(query, tuple(params)).fetchall()
        return [_session_from_row(row) for row in rows]

    def update_session_status(
        self, session_id: str, status: str, last_error: Optional[str] = None
    ) -> None:
        finished_at = None if status == "active" else datetime.utcnow().isoformat()
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                UPDATE rollback_sessions
                SET status = ?, finished_at = ?, last_error = ?
                WHERE session_id = ?
                """,
                (status, finished_at, last_error, session_id),
            )
            self._state_conn.commit()

    def insert_operation(
        self,
        session_id: str,
        action_type: str,
        item_id: str,
        item_name: str,
        source_parent_id: Optional[str] = None,
        target_parent_id: Optional[str] = None,
        previous_name: Optional[str] = None,
        reversible: bool = True,
        details: Optional[dict] = None,
    ) -> int:
        """Append an operation to the end of a session log and return its row ID."""
        with self._lock:
            self.connect()
            row = self._state_conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) FROM rollback_operations WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            sequence = int(row[0]) + 1
            cursor = self._state_conn.execute(
                """
                INSERT INTO rollback_operations (
                    session_id,
                    sequence,
                    action_type,
                    item_id,
                    item_name,
                    source_parent_id,
                    target_parent_id,
                    previous_name,
                    reversible,
                    status,
                    attempts,
                    created_at,
                    details_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    session_id,
                    sequence,
                    action_type,
                    item_id,
                    item_name,
                    source_parent_id,
                    target_parent_id,
                    previous_name,
                    1 if reversible else 0,
                    "pending" if reversible else "irreversible",
                    datetime.utcnow().isoformat(),
                    json.dumps(details) if details else None,
                ),
            )
            self._state_conn.commit()
            return int(cursor.lastrowid)

    def list_operations(
        self,
        session_id: str,
        status: Optional[str] = None,
        newest_first: bool = False,
    ) -> list[OperationRecord]:
        """List the operations of a session in log order (or reverse)."""
        query = f"SELECT {OPERATION_COLUMNS} FROM rollback_operations WHERE session_id = ?"
        params: list = [session_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY sequence DESC" if newest_first else " ORDER BY sequence ASC"
        with self._lock:
            self.connect()
            rows = self._state_conn.execute(query, tuple(params)).fetchall()
        return [_operation_from_row(row) for row in rows]

    def update_operation_status(
        self,
        operation_id: int,
        status: str,
        error_message: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        reversed_at = datetime.utcnow().isoformat() if status == "reversed" else None
        with self._lock:
            self.connect()
            self._state_conn.execute(
                """
                UPDATE rollback_operations
                SET status = ?,
                    error_message = ?,
                    reversed_at = COALESCE(?, reversed_at),
                    attempts = COALESCE(?, attempts)
                WHERE id = ?
                """,
                (status, error_message, reversed_at, attempts, operation_id),
            )
            self._state_conn.commit()

    def operation_status_summary(self, session_id: Optional[str] = None) -> dict[str, int]:
        """Count operations by status, across all sessions or for one session."""
        query = "SELECT status, COUNT(*) FROM rollback_operations"
        params: tuple = ()
        if session_id:
            query += " WHERE session_id = ?"
            params = (session_id,)
        query += " GROUP BY status"
        with self._lock:
            self.connect()
            rows = self._state_conn.execute(query, params).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}


def _session_from_row(row) -> SessionRecord:
    return SessionRecord(
        session_id=str(row[0]),
        label=str(row[1]) if row[1] else "",
        status=str(row[2]),
        created_at=str(row[3]) if row[3] else "",
        finished_at=str(row[4]) if row[4] else None,
        last_error=str(row[5]) if row[5] else None,
    )


def _operation_from_row(row) -> OperationRecord:
    return OperationRecord(
        operation_id=int(row[0]),
        session_id=str(row[1]),
        sequence=int(row[2]),
        action_type=str(row[3]),
        item_id=str(row[4]) if row[4] else "",
        item_name=str(row[5]) if row[5] else "",
        source_parent_id=str(row[6]) if row[6] else None,
        target_parent_id=str(row[7]) if row[7] else None,
        previous_name=str(row[8]) if row[8] is not None else None,
        reversible=bool(row[9]),
        status=str(row[10]),
        attempts=int(row[11] or 0),
        created_at=str(row[12]) if row[12] else "",
        reversed_at=str(row[13]) if row[13] else None,
        error_message=str(row[14]) if row[14] else None,
        details=json.loads(row[15]) if row[15] else {},
    )
