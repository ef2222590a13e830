"""
Database schema for the reconciler state store.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def create_state_db(db_path: Path) -> None:
    """Create the state database for runs and rollback sessions."""
    conn = _connect(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS operations (
            id INTEGER PRIMARY KEY,
            operation_id TEXT UNIQUE,
            operation_type TEXT,
            status TEXT,
            started_at TIMESTAMP,
            finished_at TIMESTAMP,
            details TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS rollback_sessions (
            id INTEGER PRIMARY KEY,
            session_id TEXT UNIQUE,
            label TEXT,
            status TEXT,
            created_at TIMESTAMP,
            finished_at TIMESTAMP,
            last_error TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS rollback_operations (
            id INTEGER PRIMARY KEY,
            session_id TEXT,
            sequence INTEGER,
            action_type TEXT,
            item_id TEXT,
            item_name TEXT,
            source_parent_id TEXT,
            target_parent_id TEXT,
            previous_name TEXT,
            reversible BOOLEAN,
            status TEXT,
            attempts INTEGER DEFAULT 0,
            created_at TIMESTAMP,
            reversed_at TIMESTAMP,
            error_message TEXT,
            details_json TEXT,
            FOREIGN KEY (session_id) REFERENCES rollback_sessions (session_id),
            UNIQUE (session_id, sequence)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_rollback_sessions_status ON rollback_sessions(status)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_rollback_operations_session ON rollback_operations(session_id, sequence)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_rollback_operations_status ON rollback_operations(status)")
    conn.commit()
    conn.close()


def _connect(db_path: Path) -> sqlite3.Connection:
    """Create a SQLite connection with WAL enabled."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn
