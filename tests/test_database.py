import sqlite3
from pathlib import Path

from database import DatabaseManager, create_state_db


def test_database_tracks_runs(db: DatabaseManager) -> None:
    operation_id = db.start_operation("reconcile", details="dry_run")
    assert [row[0] for row in db.list_incomplete_operations()] == [operation_id]

    db.complete_operation(operation_id)

    assert db.list_incomplete_operations() == []


def test_database_sessions_and_operations(db: DatabaseManager) -> None:
    db.insert_session("rb_1", "first")
    db.insert_session("rb_2", "second")

    first = db.insert_operation("rb_1", action_type="move", item_id="f1", item_name="a.pdf",
                                source_parent_id="p1", target_parent_id="p2", reversible=True)
    second = db.insert_operation("rb_1", action_type="delete", item_id="f2", item_name="b.pdf",
                                 reversible=False)

    operations = db.list_operations("rb_1")
    assert [op.operation_id for op in operations] == [first, second]
    assert [op.status for op in operations] == ["pending", "irreversible"]
    assert [op.operation_id for op in db.list_operations("rb_1", newest_first=True)] == [second, first]

    db.update_operation_status(first, "reversed", attempts=1)
    assert db.operation_status_summary("rb_1") == {"reversed": 1, "irreversible": 1}

    db.update_session_status("rb_2", "completed")
    assert [session.session_id for session in db.list_sessions(status="active")] == ["rb_1"]
    assert db.get_session("rb_2").finished_at is not None
    assert db.get_session("missing") is None


def test_database_survives_reopen(tmp_path: Path) -> None:
    manager = DatabaseManager(tmp_path / "state.sqlite")
    manager.initialize()
    manager.insert_session("rb_1", "persisted")
    manager.insert_operation("rb_1", action_type="trash", item_id="f1", item_name="x")
    manager.close()

    reopened = DatabaseManager(tmp_path / "state.sqlite")
    reopened.initialize()
    try:
        assert reopened.get_session("rb_1").label == "persisted"
        assert len(reopened.list_operations("rb_1")) == 1
    finally:
        reopened.close()


def test_state_schema_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "state.db"
    create_state_db(db_path)
    create_state_db(db_path)

    conn = sqlite3.connect(db_path)
    try:
        columns = [row[1] for row in conn.execute("PRAGMA table_info(rollback_operations)")]
    finally:
        conn.close()
    assert columns.count("details_json") == 1
    assert columns[:3] == ["id", "session_id", "sequence"]
