import pytest

from conftest import FakeDrive, transient
from database import DatabaseManager
from errors import RollbackIncompleteError, SessionNotActiveError, SessionNotFoundError
from operations import (
    ACTIVE,
    COMPLETED,
    ROLLED_BACK,
    CompensatingAction,
    RollbackManager,
)


def make_manager(db: DatabaseManager, drive: FakeDrive, **kwargs) -> RollbackManager:
    return RollbackManager(db, client=drive, retry_delay_seconds=0, sleep=lambda _: None, **kwargs)


def test_session_lifecycle(db: DatabaseManager, drive: FakeDrive) -> None:
    manager = make_manager(db, drive)
    session = manager.create_session("merge test")

    assert session.status == ACTIVE
    assert session.session_id.startswith("rb_")
    manager.append_operation(session.session_id, CompensatingAction.move("f1", "a.pdf", "src", "dst"))
    manager.append_operation(session.session_id, CompensatingAction.trash("src", "Acme (1)", "root"))
    manager.complete_session(session.session_id)

    stored = manager.get_session(session.session_id)
    assert stored.status == COMPLETED
    assert stored.finished_at is not None
    assert [op.action_type for op in stored.operations] == ["move", "trash"]
    assert manager.list_open_sessions() == []

    with pytest.raises(SessionNotActiveError):
        manager.append_operation(session.session_id, CompensatingAction.move("f2", "b.pdf", "src", "dst"))
    with pytest.raises(SessionNotActiveError):
        manager.complete_session(session.session_id)
    with pytest.raises(SessionNotFoundError):
        manager.get_session("rb_missing")


def test_rollback_replays_newest_first(db: DatabaseManager, drive: FakeDrive) -> None:
    source = drive.add_folder("Acme (1)", item_id="src")
    target = drive.add_folder("Acme", item_id="dst")
    first = drive.add_file("a.pdf", source, item_id="f1")
    second = drive.add_file("b.pdf", source, item_id="f2")
    manager = make_manager(db, drive)
    session_id = manager.create_session("replay").session_id

    for item_id, name in ((first, "a.pdf"), (second, "b.pdf")):
        manager.append_operation(session_id, CompensatingAction.move(item_id, name, source, target))
        drive.move_item(item_id, target)
    manager.append_operation(session_id, CompensatingAction.trash(source, "Acme (1)", "root"))
    drive.trash_item(source)
    drive.calls.clear()

    stats = manager.rollback_session(session_id)

    assert stats.reversed == 3
    assert stats.status == ROLLED_BACK
    assert [call[:2] for call in drive.mutations()] == [
        ("untrash_item", "src"),
        ("move_item", "f2"),
        ("move_item", "f1"),
    ]
    assert drive.children(source) == ["f1", "f2"]
    assert drive.children(target) == []
    assert manager.get_session(session_id).status == ROLLED_BACK

    drive.calls.clear()
    again = manager.rollback_session(session_id)
    assert again.reversed == 0
    assert drive.mutations() == []


def test_partial_rollback_can_be_resumed(db: DatabaseManager, drive: FakeDrive) -> None:
    for item_id in ("f1", "f2", "f3"):
        drive.add_file(f"{item_id}.pdf", "dst", item_id=item_id)
    manager = make_manager(db, drive, max_retries=2)
    session_id = manager.create_session("resume").session_id
    for item_id in ("f1", "f2", "f3"):
        manager.append_operation(session_id, CompensatingAction.move(item_id, f"{item_id}.pdf", "src", "dst"))
    drive.failures[("move_item", "f2")] = transient("move_item", "f2")

    with pytest.raises(RollbackIncompleteError) as excinfo:
        manager.rollback_session(session_id)

    assert len(excinfo.value.pending_operation_ids) == 2
    assert drive.items["f3"]["parent"] == "src"
    assert drive.items["f2"]["parent"] == "dst"
    assert drive.items["f1"]["parent"] == "dst"
    assert manager.get_session(session_id).status == ACTIVE
    assert len([call for call in drive.calls if call[:2] == ("move_item", "f2")]) == 2

    drive.failures.clear()
    drive.calls.clear()
    stats = manager.rollback_session(session_id)

    assert stats.reversed == 2
    assert stats.already_reversed == 1
    assert [call[:2] for call in drive.mutations()] == [("move_item", "f2"), ("move_item", "f1")]
    assert {drive.items[item_id]["parent"] for item_id in ("f1", "f2", "f3")} == {"src"}


def test_continue_on_error_reverses_the_rest(db: DatabaseManager, drive: FakeDrive) -> None:
    for item_id in ("f1", "f2"):
        drive.add_file(f"{item_id}.pdf", "dst", item_id=item_id)
    manager = make_manager(db, drive, continue_on_error=True, max_retries=1)
    session_id = manager.create_session("continue").session_id
    for item_id in ("f1", "f2"):
        manager.append_operation(session_id, CompensatingAction.move(item_id, f"{item_id}.pdf", "src", "dst"))
    drive.failures[("move_item", "f2")] = transient("move_item", "f2")

    with pytest.raises(RollbackIncompleteError):
        manager.rollback_session(session_id)

    assert drive.items["f1"]["parent"] == "src"
    assert db.operation_status_summary(session_id) == {"failed": 1, "reversed": 1}


def test_irreversible_operations_are_skipped(db: DatabaseManager, drive: FakeDrive) -> None:
    drive.add_file("a.pdf", "dst", item_id="f1")
    manager = make_manager(db, drive)
    session_id = manager.create_session("irreversible").session_id
    manager.append_operation(session_id, CompensatingAction.move("f1", "a.pdf", "src", "dst"))
    manager.append_operation(session_id, CompensatingAction.delete("gone", "old.pdf", "src"))

    stats = manager.rollback_session(session_id)

    assert stats.reversed == 1
    assert stats.irreversible == 1
    assert stats.status == ROLLED_BACK


def test_completed_session_requires_force(db: DatabaseManager, drive: FakeDrive) -> None:
    drive.add_folder("Renamed", item_id="d1")
    manager = make_manager(db, drive)
    session_id = manager.create_session("forced").session_id
    manager.append_operation(session_id, CompensatingAction.rename("d1", "Original", "Renamed"))
    drive.items["d1"]["properties"].update({"deleted": "true", "deleteMode": "tag"})
    manager.append_operation(session_id, CompensatingAction.tag("d1", "Renamed", ["deleted", "deleteMode"]))
    manager.complete_session(session_id)

    with pytest.raises(SessionNotActiveError):
        manager.rollback_session(session_id)

    preview = manager.rollback_session(session_id, dry_run=True, force=True)
    assert len(preview.remaining) == 2
    assert drive.mutations() == []

    manager.rollback_session(session_id, force=True)
    assert drive.items["d1"]["name"] == "Original"
    assert drive.items["d1"]["properties"] == {}
