import json
from pathlib import Path

import pytest

from conftest import ROOT_ID, FakeDrive, transient, write_config
from errors import ManifestCorruptError, MergeIncompleteError, OpenSessionsError
from manifests import ExtractionEntry, ExtractionManifest
from operations import ACTIVE, COMPLETED, ROLLED_BACK
from orchestrator.main import ReconciliationOrchestrator, load_agency_counts, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "DRIVE_RECONCILER_APPLY",
        "DRIVE_RECONCILER_CONFIRM_RESUME",
        "DRIVE_RECONCILER_ROLLBACK_SESSION_ID",
        "DRIVE_RECONCILER_ROLLBACK_ONLY",
        "DRIVE_RECONCILER_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


def populate(drive: FakeDrive) -> None:
    smith = drive.add_folder("Smith Agency", item_id="smith")
    smith_copy = drive.add_folder("Smith Agency (1)", item_id="smith_1")
    for index in range(5):
        drive.add_file(f"attachment-{index}.pdf", smith)
    drive.add_file("late-1.pdf", smith_copy)
    drive.add_file("late-2.pdf", smith_copy)
    drive.add_folder("Beta", item_id="beta")
    beta_copy = drive.add_folder("Beta", item_id="beta_copy")
    drive.add_file("memo.pdf", beta_copy)
    drive.add_folder("Gamma (1)", item_id="gamma_1")
    gamma_copy = drive.add_folder("Gamma (2)", item_id="gamma_2")
    drive.add_file("scan.pdf", gamma_copy)


def write_extraction_manifest(tmp_path: Path) -> None:
    manifest = ExtractionManifest(tmp_path / "data" / "extraction-manifest.json")
    manifest.add_entries(
        [
            ExtractionEntry(f"f{index}", f"f{index}.pdf", agency, 2023, "Z1", "z1.zip")
            for index, agency in enumerate(["Smith Agency", "Smith Agency", "Beta", "Gamma"])
        ]
    )


def test_reconcile_merges_maps_and_commits(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    before = drive.shape()
    write_extraction_manifest(tmp_path)
    orchestrator = ReconciliationOrchestrator(write_config(tmp_path), client=drive)

    result = orchestrator.run()

    assert result.dry_run is False
    assert drive.child_names(ROOT_ID) == ["Beta", "Gamma (1)", "Smith Agency"]
    assert len(drive.children("smith")) == 7
    assert drive.child_names("beta_copy") == ["memo.pdf"] and drive.children("gamma_1") != []
    assert drive.items["beta"]["trashed"] is True
    assert result.groups_merged == 3
    assert result.items_moved == 3
    assert [node.name for node in result.tree.roots] == ["Smith Agency", "Beta", "Gamma (1)"]

    mapped = {item.agency_name: item.folder_id for item in result.mapping.mapped}
    assert mapped == {"Smith Agency": "smith", "Beta": "beta_copy", "Gamma": "gamma_1"}
    assert orchestrator.mapping_store.get("Smith Agency").match_type == "exact"

    orchestrator.db_manager.initialize()
    session = orchestrator.rollback_manager.get_session(result.session_id)
    assert session.status == COMPLETED
    assert [op.action_type for op in session.operations].count("trash") == 3
    assert all(path.exists() for path in result.report_paths)
    assert orchestrator.db_manager.list_incomplete_operations() == []

    stats = orchestrator.rollback(result.session_id, force=True)
    assert stats.status == ROLLED_BACK
    assert drive.shape() == before


def test_dry_run_leaves_drive_and_state_untouched(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    config = write_config(tmp_path, {"merge": {"dry_run": True}})
    orchestrator = ReconciliationOrchestrator(config, client=drive)

    result = orchestrator.run(agency_counts={"Smith Agency": 7})

    assert result.dry_run is True
    assert result.session_id is None
    assert drive.mutations() == []
    assert result.mapping.mapped[0].folder_id == "smith"
    assert not orchestrator.mapping_store.path.exists()
    orchestrator.db_manager.initialize()
    assert orchestrator.rollback_manager.list_sessions() == []


def test_apply_requires_confirmation(tmp_path: Path, drive: FakeDrive, monkeypatch: pytest.MonkeyPatch) -> None:
    populate(drive)
    config = write_config(tmp_path, {"safety": {"require_confirmation_for_apply": True}})
    orchestrator = ReconciliationOrchestrator(config, client=drive)

    assert orchestrator.run(dry_run=False).dry_run is True
    assert drive.mutations() == []

    monkeypatch.setenv("DRIVE_RECONCILER_APPLY", "yes")
    assert orchestrator.run(dry_run=False).dry_run is False
    assert drive.mutations("move_item")


def test_open_sessions_block_until_confirmed(
    tmp_path: Path, drive: FakeDrive, monkeypatch: pytest.MonkeyPatch
) -> None:
    populate(drive)
    orchestrator = ReconciliationOrchestrator(write_config(tmp_path), client=drive)
    orchestrator.db_manager.initialize()
    orchestrator.rollback_manager.create_session("left over")

    with pytest.raises(OpenSessionsError):
        orchestrator.run()
    assert drive.mutations() == []

    monkeypatch.setenv("DRIVE_RECONCILER_CONFIRM_RESUME", "1")
    result = orchestrator.run()
    assert result.groups_merged == 3


def test_failed_merge_keeps_session_open_for_rollback(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    before = drive.shape()
    scan_id = drive.children("gamma_2")[0]
    drive.failures[("move_item", scan_id)] = transient("move_item", scan_id)
    orchestrator = ReconciliationOrchestrator(write_config(tmp_path), client=drive)

    with pytest.raises(MergeIncompleteError) as excinfo:
        orchestrator.run(agency_counts=["Smith Agency"])

    session_id = excinfo.value.report.session_id
    orchestrator.db_manager.initialize()
    assert orchestrator.rollback_manager.get_session(session_id).status == ACTIVE
    assert orchestrator.mapping_store.get_all() == {}
    assert orchestrator.db_manager.list_incomplete_operations() == []

    drive.failures.clear()
    orchestrator.rollback(session_id)
    assert drive.shape() == before


def test_resolve_merges_nested_duplicates_until_clean(tmp_path: Path, drive: FakeDrive) -> None:
    acme = drive.add_folder("Acme", item_id="acme")
    acme_copy = drive.add_folder("Acme (1)", item_id="acme_1")
    drive.add_file("a.pdf", drive.add_folder("2021", acme))
    drive.add_file("b.pdf", drive.add_folder("2021", acme_copy))
    orchestrator = ReconciliationOrchestrator(write_config(tmp_path), client=drive)

    reports = orchestrator.resolve_duplicates(max_iterations=3)

    assert [report.kind for report in reports] == ["apple-style", "exact"]
    assert drive.child_names(ROOT_ID) == ["Acme"]
    assert drive.child_names(acme) == ["2021"]
    year = drive.children(acme)[0]
    assert drive.child_names(year) == ["a.pdf", "b.pdf"]


def test_analyze_writes_report(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    orchestrator = ReconciliationOrchestrator(write_config(tmp_path), client=drive)

    analysis, report_path = orchestrator.analyze()

    assert analysis.metrics.root_folders == 6
    assert analysis.issue_counts()["duplicate_name"] == 2
    assert json.loads(report_path.read_text(encoding="utf-8"))["metrics"]["total_folders"] == 6


def test_load_agency_counts(tmp_path: Path) -> None:
    json_path = tmp_path / "agencies.json"
    json_path.write_text(json.dumps({"Acme": 3, "Beta": 1}), encoding="utf-8")
    list_path = tmp_path / "agency-list.json"
    list_path.write_text(json.dumps(["Acme", "Beta"]), encoding="utf-8")
    text_path = tmp_path / "agencies.txt"
    text_path.write_text("Acme\n\n  Beta  \n", encoding="utf-8")

    assert load_agency_counts(json_path) == {"Acme": 3, "Beta": 1}
    assert load_agency_counts(list_path) == {"Acme": 0, "Beta": 0}
    assert load_agency_counts(text_path) == {"Acme": 0, "Beta": 0}


def test_cli_lists_sessions_and_review_queue(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    config = write_config(tmp_path)
    config_path = tmp_path / "config.yaml"
    orchestrator = ReconciliationOrchestrator(config, client=FakeDrive())
    orchestrator.db_manager.initialize()
    session = orchestrator.rollback_manager.create_session("cli")
    orchestrator.db_manager.close()
    orchestrator.mapping_store.mark_reviewed("Done", folder_id="f1", folder_name="Done")

    assert main(["--config", str(config_path), "sessions"]) == 0
    assert session.session_id in capsys.readouterr().out

    assert main(["--config", str(config_path), "review"]) == 0
    assert main(["--config", str(config_path), "rollback", "rb_missing"]) == 1


def test_mapping_failure_after_merges_leaves_session_completed(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    orchestrator = ReconciliationOrchestrator(write_config(tmp_path), client=drive)
    orchestrator.mapping_store.path.parent.mkdir(parents=True, exist_ok=True)
    orchestrator.mapping_store.path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ManifestCorruptError):
        orchestrator.run(agency_counts={"Smith Agency": 7})

    assert len(drive.children("smith")) == 7
    orchestrator.db_manager.initialize()
    sessions = orchestrator.rollback_manager.list_sessions()
    assert [session.status for session in sessions] == [COMPLETED]
    assert orchestrator.rollback_manager.list_open_sessions() == []
