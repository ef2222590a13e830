import json
from pathlib import Path

import pytest

from conftest import ROOT_ID, FakeDrive, transient, write_config
from errors import CacheCorruptError, CacheMissingError, TransientRemoteError, TreeShapeError
from hierarchy import (
    CacheMode,
    FolderNode,
    HierarchyTree,
    HierarchyTreeBuilder,
    analyze_hierarchy,
    render_tree,
    split_apple_suffix,
    write_hierarchy_report,
)


def populate(drive: FakeDrive) -> dict[str, str]:
    ids = {
        "acme": drive.add_folder("Acme", item_id="acme"),
        "beta": drive.add_folder("Beta", item_id="beta"),
        "gamma": drive.add_folder("Gamma (1)", item_id="gamma"),
    }
    ids["acme_2021"] = drive.add_folder("2021", "acme", item_id="acme_2021")
    ids["acme_2022"] = drive.add_folder("2022", "acme", item_id="acme_2022")
    ids["acme_2022_q1"] = drive.add_folder("Q1", "acme_2022", item_id="acme_2022_q1")
    drive.add_file("invoice.pdf", "acme")
    drive.add_file("memo.pdf", "beta")
    return ids


def test_tree_from_records_keeps_listing_order() -> None:
    tree = HierarchyTree.from_records(
        ROOT_ID,
        [("a", "Acme", ROOT_ID), ("b", "Beta", ROOT_ID), ("a1", "2021", "a"), ("a2", "2022", "a")],
    )

    assert [node.name for node in tree.roots] == ["Acme", "Beta"]
    assert [node.id for node in tree.iter_nodes()] == ["a", "a1", "a2", "b"]
    assert tree.total_folders == 4
    assert tree.max_depth == 2
    assert tree.path_of("a2") == "Acme/2022"
    assert tree.depth_of("a1") == 2
    assert [node.id for node in tree.children_of(ROOT_ID)] == ["a", "b"]
    assert set(tree.siblings_by_parent()) == {ROOT_ID, "a"}
    assert "a1" in tree and "zzz" not in tree


def test_tree_rejects_bad_shapes() -> None:
    with pytest.raises(TreeShapeError):
        HierarchyTree.from_records(ROOT_ID, [("a", "Acme", ROOT_ID), ("a", "Again", ROOT_ID)])
    with pytest.raises(TreeShapeError):
        HierarchyTree.from_records(ROOT_ID, [("a", "Acme", ROOT_ID), ("x", "X", "y"), ("y", "Y", "x")])
    with pytest.raises(TreeShapeError):
        HierarchyTree(root_id=ROOT_ID, roots=(FolderNode("a", "Acme", "elsewhere"),))


def test_tree_serialization_round_trip() -> None:
    tree = HierarchyTree.from_records(ROOT_ID, [("a", "Acme", ROOT_ID), ("a1", "2021", "a")])

    payload = tree.to_dict()
    restored = HierarchyTree.from_dict(json.loads(json.dumps(payload)))

    assert payload["totalFolders"] == 2
    assert payload["roots"][0]["children"][0]["parentId"] == "a"
    assert restored.roots == tree.roots
    assert restored.source == "cache"


def test_builder_walks_all_pages(tmp_path: Path, drive: FakeDrive) -> None:
    ids = populate(drive)
    builder = HierarchyTreeBuilder(write_config(tmp_path), drive)

    tree = builder.build(CacheMode.NONE)

    assert [node.name for node in tree.roots] == ["Acme", "Beta", "Gamma (1)"]
    assert [node.name for node in tree.children_of(ids["acme"])] == ["2021", "2022"]
    assert tree.path_of(ids["acme_2022_q1"]) == "Acme/2022/Q1"
    assert tree.total_folders == 6
    # page_size=2 with three root folders forces a continuation token.
    root_listings = [call for call in drive.calls if call[:2] == ("list_children", ROOT_ID)]
    assert len(root_listings) == 2
    assert not builder.cache_path.exists()


def test_builder_skips_soft_deleted_folders(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    drive.items["beta"]["properties"]["deleted"] = "true"
    drive.items["gamma"]["trashed"] = True

    tree = HierarchyTreeBuilder(write_config(tmp_path), drive).build("none")

    assert [node.name for node in tree.roots] == ["Acme"]


def test_builder_cache_modes(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    builder = HierarchyTreeBuilder(write_config(tmp_path), drive)

    with pytest.raises(CacheMissingError):
        builder.build(CacheMode.READ)

    live = builder.build(CacheMode.WRITE)
    assert builder.cache_path.exists()
    drive.add_folder("Delta", item_id="delta")
    calls_before = len(drive.calls)

    cached = builder.build(CacheMode.READ_WRITE)
    assert cached.source == "cache"
    assert cached.roots == live.roots
    assert len(drive.calls) == calls_before

    refreshed = builder.build(CacheMode.WRITE)
    assert [node.name for node in refreshed.roots][-1] == "Delta"
    assert [node.name for node in builder.build("read").roots][-1] == "Delta"

    assert builder.clear_cache() is True
    assert builder.clear_cache() is False


def test_builder_refreshes_stale_cache(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    now = [1_000_000_000.0]
    builder = HierarchyTreeBuilder(
        write_config(tmp_path, {"hierarchy": {"cache_max_age_seconds": 60}}), drive, clock=lambda: now[0]
    )
    builder.build(CacheMode.WRITE)
    # Age is measured against the file mtime; push the clock far past it.
    now[0] = builder.cache_path.stat().st_mtime + 3600

    assert builder.is_cache_fresh() is False
    assert builder.build(CacheMode.READ_WRITE).source == "live"


def test_builder_rejects_corrupt_cache(tmp_path: Path, drive: FakeDrive) -> None:
    builder = HierarchyTreeBuilder(write_config(tmp_path), drive)
    builder.cache_path.parent.mkdir(parents=True, exist_ok=True)
    builder.cache_path.write_text("{broken", encoding="utf-8")

    with pytest.raises(CacheCorruptError):
        builder.build(CacheMode.READ)


def test_failed_listing_aborts_without_partial_tree(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    drive.failures[("list_children", "acme_2022")] = transient("list_children", "acme_2022")
    builder = HierarchyTreeBuilder(write_config(tmp_path), drive)

    with pytest.raises(TransientRemoteError):
        builder.build(CacheMode.WRITE)

    assert not builder.cache_path.exists()


def test_analysis_flags_duplicates_and_suffixes(tmp_path: Path) -> None:
    tree = HierarchyTree.from_records(
        ROOT_ID,
        [
            ("a", "Acme", ROOT_ID),
            ("b", "Acme", ROOT_ID),
            ("c", "Acme (1)", ROOT_ID),
            ("a1", "2021", "a"),
            ("a2", "2022", "a"),
        ],
    )

    analysis = analyze_hierarchy(tree)

    assert analysis.metrics.total_folders == 5
    assert analysis.metrics.root_folders == 3
    assert analysis.metrics.max_depth == 2
    assert analysis.metrics.largest_folders == [("Acme", 2)]
    assert analysis.issue_counts() == {"duplicate_name": 2, "suffixed_name": 1}
    assert analysis.is_valid

    rendered = render_tree(tree, max_depth=1)
    assert "Acme [+2]" in rendered
    assert "2021" not in rendered

    report = json.loads(write_hierarchy_report(tree, tmp_path, analysis).read_text(encoding="utf-8"))
    assert report["metrics"]["total_folders"] == 5
    assert len(report["folders"]) == 5


def test_apple_suffix_parsing() -> None:
    assert split_apple_suffix("Smith Agency (1)") == ("Smith Agency", 1)
    assert split_apple_suffix("Smith Agency") == ("Smith Agency", None)
    assert split_apple_suffix("Report(2)") == ("Report(2)", None)
    assert split_apple_suffix(" (3)") == (" (3)", None)


def test_cache_for_another_root_is_refetched_in_read_write_mode(tmp_path: Path, drive: FakeDrive) -> None:
    populate(drive)
    builder = HierarchyTreeBuilder(write_config(tmp_path), drive)
    builder.save_cache(HierarchyTree.from_records("other", [("x", "Elsewhere", "other")]))

    with pytest.raises(CacheCorruptError):
        builder.build(CacheMode.READ)

    tree = builder.build(CacheMode.READ_WRITE)
    assert tree.source == "live"
    assert tree.root_id == ROOT_ID
    assert builder.build(CacheMode.READ).roots == tree.roots
