from conftest import ROOT_ID
from duplicates import (
    APPLE_STYLE,
    EXACT,
    detect_apple_style_duplicates,
    detect_exact_duplicates,
    summarize_groups,
)
from hierarchy import HierarchyTree


def build_tree(records) -> HierarchyTree:
    return HierarchyTree.from_records(ROOT_ID, records)


def test_exact_duplicates_prefer_the_fullest_folder() -> None:
    tree = build_tree(
        [
            ("a", "Acme", ROOT_ID),
            ("b", "Acme", ROOT_ID),
            ("c", "acme", ROOT_ID),
            ("b1", "2021", "b"),
            ("b2", "2022", "b"),
            ("a1", "2021", "a"),
        ]
    )

    groups = detect_exact_duplicates(tree)

    assert len(groups) == 1
    group = groups[0]
    assert group.kind == EXACT
    assert group.folder_ids == ("b", "a")
    assert group.target_id == "b"
    assert group.source_ids == ("a",)
    assert group.parent_id == ROOT_ID


def test_exact_duplicates_tie_goes_to_snapshot_order() -> None:
    tree = build_tree([("x", "Beta", ROOT_ID), ("y", "Beta", ROOT_ID), ("z", "Beta", ROOT_ID)])

    assert detect_exact_duplicates(tree)[0].folder_ids == ("x", "y", "z")


def test_duplicates_are_found_at_every_level_but_never_across_parents() -> None:
    tree = build_tree(
        [
            ("a", "Acme", ROOT_ID),
            ("b", "Beta", ROOT_ID),
            ("a1", "2021", "a"),
            ("a2", "2021", "a"),
            ("b1", "2021", "b"),
        ]
    )

    groups = detect_exact_duplicates(tree)

    assert [(group.parent_id, group.folder_ids) for group in groups] == [("a", ("a1", "a2"))]


def test_apple_style_target_is_the_unsuffixed_name() -> None:
    tree = build_tree(
        [
            ("s2", "Acme (2)", ROOT_ID),
            ("s0", "Acme", ROOT_ID),
            ("s1", "Acme (1)", ROOT_ID),
            ("o", "Other", ROOT_ID),
        ]
    )

    groups = detect_apple_style_duplicates(tree)

    assert len(groups) == 1
    group = groups[0]
    assert group.kind == APPLE_STYLE
    assert group.folder_name == "Acme"
    assert group.folder_ids == ("s0", "s1", "s2")
    assert group.name_of("s2") == "Acme (2)"
    assert group.to_dict()["folderNames"] == ["Acme", "Acme (1)", "Acme (2)"]


def test_apple_style_without_base_uses_lowest_number() -> None:
    tree = build_tree([("s3", "Acme (3)", ROOT_ID), ("s1", "Acme (1)", ROOT_ID)])

    group = detect_apple_style_duplicates(tree)[0]

    assert group.target_id == "s1"
    assert group.source_ids == ("s3",)


def test_single_suffixed_folder_is_not_a_group() -> None:
    tree = build_tree([("s1", "Acme (1)", ROOT_ID), ("b", "Beta", ROOT_ID)])

    assert detect_apple_style_duplicates(tree) == []


def test_detection_is_repeatable() -> None:
    tree = build_tree(
        [("a", "Acme", ROOT_ID), ("b", "Acme", ROOT_ID), ("c", "Acme (1)", ROOT_ID), ("d", "Beta", ROOT_ID)]
    )

    assert detect_exact_duplicates(tree) == detect_exact_duplicates(tree)
    assert detect_apple_style_duplicates(tree) == detect_apple_style_duplicates(tree)
    assert summarize_groups(detect_apple_style_duplicates(tree)) == {"groups": 1, "folders": 3, "sources": 2}
