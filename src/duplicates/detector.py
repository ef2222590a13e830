"""
Duplicate folder detection over a hierarchy snapshot.

Both detectors are pure: they read a tree and return groups, nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from hierarchy.naming import split_apple_suffix
from hierarchy.tree import FolderNode, HierarchyTree

EXACT = "exact"
APPLE_STYLE = "apple-style"


@dataclass(frozen=True)
class DuplicateGroup:
    """Sibling folders to merge. The first id is the merge target."""

    folder_name: str
    folder_ids: tuple[str, ...]
    parent_id: str
    kind: str = EXACT
    folder_names: tuple[str, ...] = ()

    @property
    def target_id(self) -> str:
        return self.folder_ids[0]

    @property
    def source_ids(self) -> tuple[str, ...]:
        return self.folder_ids[1:]

    def name_of(self, folder_id: str) -> str:
        if self.folder_names:
            return self.folder_names[self.folder_ids.index(folder_id)]
        return self.folder_name

    def to_dict(self) -> dict:
        return {
            "folderName": self.folder_name,
            "folderIds": list(self.folder_ids),
            "folderNames": list(self.folder_names),
            "parentId": self.parent_id,
            "kind": self.kind,
        }


def detect_exact_duplicates(tree: HierarchyTree) -> list[DuplicateGroup]:
    """Group siblings sharing an identical, case-sensitive name.

    Members are ordered by subfolder count, then snapshot order. The snapshot
    holds folders only, so the merger re-ranks by the full listing (files
    included) before it moves anything.
    """
    groups: list[DuplicateGroup] = []
    for parent_id, siblings in tree.siblings_by_parent().items():
        by_name: Dict[str, list[tuple[int, FolderNode]]] = {}
        for position, node in enumerate(siblings):
            by_name.setdefault(node.name, []).append((position, node))
        for name, members in by_name.items():
            if len(members) < 2:
                continue
            ordered = sorted(members, key=lambda item: (-len(item[1].children), item[0]))
            groups.append(
                DuplicateGroup(
                    folder_name=name,
                    folder_ids=tuple(node.id for _, node in ordered),
                    parent_id=parent_id,
                    kind=EXACT,
                    folder_names=tuple(node.name for _, node in ordered),
                )
            )
    return groups


def detect_apple_style_duplicates(tree: HierarchyTree) -> list[DuplicateGroup]:
    """Group siblings that differ only by a trailing " (N)" suffix.

    The unsuffixed base name is the target when present, otherwise the lowest
    suffix number; remaining ties go to snapshot order.
    """
    groups: list[DuplicateGroup] = []
    for parent_id, siblings in tree.siblings_by_parent().items():
        by_base: Dict[str, list[tuple[int, int, FolderNode]]] = {}
        for position, node in enumerate(siblings):
            base, number = split_apple_suffix(node.name)
            rank = -1 if number is None else number
            by_base.setdefault(base, []).append((rank, position, node))
        for base, members in by_base.items():
            if len(members) < 2:
                continue
            ordered = sorted(members, key=lambda item: (item[0], item[1]))
            groups.append(
                DuplicateGroup(
                    folder_name=base,
                    folder_ids=tuple(node.id for _, _, node in ordered),
                    parent_id=parent_id,
                    kind=APPLE_STYLE,
                    folder_names=tuple(node.name for _, _, node in ordered),
                )
            )
    return groups


def summarize_groups(groups: list[DuplicateGroup]) -> Dict[str, int]:
    return {
        "groups": len(groups),
        "folders": sum(len(group.folder_ids) for group in groups),
        "sources": sum(len(group.source_ids) for group in groups),
    }
