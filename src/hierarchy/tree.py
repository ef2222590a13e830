"""
Immutable folder hierarchy snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Iterator, Optional

from errors import TreeShapeError

TREE_CACHE_VERSION = 1


@dataclass(frozen=True)
class FolderNode:
    """A folder in a snapshot. Paths are derived from the tree, never stored."""

    id: str
    name: str
    parent_id: Optional[str]
    children: tuple["FolderNode", ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "parentId": self.parent_id,
            "children": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "FolderNode":
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            parent_id=payload.get("parentId"),
            children=tuple(cls.from_dict(child) for child in payload.get("children") or ()),
        )


@dataclass(frozen=True)
class HierarchyTree:
    """Folders below a root folder. The root itself is not a node; its id is the roots' parent."""

    root_id: str
    roots: tuple[FolderNode, ...]
    built_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    source: str = "live"
    _nodes: Dict[str, FolderNode] = field(init=False, repr=False, compare=False)
    _depths: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        nodes: Dict[str, FolderNode] = {}
        depths: Dict[str, int] = {}
        stack = [(node, self.root_id, 1) for node in reversed(self.roots)]
        while stack:
            node, expected_parent, depth = stack.pop()
            if node.id in nodes or node.id == self.root_id:
                raise TreeShapeError(f"Folder id {node.id} appears more than once in the tree")
            if node.parent_id != expected_parent:
                raise TreeShapeError(
                    f"Folder {node.id} records parent {node.parent_id} but is nested under {expected_parent}"
                )
            nodes[node.id] = node
            depths[node.id] = depth
            stack.extend((child, node.id, depth + 1) for child in reversed(node.children))
        object.__setattr__(self, "_nodes", nodes)
        object.__setattr__(self, "_depths", depths)

    @classmethod
    def from_records(
        cls,
        root_id: str,
        records: Iterable[tuple[str, str, str]],
        source: str = "live",
    ) -> "HierarchyTree":
        """Assemble a tree from flat (id, name, parent_id) records in listing order."""
        names: Dict[str, str] = {}
        parents: Dict[str, str] = {}
        children_of: Dict[str, list[str]] = {}
        for folder_id, name, parent_id in records:
            if folder_id in names:
                raise TreeShapeError(f"Folder id {folder_id} listed more than once")
            names[folder_id] = name
            parents[folder_id] = parent_id
            children_of.setdefault(parent_id, []).append(folder_id)

        def assemble(folder_id: str, trail: frozenset) -> FolderNode:
            if folder_id in trail:
                raise TreeShapeError(f"Cycle detected at folder {folder_id}")
            trail = trail | {folder_id}
            return FolderNode(
                id=folder_id,
                name=names[folder_id],
                parent_id=parents[folder_id],
                children=tuple(assemble(child, trail) for child in children_of.get(folder_id, ())),
            )

        roots = tuple(assemble(folder_id, frozenset()) for folder_id in children_of.get(root_id, ()))
        tree = cls(root_id=root_id, roots=roots, source=source)
        unreachable = sorted(set(names) - set(tree._nodes))
        if unreachable:
            raise TreeShapeError(f"Folders not reachable from root {root_id}: {unreachable[:10]}")
        return tree

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, folder_id: object) -> bool:
        return folder_id in self._nodes

    @property
    def total_folders(self) -> int:
        return len(self._nodes)

    @property
    def max_depth(self) -> int:
        return max(self._depths.values(), default=0)

    def iter_nodes(self) -> Iterator[FolderNode]:
        """Depth-first, pre-order, in snapshot order."""
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def get_node(self, folder_id: str) -> Optional[FolderNode]:
        return self._nodes.get(folder_id)

    def depth_of(self, folder_id: str) -> int:
        return self._depths[folder_id]

    def children_of(self, parent_id: str) -> tuple[FolderNode, ...]:
        if parent_id == self.root_id:
            return self.roots
        node = self._nodes.get(parent_id)
        return node.children if node else ()

    def path_of(self, folder_id: str) -> str:
        parts = []
        node = self._nodes.get(folder_id)
        while node is not None:
            parts.append(node.name)
            node = self._nodes.get(node.parent_id) if node.parent_id else None
        return "/".join(reversed(parts))

    def siblings_by_parent(self) -> Dict[str, tuple[FolderNode, ...]]:
        """Every non-empty sibling set keyed by parent id, root level included."""
        groups: Dict[str, tuple[FolderNode, ...]] = {}
        if self.roots:
            groups[self.root_id] = self.roots
        for node in self.iter_nodes():
            if node.children:
                groups[node.id] = node.children
        return groups

    def find_by_name(self, name: str) -> list[FolderNode]:
        return [node for node in self.iter_nodes() if node.name == name]

    def to_dict(self) -> dict:
        return {
            "version": TREE_CACHE_VERSION,
            "rootId": self.root_id,
            "builtAt": self.built_at,
            "totalFolders": self.total_folders,
            "roots": [node.to_dict() for node in self.roots],
        }

    @classmethod
    def from_dict(cls, payload: dict, source: str = "cache") -> "HierarchyTree":
        return cls(
            root_id=str(payload["rootId"]),
            roots=tuple(FolderNode.from_dict(node) for node in payload.get("roots") or ()),
            built_at=str(payload.get("builtAt", "")),
            source=source,
        )
