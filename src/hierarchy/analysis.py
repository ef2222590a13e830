"""
Hierarchy metrics, validation and reports.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from hierarchy.naming import has_apple_suffix
from hierarchy.tree import FolderNode, HierarchyTree
from utils import write_report


@dataclass(frozen=True)
class HierarchyMetrics:
    total_folders: int
    root_folders: int
    max_depth: int
    leaf_folders: int
    average_children: float
    depth_distribution: Dict[int, int]
    largest_folders: list[tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationIssue:
    kind: str
    severity: str
    folder_id: str
    path: str
    message: str


@dataclass(frozen=True)
class HierarchyAnalysis:
    metrics: HierarchyMetrics
    issues: list[ValidationIssue]

    @property
    def is_valid(self) -> bool:
        return not any(issue.severity == "error" for issue in self.issues)

    def issue_counts(self) -> Dict[str, int]:
        return dict(Counter(issue.kind for issue in self.issues))


def compute_metrics(tree: HierarchyTree, top: int = 10) -> HierarchyMetrics:
    depth_distribution: Counter = Counter()
    parents = []
    leaf_folders = 0
    for node in tree.iter_nodes():
        depth_distribution[tree.depth_of(node.id)] += 1
        if node.children:
            parents.append(node)
        else:
            leaf_folders += 1
    average = sum(len(node.children) for node in parents) / len(parents) if parents else 0.0
    largest = sorted(parents, key=lambda node: len(node.children), reverse=True)[:top]
    return HierarchyMetrics(
        total_folders=tree.total_folders,
        root_folders=len(tree.roots),
        max_depth=tree.max_depth,
        leaf_folders=leaf_folders,
        average_children=round(average, 2),
        depth_distribution=dict(sorted(depth_distribution.items())),
        largest_folders=[(tree.path_of(node.id), len(node.children)) for node in largest],
    )


def validate_hierarchy(tree: HierarchyTree) -> list[ValidationIssue]:
    """Flag blank names, sibling name collisions and sync-suffixed names."""
    issues: list[ValidationIssue] = []
    for parent_id, siblings in tree.siblings_by_parent().items():
        names = Counter(node.name for node in siblings)
        for node in siblings:
            path = tree.path_of(node.id)
            if not node.name.strip():
                issues.append(
                    ValidationIssue("empty_name", "error", node.id, path, "Folder name is blank")
                )
            if names[node.name] > 1:
                issues.append(
                    ValidationIssue(
                        "duplicate_name",
                        "warning",
                        node.id,
                        path,
                        f"{names[node.name]} siblings named {node.name!r} under {parent_id}",
                    )
                )
            if has_apple_suffix(node.name):
                issues.append(
                    ValidationIssue(
                        "suffixed_name", "info", node.id, path, f"Name carries a sync suffix: {node.name!r}"
                    )
                )
    return issues


def analyze_hierarchy(tree: HierarchyTree) -> HierarchyAnalysis:
    return HierarchyAnalysis(metrics=compute_metrics(tree), issues=validate_hierarchy(tree))


def render_tree(tree: HierarchyTree, max_depth: Optional[int] = None, show_ids: bool = False) -> str:
    lines = [f"[root {tree.root_id}]"]

    def walk(nodes: tuple[FolderNode, ...], prefix: str, depth: int) -> None:
        for index, node in enumerate(nodes):
            last = index == len(nodes) - 1
            label = f"{node.name} ({node.id})" if show_ids else node.name
            if node.children and max_depth is not None and depth >= max_depth:
                label += f" [+{len(node.children)}]"
            lines.append(f"{prefix}{'└── ' if last else '├── '}{label}")
            if node.children and (max_depth is None or depth < max_depth):
                walk(node.children, prefix + ("    " if last else "│   "), depth + 1)

    walk(tree.roots, "", 1)
    return "\n".join(lines)


def flatten_tree(tree: HierarchyTree) -> list[dict]:
    return [
        {
            "id": node.id,
            "name": node.name,
            "parentId": node.parent_id,
            "path": tree.path_of(node.id),
            "depth": tree.depth_of(node.id),
            "childCount": len(node.children),
        }
        for node in tree.iter_nodes()
    ]


def write_hierarchy_report(tree: HierarchyTree, logs_dir: Path, analysis: Optional[HierarchyAnalysis] = None) -> Path:
    analysis = analysis or analyze_hierarchy(tree)
    stamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    payload = {
        "generated_at": datetime.utcnow().isoformat(),
        "root_id": tree.root_id,
        "built_at": tree.built_at,
        "source": tree.source,
        "metrics": asdict(analysis.metrics),
        "issue_counts": analysis.issue_counts(),
        "issues": [asdict(issue) for issue in analysis.issues],
        "folders": flatten_tree(tree),
    }
    return write_report(logs_dir / f"hierarchy_analysis_{stamp}.json", payload)
