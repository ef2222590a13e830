"""
Folder hierarchy snapshots: model, builder and analysis.
"""

from .tree import FolderNode, HierarchyTree
from .naming import APPLE_SUFFIX_PATTERN, has_apple_suffix, split_apple_suffix
from .builder import CacheMode, HierarchyTreeBuilder
from .analysis import (
    HierarchyAnalysis,
    HierarchyMetrics,
    ValidationIssue,
    analyze_hierarchy,
    compute_metrics,
    flatten_tree,
    render_tree,
    validate_hierarchy,
    write_hierarchy_report,
)

__all__ = [
    "FolderNode",
    "HierarchyTree",
    "APPLE_SUFFIX_PATTERN",
    "has_apple_suffix",
    "split_apple_suffix",
    "CacheMode",
    "HierarchyTreeBuilder",
    "HierarchyAnalysis",
    "HierarchyMetrics",
    "ValidationIssue",
    "analyze_hierarchy",
    "compute_metrics",
    "flatten_tree",
    "render_tree",
    "validate_hierarchy",
    "write_hierarchy_report",
]
