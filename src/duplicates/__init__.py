"""
Duplicate folder detection and merging.
"""

from .detector import (
    APPLE_STYLE,
    EXACT,
    DuplicateGroup,
    detect_apple_style_duplicates,
    detect_exact_duplicates,
    summarize_groups,
)
from .merger import FolderMerger
from .report import GroupMergeResult, MergeReport, write_merge_report
from .verification import MoveVerification, verify_move_complete

__all__ = [
    "APPLE_STYLE",
    "EXACT",
    "DuplicateGroup",
    "detect_apple_style_duplicates",
    "detect_exact_duplicates",
    "summarize_groups",
    "FolderMerger",
    "GroupMergeResult",
    "MergeReport",
    "write_merge_report",
    "MoveVerification",
    "verify_move_complete",
]
