"""
Merge outcome tracking and reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from duplicates.detector import DuplicateGroup
from utils import write_report

MERGED = "merged"
ABANDONED = "abandoned"
NOT_STARTED = "not_started"
PLANNED = "planned"


@dataclass
class GroupMergeResult:
    group: DuplicateGroup
    status: str
    items_moved: int = 0
    planned_moves: int = 0
    sources_removed: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            **self.group.to_dict(),
            "status": self.status,
            "itemsMoved": self.items_moved,
            "plannedMoves": self.planned_moves,
            "sourcesRemoved": list(self.sources_removed),
            "error": self.error,
        }


@dataclass
class MergeReport:
    kind: str
    dry_run: bool
    session_id: Optional[str] = None
    session_open: bool = False
    results: list[GroupMergeResult] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    finished_at: Optional[str] = None

    @property
    def total_groups(self) -> int:
        return len(self.results)

    @property
    def merged_groups(self) -> int:
        return sum(1 for result in self.results if result.status == MERGED)

    @property
    def abandoned_groups(self) -> int:
        return sum(1 for result in self.results if result.status == ABANDONED)

    @property
    def skipped_groups(self) -> int:
        return sum(1 for result in self.results if result.status == NOT_STARTED)

    @property
    def items_moved(self) -> int:
        return sum(result.items_moved for result in self.results)

    @property
    def sources_removed(self) -> int:
        return sum(len(result.sources_removed) for result in self.results)

    @property
    def succeeded(self) -> bool:
        return self.abandoned_groups == 0 and self.skipped_groups == 0

    def summary(self) -> dict:
        return {
            "kind": self.kind,
            "dryRun": self.dry_run,
            "sessionId": self.session_id,
            "sessionOpen": self.session_open,
            "totalGroups": self.total_groups,
            "mergedGroups": self.merged_groups,
            "abandonedGroups": self.abandoned_groups,
            "notStartedGroups": self.skipped_groups,
            "itemsMoved": self.items_moved,
            "sourcesRemoved": self.sources_removed,
        }

    def to_dict(self) -> dict:
        return {
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "summary": self.summary(),
            "groups": [result.to_dict() for result in self.results],
        }


def write_merge_report(report: MergeReport, logs_dir: Path) -> Path:
    stamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")
    kind = report.kind.replace("-", "_")
    return write_report(logs_dir / f"merge_{kind}_{stamp}.json", report.to_dict())
