"""
Ledger of renamed Drive files and rename rollback.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from cloud.protocol import DriveClient
from errors import RemoteError
from manifests.ledger import ManifestLedger

_FIELDS = {"fileId", "originalName", "newName", "agencyName", "determinedYear", "renamedAt"}


@dataclass(frozen=True)
class RenameEntry:
    file_id: str
    original_name: str
    new_name: str
    agency_name: str
    determined_year: Optional[int]
    renamed_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, payload: dict) -> "RenameEntry":
        return cls(
            file_id=str(payload["fileId"]),
            original_name=str(payload["originalName"]),
            new_name=str(payload.get("newName", "")),
            agency_name=str(payload.get("agencyName", "")),
            determined_year=payload.get("determinedYear"),
            renamed_at=str(payload.get("renamedAt", "")),
            extra={key: value for key, value in payload.items() if key not in _FIELDS},
        )

    def to_dict(self) -> dict:
        payload = {
            "fileId": self.file_id,
            "originalName": self.original_name,
            "newName": self.new_name,
            "agencyName": self.agency_name,
            "determinedYear": self.determined_year,
            "renamedAt": self.renamed_at,
        }
        payload.update(self.extra)
        return payload


@dataclass(frozen=True)
class RenameStats:
    total_renamed: int
    unique_agencies: int
    files_by_agency: Dict[str, int]


@dataclass
class RenameRollbackResult:
    restored: list[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False


class RenameManifest(ManifestLedger[RenameEntry]):
    """Rename ledger keyed by file id; renaming a file again supersedes its entry."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(
            path,
            entry_from_dict=RenameEntry.from_dict,
            entry_to_dict=RenameEntry.to_dict,
            key_of=lambda entry: entry.file_id,
            id_of=lambda entry: entry.file_id,
            logger=logger,
        )

    def get_renamed_file_ids(self) -> set[str]:
        return {entry.file_id for entry in self.entries()}

    def get_entries_for_rollback(self, file_ids: Optional[Iterable[str]] = None) -> list[RenameEntry]:
        """Entries to restore, newest rename first."""
        entries = self.entries()
        if file_ids is not None:
            wanted = set(file_ids)
            entries = [entry for entry in entries if entry.file_id in wanted]
        return list(reversed(entries))

    def get_stats(self) -> RenameStats:
        entries = self.entries()
        by_agency = Counter(entry.agency_name for entry in entries)
        return RenameStats(
            total_renamed=len(entries),
            unique_agencies=len(by_agency),
            files_by_agency=dict(by_agency),
        )


def rollback_renames(
    client: DriveClient,
    manifest: RenameManifest,
    file_ids: Optional[Iterable[str]] = None,
    dry_run: bool = False,
    logger: Optional[logging.Logger] = None,
) -> RenameRollbackResult:
    """Restore original names for renamed files and drop them from the ledger."""
    logger = logger or logging.getLogger("drive_reconciler")
    result = RenameRollbackResult(dry_run=dry_run)
    for entry in manifest.get_entries_for_rollback(file_ids):
        if dry_run:
            logger.info("[dry-run] Would rename %s: %s -> %s", entry.file_id, entry.new_name, entry.original_name)
            result.restored.append(entry.file_id)
            continue
        try:
            client.update_metadata(entry.file_id, {"name": entry.original_name})
        except RemoteError as exc:
            logger.error("Rename rollback failed for %s: %s", entry.file_id, exc)
            result.failed[entry.file_id] = str(exc)
            continue
        result.restored.append(entry.file_id)
    if result.restored and not dry_run:
        manifest.remove_entries(result.restored)
    logger.info(
        "Rename rollback %s: restored=%s failed=%s",
        "planned" if dry_run else "finished",
        len(result.restored),
        len(result.failed),
    )
    return result
