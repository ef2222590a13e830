"""
Ledger of files extracted from source zip archives.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from manifests.ledger import Manifest, ManifestLedger
from utils import is_truthy

_FIELDS = {
    "fileId",
    "fileName",
    "agencyName",
    "determinedYear",
    "sourceZipFileId",
    "sourceZipFileName",
    "zipPath",
    "fromNestedZip",
    "extractedAt",
}


@dataclass(frozen=True)
class ExtractionEntry:
    """One extracted file and the zip it came from."""

    file_id: str
    file_name: str
    agency_name: str
    determined_year: Optional[int]
    source_zip_file_id: str
    source_zip_file_name: str
    zip_path: str = ""
    from_nested_zip: bool = False
    extracted_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, payload: dict) -> "ExtractionEntry":
        return cls(
            file_id=str(payload["fileId"]),
            file_name=str(payload.get("fileName", "")),
            agency_name=str(payload.get("agencyName", "")),
            determined_year=payload.get("determinedYear"),
            source_zip_file_id=str(payload["sourceZipFileId"]),
            source_zip_file_name=str(payload.get("sourceZipFileName", "")),
            zip_path=str(payload.get("zipPath", "")),
            from_nested_zip=is_truthy(payload.get("fromNestedZip", False)),
            extracted_at=str(payload.get("extractedAt", "")),
            extra={key: value for key, value in payload.items() if key not in _FIELDS},
        )

    def to_dict(self) -> dict:
        payload = {
            "fileId": self.file_id,
            "fileName": self.file_name,
            "agencyName": self.agency_name,
            "determinedYear": self.determined_year,
            "sourceZipFileId": self.source_zip_file_id,
            "sourceZipFileName": self.source_zip_file_name,
            "zipPath": self.zip_path,
            "fromNestedZip": self.from_nested_zip,
            "extractedAt": self.extracted_at,
        }
        payload.update(self.extra)
        return payload


@dataclass(frozen=True)
class ExtractionStats:
    total_files: int
    unique_zips: int
    unique_agencies: int
    nested_zip_files: int
    files_by_year: Dict[str, int]


class ExtractionManifest(ManifestLedger[ExtractionEntry]):
    """Extraction ledger keyed by source zip; re-extracting a zip replaces its entries."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(
            path,
            entry_from_dict=ExtractionEntry.from_dict,
            entry_to_dict=ExtractionEntry.to_dict,
            key_of=lambda entry: entry.source_zip_file_id,
            id_of=lambda entry: entry.file_id,
            logger=logger,
        )

    def get_entries_by_agency(self, agency_name: str) -> list[ExtractionEntry]:
        return [entry for entry in self.entries() if entry.agency_name == agency_name]

    def get_entries_grouped_by_agency(self) -> Dict[str, list[ExtractionEntry]]:
        grouped: Dict[str, list[ExtractionEntry]] = {}
        for entry in self.entries():
            grouped.setdefault(entry.agency_name, []).append(entry)
        return grouped

    def get_agency_counts(self) -> Dict[str, int]:
        """Number of extracted files per agency, in first-seen order."""
        return {agency: len(items) for agency, items in self.get_entries_grouped_by_agency().items()}

    def is_zip_extracted(self, source_zip_file_id: str) -> bool:
        return any(entry.source_zip_file_id == source_zip_file_id for entry in self.entries())

    def get_extracted_zip_ids(self) -> set[str]:
        return {entry.source_zip_file_id for entry in self.entries()}

    def get_stats(self, manifest: Optional[Manifest[ExtractionEntry]] = None) -> ExtractionStats:
        entries = (manifest or self.load()).entries
        years = Counter(
            str(entry.determined_year) if entry.determined_year is not None else "unknown"
            for entry in entries
        )
        return ExtractionStats(
            total_files=len(entries),
            unique_zips=len({entry.source_zip_file_id for entry in entries}),
            unique_agencies=len({entry.agency_name for entry in entries}),
            nested_zip_files=sum(1 for entry in entries if entry.from_nested_zip),
            files_by_year=dict(sorted(years.items())),
        )
