"""
Persistent agency-to-folder mapping store.

The store is keyed by agency name. Human decisions (reviewedAt, skippedAt,
delete/create) live next to automated matches, so writers must read the
existing entry before replacing it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from errors import ManifestCorruptError
from utils import write_json_atomic

EXACT = "exact"
AUTO = "auto"
MANUAL = "manual"
DELETE = "delete"
CREATE = "create"
MATCH_TYPES = (EXACT, AUTO, MANUAL, DELETE, CREATE)

REVIEW_THRESHOLD = 90


@dataclass(frozen=True)
class AgencyMapping:
    folder_id: str
    folder_name: str
    confidence: int
    match_type: str
    reasoning: str = ""
    matched_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    reviewed_at: Optional[str] = None
    skipped_at: Optional[str] = None
    agency_name: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if self.match_type not in MATCH_TYPES:
            raise ValueError(f"Unknown match type {self.match_type!r}")
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Confidence must be within 0..100, got {self.confidence}")

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_at is not None

    @property
    def is_skipped(self) -> bool:
        return self.skipped_at is not None

    @property
    def is_human_decision(self) -> bool:
        return self.is_reviewed or self.is_skipped or self.match_type in (DELETE, CREATE)

    def to_dict(self) -> dict:
        payload = {
            "folderId": self.folder_id,
            "folderName": self.folder_name,
            "confidence": self.confidence,
            "matchType": self.match_type,
            "reasoning": self.reasoning,
            "matchedAt": self.matched_at,
        }
        if self.reviewed_at:
            payload["reviewedAt"] = self.reviewed_at
        if self.skipped_at:
            payload["skippedAt"] = self.skipped_at
        return payload

    @classmethod
    def from_dict(cls, agency_name: str, payload: dict) -> "AgencyMapping":
        return cls(
            folder_id=str(payload.get("folderId", "")),
            folder_name=str(payload.get("folderName", "")),
            confidence=int(payload.get("confidence", 0)),
            match_type=str(payload.get("matchType", MANUAL)),
            reasoning=str(payload.get("reasoning", "")),
            matched_at=str(payload.get("matchedAt", "")),
            reviewed_at=payload.get("reviewedAt"),
            skipped_at=payload.get("skippedAt"),
            agency_name=agency_name,
        )


class AgencyMappingStore:
    """JSON-backed mapping store with an instance-owned cache."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None) -> None:
        self.path = Path(path)
        self.logger = logger or logging.getLogger("drive_reconciler")
        self._cache: Optional[Dict[str, AgencyMapping]] = None

    def load(self) -> Dict[str, AgencyMapping]:
        if self._cache is not None:
            return self._cache
        if not self.path.exists():
            self._cache = {}
            return self._cache
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ManifestCorruptError(self.path, str(exc)) from exc
        if not isinstance(raw, dict):
            raise ManifestCorruptError(self.path, "expected an object keyed by agency name")
        try:
            self._cache = {name: AgencyMapping.from_dict(name, value) for name, value in raw.items()}
        except (TypeError, ValueError, AttributeError) as exc:
            raise ManifestCorruptError(self.path, f"invalid mapping: {exc}") from exc
        return self._cache

    def clear_cache(self) -> None:
        self._cache = None

    def get(self, agency_name: str) -> Optional[AgencyMapping]:
        return self.load().get(agency_name)

    def get_all(self) -> Dict[str, AgencyMapping]:
        return dict(self.load())

    def set(self, agency_name: str, mapping: AgencyMapping) -> AgencyMapping:
        return self.set_many({agency_name: mapping})[agency_name]

    def set_many(self, mappings: Dict[str, AgencyMapping]) -> Dict[str, AgencyMapping]:
        """Write several mappings with a single file rewrite."""
        current = dict(self.load())
        stored = {name: replace(mapping, agency_name=name) for name, mapping in mappings.items()}
        current.update(stored)
        self._save(current)
        return stored

    def remove(self, agency_name: str) -> Optional[AgencyMapping]:
        current = dict(self.load())
        removed = current.pop(agency_name, None)
        if removed is not None:
            self._save(current)
        return removed

    def get_unmapped(self, agency_names: Iterable[str]) -> list[str]:
        """Names without a stored mapping, in input order."""
        mappings = self.load()
        return [name for name in agency_names if name not in mappings]

    def get_pending_review(self, threshold: int = REVIEW_THRESHOLD) -> list[AgencyMapping]:
        """Unreviewed mappings below the auto threshold; unskipped first, then by confidence."""
        pending = [
            mapping
            for mapping in self.load().values()
            if not mapping.is_reviewed
            and mapping.match_type not in (DELETE, CREATE)
            and (mapping.confidence < threshold or mapping.match_type == MANUAL)
        ]
        return sorted(pending, key=lambda mapping: (mapping.is_skipped, -mapping.confidence))

    def mark_reviewed(
        self,
        agency_name: str,
        folder_id: Optional[str] = None,
        folder_name: Optional[str] = None,
        match_type: Optional[str] = None,
        confidence: Optional[int] = None,
    ) -> AgencyMapping:
        """Accept (optionally correcting) a mapping as a human decision."""
        existing = self.get(agency_name)
        now = datetime.utcnow().isoformat()
        if existing is None:
            if folder_id is None and match_type not in (DELETE, CREATE):
                raise KeyError(f"No mapping for {agency_name!r}; a folder_id is required")
            existing = AgencyMapping(
                folder_id=folder_id or "",
                folder_name=folder_name or "",
                confidence=100 if confidence is None else confidence,
                match_type=match_type or MANUAL,
                reasoning="Set during review",
                matched_at=now,
            )
        updated = replace(
            existing,
            folder_id=folder_id if folder_id is not None else existing.folder_id,
            folder_name=folder_name if folder_name is not None else existing.folder_name,
            match_type=match_type or existing.match_type,
            confidence=confidence if confidence is not None else existing.confidence,
            reviewed_at=now,
            skipped_at=None,
        )
        return self.set(agency_name, updated)

    def mark_skipped(self, agency_name: str) -> AgencyMapping:
        existing = self.get(agency_name)
        if existing is None:
            raise KeyError(f"No mapping for {agency_name!r}")
        return self.set(agency_name, replace(existing, skipped_at=datetime.utcnow().isoformat()))

    def _save(self, mappings: Dict[str, AgencyMapping]) -> None:
        write_json_atomic(self.path, {name: mapping.to_dict() for name, mapping in mappings.items()})
        self._cache = mappings
