"""
Map agencies onto the top-level folders of a hierarchy snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Union

from config import AppConfig
from hierarchy.tree import HierarchyTree
from mapping.similarity import MatchCandidate, MatchDetails, Similarity, find_matches, get_similarity
from mapping.store import AUTO, EXACT, MANUAL, AgencyMapping, AgencyMappingStore
from utils import write_report


@dataclass(frozen=True)
class MappingResult:
    agency_name: str
    folder_id: str
    folder_name: str
    attachment_count: int
    match_type: str
    details: MatchDetails


@dataclass(frozen=True)
class UnmappedAgency:
    agency_name: str
    attachment_count: int
    candidates: list[MatchCandidate] = field(default_factory=list)


@dataclass(frozen=True)
class SkippedAgency:
    """An agency whose stored mapping carries a human decision and was left untouched."""

    agency_name: str
    reason: str
    mapping: AgencyMapping


@dataclass(frozen=True)
class MappingStats:
    total: int
    exact_matches: int
    high_confidence: int
    medium_confidence: int
    low_confidence: int
    unmapped: int
    skipped: int
    pending_review: int


@dataclass
class MappingOutput:
    mapped: list[MappingResult] = field(default_factory=list)
    unmapped: list[UnmappedAgency] = field(default_factory=list)
    skipped: list[SkippedAgency] = field(default_factory=list)
    pending_review: int = 0

    @property
    def stats(self) -> MappingStats:
        def count(band: str) -> int:
            return sum(1 for result in self.mapped if result.details.confidence == band)

        return MappingStats(
            total=len(self.mapped) + len(self.unmapped) + len(self.skipped),
            exact_matches=count("exact"),
            high_confidence=count("high"),
            medium_confidence=count("medium"),
            low_confidence=count("low"),
            unmapped=len(self.unmapped),
            skipped=len(self.skipped),
            pending_review=self.pending_review,
        )

    def to_dict(self) -> dict:
        stats = self.stats
        return {
            "stats": {
                "total": stats.total,
                "exactMatches": stats.exact_matches,
                "highConfidence": stats.high_confidence,
                "mediumConfidence": stats.medium_confidence,
                "lowConfidence": stats.low_confidence,
                "unmapped": stats.unmapped,
                "skipped": stats.skipped,
                "pendingReview": stats.pending_review,
            },
            "mapping": [
                {
                    "agencyName": result.agency_name,
                    "folderId": result.folder_id,
                    "folderName": result.folder_name,
                    "attachmentCount": result.attachment_count,
                    "matchType": result.match_type,
                    "score": result.details.score,
                    "confidence": result.details.confidence,
                    "reasoning": result.details.reasoning,
                }
                for result in self.mapped
            ],
            "unmapped": [
                {
                    "agencyName": item.agency_name,
                    "attachmentCount": item.attachment_count,
                    "candidates": [
                        {
                            "folderId": candidate.folder_id,
                            "folderName": candidate.folder_name,
                            "score": candidate.details.score,
                            "reasoning": candidate.details.reasoning,
                        }
                        for candidate in item.candidates
                    ],
                }
                for item in self.unmapped
            ],
            "skipped": [
                {"agencyName": item.agency_name, "reason": item.reason, **item.mapping.to_dict()}
                for item in self.skipped
            ],
        }


class AgencyFolderMapper:
    """Score agencies against folders and persist the results without overriding human decisions."""

    def __init__(
        self,
        config: AppConfig,
        store: AgencyMappingStore,
        logger: Optional[logging.Logger] = None,
        similarity: Optional[Similarity] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.logger = logger or logging.getLogger("drive_reconciler")
        self.similarity = similarity or get_similarity(
            str(config.get("mapping", "similarity", default="levenshtein"))
        )
        self.auto_threshold = int(config.get("mapping", "auto_threshold", default=90))
        self.accept_floor = int(config.get("mapping", "accept_floor", default=70))
        self.candidate_floor = int(config.get("mapping", "candidate_floor", default=40))
        self.max_candidates = int(config.get("mapping", "max_candidates", default=5))

    def map_agencies(
        self,
        agencies: Union[Mapping[str, int], Iterable[str]],
        tree: HierarchyTree,
        persist: bool = True,
    ) -> MappingOutput:
        counts = dict(agencies) if isinstance(agencies, Mapping) else {name: 0 for name in agencies}
        folders = [(node.id, node.name) for node in tree.roots]
        output = MappingOutput()
        updates: Dict[str, AgencyMapping] = {}

        for agency_name, attachment_count in counts.items():
            existing = self.store.get(agency_name)
            if existing is not None and existing.is_human_decision:
                output.skipped.append(SkippedAgency(agency_name, _decision_reason(existing), existing))
                self.logger.debug("Keeping reviewed mapping for %r (%s)", agency_name, _decision_reason(existing))
                continue

            best, candidates = find_matches(
                agency_name,
                folders,
                similarity=self.similarity,
                candidate_floor=self.candidate_floor,
                accept_floor=self.accept_floor,
                max_candidates=self.max_candidates,
            )
            if best is None:
                output.unmapped.append(UnmappedAgency(agency_name, attachment_count, candidates))
                if candidates:
                    top = candidates[0]
                    updates[agency_name] = self._mapping_for(
                        top, MANUAL, existing, note="below acceptance floor; pick a folder during review"
                    )
                continue

            match_type = self._match_type(best.details)
            output.mapped.append(
                MappingResult(
                    agency_name=agency_name,
                    folder_id=best.folder_id,
                    folder_name=best.folder_name,
                    attachment_count=attachment_count,
                    match_type=match_type,
                    details=best.details,
                )
            )
            updates[agency_name] = self._mapping_for(best, match_type, existing)

        changed = {
            name: mapping
            for name, mapping in updates.items()
            if self.store.get(name) is None or self.store.get(name) != mapping
        }
        if persist and changed:
            self.store.set_many(changed)
        output.pending_review = len(self.store.get_pending_review(self.auto_threshold)) if persist else sum(
            1 for mapping in updates.values() if mapping.match_type == MANUAL
        )
        stats = output.stats
        self.logger.info(
            "Agency mapping: total=%s exact=%s high=%s medium=%s low=%s unmapped=%s kept_reviewed=%s pending_review=%s",
            stats.total,
            stats.exact_matches,
            stats.high_confidence,
            stats.medium_confidence,
            stats.low_confidence,
            stats.unmapped,
            stats.skipped,
            stats.pending_review,
        )
        return output

    def _match_type(self, details: MatchDetails) -> str:
        if details.confidence == "exact":
            return EXACT
        if details.score >= self.auto_threshold:
            return AUTO
        return MANUAL

    def _mapping_for(
        self,
        candidate: MatchCandidate,
        match_type: str,
        existing: Optional[AgencyMapping],
        note: str = "",
    ) -> AgencyMapping:
        reasoning = candidate.details.reasoning + (f"; {note}" if note else "")
        matched_at = datetime.utcnow().isoformat()
        if (
            existing is not None
            and existing.folder_id == candidate.folder_id
            and existing.match_type == match_type
            and existing.confidence == candidate.details.score
        ):
            matched_at = existing.matched_at
            reasoning = existing.reasoning
        return AgencyMapping(
            folder_id=candidate.folder_id,
            folder_name=candidate.folder_name,
            confidence=candidate.details.score,
            match_type=match_type,
            reasoning=reasoning,
            matched_at=matched_at,
        )


def _decision_reason(mapping: AgencyMapping) -> str:
    if mapping.is_reviewed:
        return "reviewed"
    if mapping.is_skipped:
        return "skipped"
    return f"decision:{mapping.match_type}"


def write_mapping_report(output: MappingOutput, logs_dir: Path) -> Path:
    stamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    payload = {"generated_at": datetime.utcnow().isoformat(), **output.to_dict()}
    return write_report(logs_dir / f"agency_folder_mapping_{stamp}.json", payload)
