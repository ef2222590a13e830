"""
Name similarity scoring for agency-to-folder matching.

The base similarity measure is pluggable; pattern bonuses (prefix, suffix,
containment, word overlap) and confidence bands are applied on top of it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Callable, Dict, Optional, Sequence

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

Similarity = Callable[[str, str], int]

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    value = _NON_ALNUM.sub("", name.strip().lower())
    return _WHITESPACE.sub(" ", value).strip()


def _round(value: float) -> int:
    return int(value + 0.5)


def levenshtein_similarity(a: str, b: str) -> int:
    return _round(Levenshtein.normalized_similarity(a, b) * 100)


def ratio_similarity(a: str, b: str) -> int:
    return _round(fuzz.ratio(a, b))


def sequence_similarity(a: str, b: str) -> int:
    return _round(SequenceMatcher(None, a, b).ratio() * 100)


SIMILARITY_STRATEGIES: Dict[str, Similarity] = {
    "levenshtein": levenshtein_similarity,
    "ratio": ratio_similarity,
    "sequence": sequence_similarity,
}


def get_similarity(name: str) -> Similarity:
    try:
        return SIMILARITY_STRATEGIES[name]
    except KeyError as exc:
        raise ValueError(f"Unknown similarity strategy {name!r}") from exc


@dataclass(frozen=True)
class MatchDetails:
    score: int
    confidence: str
    match_kind: str
    reasoning: str


@dataclass(frozen=True)
class MatchCandidate:
    folder_id: str
    folder_name: str
    details: MatchDetails


def confidence_band(score: float) -> str:
    if score >= 90:
        return "high"
    if score >= 70:
        return "medium"
    if score >= 50:
        return "low"
    return "none"


def score_match(agency_name: str, folder_name: str, similarity: Similarity = levenshtein_similarity) -> MatchDetails:
    agency = normalize_name(agency_name)
    folder = normalize_name(folder_name)
    if not agency or not folder:
        return MatchDetails(0, "none", "empty", "Name is empty after normalization")
    if agency == folder:
        return MatchDetails(100, "exact", "exact", "Names match exactly (case-insensitive)")

    base = similarity(agency, folder)
    score: float = base
    kind = "similarity"
    reasoning = f"String similarity: {base}%"
    if folder.startswith(agency) or agency.startswith(folder):
        score = max(score, 85)
        kind = "prefix"
        reasoning = f"Prefix match detected (similarity: {base}%)"
    elif folder.endswith(agency) or agency.endswith(folder):
        score = max(score, 80)
        kind = "suffix"
        reasoning = f"Suffix match detected (similarity: {base}%)"
    elif agency in folder or folder in agency:
        score = max(score, 75)
        kind = "contains"
        reasoning = f"One name contains the other (similarity: {base}%)"

    agency_words = {word for word in agency.split(" ") if len(word) > 2}
    folder_words = {word for word in folder.split(" ") if len(word) > 2}
    common = sorted(agency_words & folder_words)
    overlap = len(common) / len(agency_words) * 100 if agency_words else 0.0
    if overlap >= 50 and score < 70:
        score = max(score, 60 + overlap * 0.2)
        kind = "word-overlap"
        reasoning = f"{len(common)} common words: {', '.join(common)} ({_round(overlap)}% overlap)"

    return MatchDetails(_round(score), confidence_band(score), kind, reasoning)


def find_matches(
    agency_name: str,
    folders: Sequence[tuple[str, str]],
    similarity: Similarity = levenshtein_similarity,
    candidate_floor: int = 40,
    accept_floor: int = 70,
    max_candidates: int = 5,
) -> tuple[Optional[MatchCandidate], list[MatchCandidate]]:
    """Score every (folder_id, folder_name); return the accepted best match and top candidates."""
    scored = [
        MatchCandidate(folder_id, folder_name, score_match(agency_name, folder_name, similarity))
        for folder_id, folder_name in folders
    ]
    scored = [candidate for candidate in scored if candidate.details.score >= candidate_floor]
    scored.sort(key=lambda candidate: candidate.details.score, reverse=True)
    best = scored[0] if scored and scored[0].details.score >= accept_floor else None
    return best, scored[:max_candidates]
