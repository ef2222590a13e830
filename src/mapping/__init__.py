"""
Agency-to-folder mapping: scoring, persistence and the mapper.
"""

from .mapper import (
    AgencyFolderMapper,
    MappingOutput,
    MappingResult,
    MappingStats,
    SkippedAgency,
    UnmappedAgency,
    write_mapping_report,
)
from .similarity import (
    MatchCandidate,
    MatchDetails,
    confidence_band,
    find_matches,
    get_similarity,
    levenshtein_similarity,
    normalize_name,
    ratio_similarity,
    score_match,
    sequence_similarity,
)
from .store import (
    AUTO,
    CREATE,
    DELETE,
    EXACT,
    MANUAL,
    MATCH_TYPES,
    AgencyMapping,
    AgencyMappingStore,
)

__all__ = [
    "AgencyFolderMapper",
    "MappingOutput",
    "MappingResult",
    "MappingStats",
    "SkippedAgency",
    "UnmappedAgency",
    "write_mapping_report",
    "MatchCandidate",
    "MatchDetails",
    "confidence_band",
    "find_matches",
    "get_similarity",
    "levenshtein_similarity",
    "normalize_name",
    "ratio_similarity",
    "score_match",
    "sequence_similarity",
    "AUTO",
    "CREATE",
    "DELETE",
    "EXACT",
    "MANUAL",
    "MATCH_TYPES",
    "AgencyMapping",
    "AgencyMappingStore",
]
