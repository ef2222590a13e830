"""
Idempotency ledgers for batch Drive work.
"""

from .extraction import ExtractionEntry, ExtractionManifest, ExtractionStats
from .ledger import MANIFEST_VERSION, Manifest, ManifestLedger
from .rename import RenameEntry, RenameManifest, RenameRollbackResult, RenameStats, rollback_renames

__all__ = [
    "MANIFEST_VERSION",
    "Manifest",
    "ManifestLedger",
    "ExtractionEntry",
    "ExtractionManifest",
    "ExtractionStats",
    "RenameEntry",
    "RenameManifest",
    "RenameRollbackResult",
    "RenameStats",
    "rollback_renames",
]
